"""
Streaming ingestion of uploaded bytes with bounded memory.

Responsibilities:
- Read the body chunk by chunk (request.stream() or an UploadFile).
- Keep only the header window, a bounded prefix and a rolling trailer.
- Stop reading once the size ceiling is exceeded.
- Honour an injected deadline and cancellation event, also while a read is pending.
- Sanitize client-supplied file names.
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import UploadFile

LOGGER = logging.getLogger(__name__)
CHUNK_SIZE = 1024 * 1024  # 1 MB

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


class UploadTimeout(Exception):
    """The deadline passed before the upload was fully read."""


class UploadCancelled(Exception):
    """The caller cancelled the upload (e.g. the client disconnected)."""


@dataclass(frozen=True)
class StreamCapture:
    header: bytes
    prefix: bytes
    trailer: bytes
    size: int
    truncated: bool
    exceeded: bool

    @property
    def retained_bytes(self) -> int:
        return len(self.prefix) + len(self.trailer)


async def iter_upload_file(upload: UploadFile, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Yield an UploadFile's content in fixed-size chunks."""
    await upload.seek(0)
    while True:
        chunk = await upload.read(chunk_size)
        if not chunk:
            break
        yield chunk


async def _next_chunk(
    iterator: AsyncIterator[bytes],
    deadline: Optional[float],
    cancel_event: Optional[asyncio.Event],
) -> bytes:
    """Await the next chunk, racing it against the deadline and the cancel event."""
    if deadline is None and cancel_event is None:
        return await iterator.__anext__()

    timeout = None
    if deadline is not None:
        timeout = deadline - time.monotonic()
        if timeout <= 0:
            raise UploadTimeout("Upload deadline exceeded")

    read = asyncio.ensure_future(iterator.__anext__())
    waiters = {read}
    cancelled = None
    if cancel_event is not None:
        cancelled = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancelled)

    try:
        done, pending = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        for task in waiters:
            task.cancel()
        raise

    for task in pending:
        task.cancel()
    # The generator must be idle again before anyone calls aclose() on it
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    if read in done:
        return read.result()
    if cancelled is not None and cancelled in done:
        raise UploadCancelled("Upload cancelled by caller")
    raise UploadTimeout("Upload deadline exceeded")


async def capture_stream(
    chunks: AsyncIterator[bytes],
    *,
    max_bytes: int,
    prefix_bytes: int,
    header_bytes: int,
    trailer_bytes: int,
    deadline: Optional[float] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> StreamCapture:
    """
    Read ``chunks`` until exhausted or until more than ``max_bytes`` arrived.

    ``deadline`` is a ``time.monotonic()`` timestamp; each await for the next
    chunk is bounded by the time left and interrupted by ``cancel_event``.
    The source is closed on every exit. Raises UploadTimeout / UploadCancelled.
    """
    prefix = bytearray()
    trailer = b""
    size = 0
    exceeded = False
    iterator = chunks.__aiter__()

    try:
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise UploadCancelled("Upload cancelled by caller")
            try:
                chunk = await _next_chunk(iterator, deadline, cancel_event)
            except StopAsyncIteration:
                break
            if not chunk:
                continue

            size += len(chunk)
            room = prefix_bytes - len(prefix)
            if room > 0:
                prefix.extend(chunk[:room])
            if trailer_bytes > 0:
                trailer = (trailer + chunk[-trailer_bytes:])[-trailer_bytes:]

            if size > max_bytes:
                exceeded = True
                LOGGER.info("Stopped reading upload after %d bytes (limit %d)", size, max_bytes)
                break
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()

    return StreamCapture(
        header=bytes(prefix[:header_bytes]),
        prefix=bytes(prefix),
        trailer=trailer,
        size=size,
        truncated=size > len(prefix),
        exceeded=exceeded,
    )


def capture_bytes(data: bytes, *, max_bytes: int, prefix_bytes: int, header_bytes: int, trailer_bytes: int) -> StreamCapture:
    """Capture for content that is already in memory."""
    exceeded = len(data) > max_bytes
    prefix = data[:prefix_bytes]
    return StreamCapture(
        header=prefix[:header_bytes],
        prefix=prefix,
        trailer=data[-trailer_bytes:] if trailer_bytes > 0 else b"",
        size=len(data),
        truncated=len(data) > len(prefix),
        exceeded=exceeded,
    )


def filename_issues(filename: str) -> list[str]:
    """List the unsafe constructs found in a client-supplied file name."""
    issues = []
    if "/" in filename or "\\" in filename:
        issues.append("path separator")
    if ".." in filename:
        issues.append("path traversal")
    if _CONTROL_CHARS.search(filename):
        issues.append("control characters")
    return issues


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename by removing path separators and other dangerous characters.

    Args:
        filename: Original filename

    Returns:
        Sanitized filename
    """
    # Keep only the base name, whichever separator the client used
    filename = os.path.basename(filename.replace("\\", "/"))
    filename = _CONTROL_CHARS.sub("", filename)
    filename = filename.replace("..", "").strip()
    return filename
