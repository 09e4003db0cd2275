# Request body ceiling for multipart uploads
"""
Starlette spools a multipart body to memory or disk before the route runs,
so the size ceiling has to be enforced here, in front of form parsing.

A declared content-length above the ceiling is answered with 413 without
reading the body. Bodies without a length are counted as they are received
and cut off with a 413 once they pass the same bound.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from upload_validator.core.config import settings
from upload_validator.models.api_models import ErrorCode, UploadRejected

LOGGER = logging.getLogger(__name__)


class RequestBodyTooLarge(HTTPException):
    code = ErrorCode.FILE_TOO_LARGE

    def __init__(self, limit: int):
        super().__init__(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Request body exceeds maximum allowed size of {limit} bytes",
        )
        self.limit = limit


class UploadSizeLimitMiddleware:
    """Reject oversize POST bodies on ``paths`` before they are parsed."""

    def __init__(self, app: ASGIApp, paths: Iterable[str]):
        self.app = app
        self.paths = frozenset(paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["method"] != "POST" or scope["path"] not in self.paths:
            await self.app(scope, receive, send)
            return

        limit = settings.max_request_bytes
        declared = _content_length(scope)
        if declared is not None and declared > limit:
            LOGGER.warning("Rejected %s: content-length %d exceeds %d", scope["path"], declared, limit)
            body = UploadRejected(
                error=f"Request body exceeds maximum allowed size of {limit} bytes",
                code=ErrorCode.FILE_TOO_LARGE.value,
                details={"size": declared, "limit": limit, "declared": True},
            )
            response = JSONResponse(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                content=body.model_dump(by_alias=True, exclude_none=True),
                headers={"connection": "close"},
            )
            await response(scope, receive, send)
            return

        received = 0

        async def counting_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > limit:
                    LOGGER.warning("Cut off %s after %d bytes (limit %d)", scope["path"], received, limit)
                    raise RequestBodyTooLarge(limit)
            return message

        await self.app(scope, counting_receive, send)


def _content_length(scope: Scope) -> Optional[int]:
    for name, value in scope.get("headers", []):
        if name == b"content-length":
            try:
                return int(value)
            except ValueError:
                return None
    return None
