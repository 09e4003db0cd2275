# File validation pipeline
"""
Fail-fast validation of a single uploaded file.

Order: streamed read (stopping once the ceiling is passed), emptiness, size
ceiling, declared MIME allow-list, content signature (dangerous first),
per-format size ceiling, MIME/content cross-validation, filename policy, then
format-specific structure checks (PDF only). The first failing step decides the verdict.

Rejections are returned as ValidationVerdict values, never raised. Only the
async entry point catches unexpected faults, and reports them as
INTERNAL_ERROR so callers can tell a broken validator from a rejected file.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from upload_validator.core.config import Settings, settings
from upload_validator.core.pdf_checks import run_pdf_checks
from upload_validator.core.signatures import detect_signature, expected_formats
from upload_validator.models.api_models import (
    CheckFailure,
    ErrorCode,
    ValidationChecks,
    ValidationVerdict,
)
from upload_validator.services.file_handler import (
    StreamCapture,
    UploadCancelled,
    UploadTimeout,
    capture_bytes,
    capture_stream,
    filename_issues,
    sanitize_filename,
)

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadCandidate:
    """Client-declared metadata of an upload; none of it is trusted."""

    filename: str
    mime_type: str
    declared_size: Optional[int] = None

    @property
    def normalized_mime_type(self) -> str:
        return self.mime_type.split(";", 1)[0].strip().lower()

    @property
    def safe_filename(self) -> str:
        return sanitize_filename(self.filename) or "upload"


def _reject(
    failure: CheckFailure,
    *,
    size: int = 0,
    detected_type: Optional[str] = None,
    checks: Optional[ValidationChecks] = None,
    stages: Optional[list[str]] = None,
    warnings: Optional[list[str]] = None,
) -> ValidationVerdict:
    return ValidationVerdict(
        valid=False,
        detected_type=detected_type,
        error_code=failure.code,
        error_message=failure.message,
        details=failure.details,
        measured_size=size,
        validations=checks or ValidationChecks(),
        stages=stages or [],
        warnings=warnings or [],
    )


def _format_size(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):.2f}MB"
    return f"{size} bytes"


def _size_failure(code: ErrorCode, size: int, limit: int, **extra) -> CheckFailure:
    return CheckFailure(
        code=code,
        message=f"File size exceeds maximum allowed size of {_format_size(limit)}. Current size: {_format_size(size)}",
        details={"size": size, "limit": limit, **extra},
    )


def _internal_error(message: str) -> ValidationVerdict:
    return ValidationVerdict(
        valid=False,
        error_code=ErrorCode.INTERNAL_ERROR,
        error_message=message,
    )


def evaluate_capture(
    capture: StreamCapture,
    candidate: UploadCandidate,
    config: Optional[Settings] = None,
) -> ValidationVerdict:
    """Run every check after the read over the captured bytes."""
    config = config or settings
    checks = ValidationChecks()
    stages: list[str] = []
    warnings: list[str] = []
    mime_type = candidate.normalized_mime_type

    def reject(failure: CheckFailure, detected_type: Optional[str] = None) -> ValidationVerdict:
        return _reject(
            failure,
            size=capture.size,
            detected_type=detected_type,
            checks=checks,
            stages=stages,
            warnings=warnings,
        )

    # 1. Emptiness
    stages.append("empty")
    if capture.size == 0:
        return reject(CheckFailure(code=ErrorCode.EMPTY_FILE, message="File is empty"))

    # 2. Size ceiling for the declared type
    stages.append("size")
    limit = config.size_limit_for_mime(mime_type)
    if capture.exceeded or capture.size > limit:
        return reject(_size_failure(ErrorCode.FILE_TOO_LARGE, capture.size, limit))
    checks.size_check = True

    # 4. Declared MIME allow-list
    stages.append("mime_type")
    if mime_type not in config.ALLOWED_MIME_TYPES:
        return reject(CheckFailure(
            code=ErrorCode.MIME_TYPE_NOT_ALLOWED,
            message=f"File type {mime_type or 'unknown'} not allowed",
            details={"declaredType": mime_type, "allowedTypes": list(config.ALLOWED_MIME_TYPES)},
        ))
    checks.mime_type_check = True

    # 5-6. Content signature, dangerous formats first
    stages.append("magic_number")
    record = detect_signature(capture.header, capture.prefix)
    if record is None:
        return reject(CheckFailure(
            code=ErrorCode.UNRECOGNIZED_CONTENT,
            message="File content does not match any supported file type",
            details={"header": capture.header[:8].hex(), "declaredType": mime_type},
        ))
    if record.dangerous:
        return reject(
            CheckFailure(
                code=ErrorCode.DANGEROUS_FILE_TYPE,
                message=f"Dangerous file type detected and blocked: {record.description}",
                details={
                    "detectedType": record.file_type,
                    "declaredType": mime_type,
                    "pattern": record.pattern,
                },
            ),
            detected_type=record.file_type,
        )
    checks.magic_number_check = True
    detected_type = record.file_type

    # Hard ceiling for the detected format
    stages.append("format_size")
    format_limit = config.size_limit_for_format(detected_type)
    if capture.size > format_limit:
        return reject(
            _size_failure(ErrorCode.SIZE_LIMIT_EXCEEDED_HARD, capture.size, format_limit, detectedType=detected_type),
            detected_type=detected_type,
        )

    # 7. Declared type vs content
    stages.append("cross_validation")
    if detected_type in expected_formats(mime_type):
        checks.cross_validation = True
    else:
        message = f"Declared type {mime_type} does not match detected content {detected_type}"
        if config.STRICT_MIME_MATCH:
            return reject(
                CheckFailure(
                    code=ErrorCode.MIME_CONTENT_MISMATCH,
                    message=message,
                    details={"declaredType": mime_type, "detectedType": detected_type},
                ),
                detected_type=detected_type,
            )
        LOGGER.warning("MIME type mismatch for %r: %s", candidate.safe_filename, message)
        warnings.append(message)

    # Filename policy
    stages.append("filename")
    issues = filename_issues(candidate.filename)
    if issues:
        if config.REJECT_UNSAFE_FILENAMES:
            return reject(
                CheckFailure(
                    code=ErrorCode.INVALID_FILENAME,
                    message="Invalid filename provided",
                    details={"issues": issues},
                ),
                detected_type=detected_type,
            )
        warnings.append(f"Filename sanitized ({', '.join(issues)})")

    # 8. Format-specific structure
    if detected_type == "pdf":
        performed, failure = run_pdf_checks(capture, config)
        stages.extend(performed)
        if failure is not None:
            return reject(failure, detected_type=detected_type)
        checks.security_scan = True
        checks.polyglot_check = True
        checks.structure_integrity = True

    # 9. Accept
    return ValidationVerdict(
        valid=True,
        detected_type=detected_type,
        measured_size=capture.size,
        validations=checks,
        stages=stages,
        warnings=warnings,
    )


def validate_bytes(
    data: bytes,
    candidate: UploadCandidate,
    config: Optional[Settings] = None,
) -> ValidationVerdict:
    """Validate content that is already in memory."""
    config = config or settings
    capture = capture_bytes(
        data,
        max_bytes=config.size_limit_for_mime(candidate.normalized_mime_type),
        prefix_bytes=config.PREFIX_CAPTURE_BYTES,
        header_bytes=config.HEADER_BYTES,
        trailer_bytes=config.TRAILER_BYTES,
    )
    return evaluate_capture(capture, candidate, config)


async def validate_upload(
    chunks: AsyncIterator[bytes],
    candidate: UploadCandidate,
    config: Optional[Settings] = None,
    *,
    deadline: Optional[float] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> ValidationVerdict:
    """
    Stream ``chunks`` and validate them against ``candidate``.

    Args:
        chunks: Async iterator over the uploaded bytes
        candidate: Declared filename, MIME type and size
        config: Settings override (defaults to the module settings)
        deadline: time.monotonic() timestamp after which reading stops
        cancel_event: Set by the caller to abort the read

    Returns:
        ValidationVerdict; never raises except for asyncio.CancelledError
    """
    config = config or settings
    # The declared size is only compared with the measured one, never trusted
    limit = config.size_limit_for_mime(candidate.normalized_mime_type)

    started = time.monotonic()
    try:
        capture = await capture_stream(
            chunks,
            max_bytes=limit,
            prefix_bytes=config.PREFIX_CAPTURE_BYTES,
            header_bytes=config.HEADER_BYTES,
            trailer_bytes=config.TRAILER_BYTES,
            deadline=deadline,
            cancel_event=cancel_event,
        )
        if candidate.declared_size is not None and candidate.declared_size != capture.size and not capture.exceeded:
            LOGGER.warning(
                "Declared size %d differs from measured size %d for %r",
                candidate.declared_size,
                capture.size,
                candidate.safe_filename,
            )
        verdict = evaluate_capture(capture, candidate, config)
    except UploadTimeout:
        LOGGER.warning("Upload of %r timed out after %.2fs", candidate.safe_filename, time.monotonic() - started)
        return _reject(CheckFailure(code=ErrorCode.UPLOAD_TIMEOUT, message="Upload timed out"))
    except UploadCancelled:
        LOGGER.info("Upload of %r cancelled", candidate.safe_filename)
        return _reject(CheckFailure(code=ErrorCode.UPLOAD_CANCELLED, message="Upload cancelled"))
    except Exception:
        LOGGER.exception("Validator failed on %r", candidate.safe_filename)
        return _internal_error("Internal validation error")

    LOGGER.info(
        "Validated %r: valid=%s detected=%s size=%d code=%s",
        candidate.safe_filename,
        verdict.valid,
        verdict.detected_type,
        verdict.measured_size,
        verdict.error_code.value if verdict.error_code else None,
    )
    return verdict
