# Upload validation endpoints
from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import JSONResponse
from starlette.requests import ClientDisconnect
from typing import AsyncIterator, Optional
import logging
import time

from upload_validator.core.config import settings
from upload_validator.core.file_validation import UploadCandidate, validate_upload
from upload_validator.core.rate_limit import enforce_rate_limit
from upload_validator.models.api_models import (
    ErrorCode,
    HTTP_STATUS_BY_ERROR,
    RateLimitStatus,
    UploadAccepted,
    UploadRejected,
    ValidatedFile,
    ValidationVerdict,
)
from upload_validator.services.file_handler import UploadCancelled, iter_upload_file

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("upload_validator.audit")

router = APIRouter(prefix="/validate-file-upload")


def _rejection(code: ErrorCode, message: str) -> JSONResponse:
    body = UploadRejected(error=message, code=code.value)
    return JSONResponse(
        status_code=HTTP_STATUS_BY_ERROR[code],
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


def _verdict_response(verdict: ValidationVerdict, candidate: UploadCandidate, client: str) -> JSONResponse:
    """Render a verdict as the JSON body and status the frontend expects."""
    if verdict.valid:
        body = UploadAccepted(
            file=ValidatedFile(
                name=candidate.safe_filename,
                original_name=candidate.filename,
                size=verdict.measured_size,
                type=candidate.normalized_mime_type,
                detected_type=verdict.detected_type,
                validations=verdict.validations,
                warnings=verdict.warnings,
            )
        )
        return JSONResponse(status_code=200, content=body.model_dump(by_alias=True))

    if verdict.is_security_rejection:
        audit_logger.warning(
            "Blocked upload %r from %s: %s (%s) details=%s",
            candidate.safe_filename,
            client,
            verdict.error_code.value,
            verdict.error_message,
            verdict.details,
        )

    body = UploadRejected(
        error=verdict.error_message or "File rejected",
        code=verdict.error_code.value if verdict.error_code else None,
        details=verdict.details or None,
    )
    return JSONResponse(
        status_code=verdict.http_status,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


def _client_host(request: Request) -> str:
    if request.client:
        return request.client.host
    return "unknown"


def _deadline() -> float:
    return time.monotonic() + settings.VALIDATION_TIMEOUT_SECONDS


async def _request_chunks(request: Request) -> AsyncIterator[bytes]:
    try:
        async for chunk in request.stream():
            yield chunk
    except ClientDisconnect as exc:
        raise UploadCancelled("Client disconnected") from exc


@router.post("")
async def validate_file_upload(
    request: Request,
    file: Optional[UploadFile] = File(None),
    _: RateLimitStatus = Depends(enforce_rate_limit),
) -> JSONResponse:
    """
    Validate a multipart upload (field ``file``) before it is stored.

    Returns 200 with the detected type and the checks performed, or the
    rejection reason with 400/403/408/413/415/500.
    """
    if file is None:
        return _rejection(ErrorCode.NO_FILE_PROVIDED, "No file provided")

    candidate = UploadCandidate(
        filename=file.filename or "",
        mime_type=file.content_type or "",
        declared_size=file.size,
    )
    verdict = await validate_upload(
        iter_upload_file(file, settings.CHUNK_SIZE_BYTES),
        candidate,
        settings,
        deadline=_deadline(),
    )
    return _verdict_response(verdict, candidate, _client_host(request))


@router.post("/stream")
async def validate_file_stream(
    request: Request,
    _: RateLimitStatus = Depends(enforce_rate_limit),
) -> JSONResponse:
    """
    Validate a raw request body streamed with request.stream().

    Headers: x-file-name (required), content-type, content-length.
    """
    file_name = request.headers.get("x-file-name")
    if not file_name:
        return _rejection(ErrorCode.NO_FILE_PROVIDED, "Missing file name header: x-file-name")

    content_length = request.headers.get("content-length")
    try:
        declared_size = int(content_length) if content_length else None
    except ValueError:
        declared_size = None

    candidate = UploadCandidate(
        filename=file_name,
        mime_type=request.headers.get("content-type", ""),
        declared_size=declared_size,
    )
    verdict = await validate_upload(
        _request_chunks(request),
        candidate,
        settings,
        deadline=_deadline(),
    )
    return _verdict_response(verdict, candidate, _client_host(request))
