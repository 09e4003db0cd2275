#Run this command to start the server: uvicorn upload_validator.api.main:app --reload --host 0.0.0.0 --port 8000

"""
FastAPI app exposing the upload validator.

Constraints:
- Stateless: uploads are inspected and discarded, never stored.
- Bodies are read in chunks; only a bounded prefix and trailer are kept.
- Rate limiting uses a simple in-memory leaky bucket on the upload routes.
- CORS preflight (OPTIONS) is answered by the middleware.
"""
from __future__ import annotations

import logging
import traceback

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from upload_validator.api import upload
from upload_validator.api.body_limit import UploadSizeLimitMiddleware
from upload_validator.core.config import settings
from upload_validator.models.api_models import ErrorCode, UploadRejected

LOGGER = logging.getLogger(__name__)


def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


configure_logging()

app = FastAPI(title="Upload Validator API", version="0.1.0")

# Added before CORS so 413 answers still carry CORS headers
app.add_middleware(UploadSizeLimitMiddleware, paths=[upload.router.prefix])

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials="*" not in settings.CORS_ALLOW_ORIGINS,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-file-name"],
)

app.include_router(upload.router, tags=["upload"])


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    LOGGER.error("HTTP error on %s %s: %s", request.method, request.url.path, exc.detail)
    code = getattr(exc, "code", None)
    body = UploadRejected(error=str(exc.detail), code=code.value if code else None)
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """
    Catch-all exception handler for unhandled errors.
    Logs the full traceback and returns a 500 error.
    """
    LOGGER.error(
        "Unhandled exception on %s %s: %s\n%s",
        request.method,
        request.url.path,
        exc,
        traceback.format_exc(),
    )
    body = UploadRejected(
        error="Internal server error",
        code=ErrorCode.INTERNAL_ERROR.value,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )
