"""
Pydantic v2 models and constants used by the API layer.

Covers:
- Error taxonomy for rejected uploads and its HTTP status mapping.
- The validation verdict returned by the validator.
- Response bodies for accepted and rejected uploads (camelCase JSON).
- Leaky bucket rate limiting defaults.
"""
from __future__ import annotations

import enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ErrorCode(str, enum.Enum):
    NO_FILE_PROVIDED = "NO_FILE_PROVIDED"
    INVALID_FILENAME = "INVALID_FILENAME"
    EMPTY_FILE = "EMPTY_FILE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    MIME_TYPE_NOT_ALLOWED = "MIME_TYPE_NOT_ALLOWED"
    DANGEROUS_FILE_TYPE = "DANGEROUS_FILE_TYPE"
    UNRECOGNIZED_CONTENT = "UNRECOGNIZED_CONTENT"
    MIME_CONTENT_MISMATCH = "MIME_CONTENT_MISMATCH"
    MALFORMED_PDF_HEADER = "MALFORMED_PDF_HEADER"
    MALFORMED_PDF_EOF = "MALFORMED_PDF_EOF"
    PDF_VERSION_UNSUPPORTED = "PDF_VERSION_UNSUPPORTED"
    SUSPECTED_COMPRESSION_BOMB = "SUSPECTED_COMPRESSION_BOMB"
    POLYGLOT_DETECTED = "POLYGLOT_DETECTED"
    SCRIPT_SMUGGLING_DETECTED = "SCRIPT_SMUGGLING_DETECTED"
    ACTIVE_CONTENT_DETECTED = "ACTIVE_CONTENT_DETECTED"
    STRUCTURAL_CORRUPTION = "STRUCTURAL_CORRUPTION"
    SIZE_LIMIT_EXCEEDED_HARD = "SIZE_LIMIT_EXCEEDED_HARD"
    UPLOAD_TIMEOUT = "UPLOAD_TIMEOUT"
    UPLOAD_CANCELLED = "UPLOAD_CANCELLED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


HTTP_STATUS_BY_ERROR: dict[ErrorCode, int] = {
    ErrorCode.NO_FILE_PROVIDED: 400,
    ErrorCode.INVALID_FILENAME: 400,
    ErrorCode.EMPTY_FILE: 400,
    ErrorCode.MALFORMED_PDF_HEADER: 400,
    ErrorCode.MALFORMED_PDF_EOF: 400,
    ErrorCode.PDF_VERSION_UNSUPPORTED: 400,
    ErrorCode.STRUCTURAL_CORRUPTION: 400,
    ErrorCode.UPLOAD_CANCELLED: 400,
    ErrorCode.UPLOAD_TIMEOUT: 408,
    ErrorCode.FILE_TOO_LARGE: 413,
    ErrorCode.SIZE_LIMIT_EXCEEDED_HARD: 413,
    ErrorCode.MIME_TYPE_NOT_ALLOWED: 415,
    ErrorCode.MIME_CONTENT_MISMATCH: 415,
    ErrorCode.UNRECOGNIZED_CONTENT: 415,
    ErrorCode.DANGEROUS_FILE_TYPE: 403,
    ErrorCode.SUSPECTED_COMPRESSION_BOMB: 403,
    ErrorCode.POLYGLOT_DETECTED: 403,
    ErrorCode.SCRIPT_SMUGGLING_DETECTED: 403,
    ErrorCode.ACTIVE_CONTENT_DETECTED: 403,
    ErrorCode.INTERNAL_ERROR: 500,
}

# Rejections worth escalating to the security audit log
SECURITY_ERRORS = frozenset(
    code for code, status_code in HTTP_STATUS_BY_ERROR.items() if status_code == 403
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---- Validator results ----------------------------------------------------


class CheckFailure(BaseModel):
    """A single failed check: why, and the numbers behind it."""

    code: ErrorCode
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class ValidationChecks(CamelModel):
    """Which validation stages ran and passed."""

    size_check: bool = False
    mime_type_check: bool = False
    magic_number_check: bool = False
    cross_validation: bool = False
    security_scan: bool = False
    polyglot_check: bool = False
    structure_integrity: bool = False


class ValidationVerdict(BaseModel):
    valid: bool
    detected_type: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    measured_size: int = 0
    validations: ValidationChecks = Field(default_factory=ValidationChecks)
    stages: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def http_status(self) -> int:
        if self.valid or self.error_code is None:
            return 200
        return HTTP_STATUS_BY_ERROR[self.error_code]

    @property
    def is_internal_error(self) -> bool:
        """True when the validator itself failed rather than rejecting the file."""
        return self.error_code == ErrorCode.INTERNAL_ERROR

    @property
    def is_security_rejection(self) -> bool:
        return self.error_code in SECURITY_ERRORS


# ---- Response bodies ------------------------------------------------------


class ValidatedFile(CamelModel):
    name: str
    original_name: str
    size: int
    type: str
    detected_type: str
    validations: ValidationChecks
    warnings: list[str] = Field(default_factory=list)


class UploadAccepted(CamelModel):
    valid: bool = Field(default=True)
    file: ValidatedFile


class UploadRejected(CamelModel):
    valid: bool = Field(default=False)
    error: str
    code: Optional[str] = None
    details: Optional[dict[str, Any]] = None


# ---- Rate limiting --------------------------------------------------------


class LeakyBucketConfig(BaseModel):
    """Leaky bucket settings (requests/sec)."""

    capacity: int = Field(default=10, ge=1, description="Maximum queued requests")
    leak_rate: float = Field(
        default=1.0, gt=0, description="Tokens leaked per second (req/sec)"
    )


class RateLimitStatus(BaseModel):
    """Response-friendly rate-limit status."""

    allowed: bool = Field(default=True)
    reason: Optional[str] = Field(default=None)
    status_code: int = Field(default=200)
    bucket_capacity: int
    bucket_leak_rate: float
