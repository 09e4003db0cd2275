# Settings (Pydantic BaseSettings)
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

MIB = 1024 * 1024

DEFAULT_ALLOWED_MIME_TYPES = [
    "application/pdf",
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/tiff",
    "image/heic",
    "image/heif",
    "application/msword",
    "application/vnd.ms-excel",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
]

DEFAULT_BLOCKED_ACTIVE_CONTENT = [
    "JavaScript",
    "JS",
    "Launch",
    "OpenAction",
    "AA",
    "EmbeddedFile",
    "XObject",
]


class Settings(BaseSettings):
    # Size ceilings
    MAX_FILE_SIZE_BYTES: int = 20 * MIB
    MAX_PDF_SIZE_BYTES: int = 50 * MIB

    # Declared MIME allow-list
    ALLOWED_MIME_TYPES: Annotated[list[str], NoDecode] = DEFAULT_ALLOWED_MIME_TYPES

    # Streaming ingestion
    CHUNK_SIZE_BYTES: int = 1 * MIB
    HEADER_BYTES: int = 16
    TRAILER_BYTES: int = 1024
    PREFIX_CAPTURE_BYTES: int = 10 * MIB

    # Policy switches
    STRICT_MIME_MATCH: bool = False
    REJECT_UNSAFE_FILENAMES: bool = False

    # PDF structure
    MIN_PDF_SIZE_BYTES: int = 100
    MAX_PDF_VERSION: str = "2.0"
    PDF_HEADER_REGION_BYTES: int = 16
    PDF_BLOCKED_ACTIVE_CONTENT: Annotated[list[str], NoDecode] = DEFAULT_BLOCKED_ACTIVE_CONTENT

    # Decompression bomb heuristic
    MAX_STREAM_DECOMPRESSED_BYTES: int = 5 * MIB
    MAX_TOTAL_DECOMPRESSED_BYTES: int = 100 * MIB
    ASSUMED_EXPANSION_RATIO: float = 1.0

    # Caller-imposed wall clock for read-and-validate
    VALIDATION_TIMEOUT_SECONDS: float = 30.0

    # Rate limiting (leaky bucket)
    RATE_LIMIT_CAPACITY: int = 10
    RATE_LIMIT_LEAK_RATE: float = 1.0

    # HTTP
    MULTIPART_OVERHEAD_BYTES: int = 64 * 1024
    CORS_ALLOW_ORIGINS: Annotated[list[str], NoDecode] = ["*"]
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator("ALLOWED_MIME_TYPES", "PDF_BLOCKED_ACTIVE_CONTENT", "CORS_ALLOW_ORIGINS", mode="before")
    @classmethod
    def split_comma_separated(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("ALLOWED_MIME_TYPES")
    @classmethod
    def normalize_mime_types(cls, value: list[str]) -> list[str]:
        return [item.lower() for item in value]

    @field_validator("MAX_PDF_VERSION")
    @classmethod
    def validate_pdf_version(cls, value: str) -> str:
        parse_version(value)
        return value

    @property
    def max_pdf_version(self) -> tuple[int, int]:
        return parse_version(self.MAX_PDF_VERSION)

    @property
    def absolute_max_bytes(self) -> int:
        return max(self.MAX_FILE_SIZE_BYTES, self.MAX_PDF_SIZE_BYTES)

    @property
    def max_request_bytes(self) -> int:
        """Largest multipart body worth parsing."""
        return self.absolute_max_bytes + self.MULTIPART_OVERHEAD_BYTES

    def size_limit_for_mime(self, mime_type: str) -> int:
        """Size ceiling that applies to a declared MIME type."""
        if mime_type in ("application/pdf", "application/x-pdf"):
            return self.MAX_PDF_SIZE_BYTES
        return self.MAX_FILE_SIZE_BYTES

    def size_limit_for_format(self, file_type: str) -> int:
        """Size ceiling that applies to a detected content format."""
        if file_type == "pdf":
            return self.MAX_PDF_SIZE_BYTES
        return self.MAX_FILE_SIZE_BYTES


def parse_version(value: str) -> tuple[int, int]:
    major, _, minor = value.strip().partition(".")
    if not major.isdigit() or not minor.isdigit():
        raise ValueError(f"Invalid PDF version: {value!r}")
    return int(major), int(minor)


settings = Settings()
