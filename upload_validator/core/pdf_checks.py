"""
Structural and security checks for PDF uploads.

Each check takes the captured stream and the settings and returns a
CheckFailure, or None when the check passes. They only look at the bounded
prefix and the trailer window; none of them decompresses or parses objects.

Known limitations:
- The compression-bomb check counts filter markers and assumes streams are
  evenly sized. It can miss a single hostile stream among many small ones and
  can flag a legitimate file made of a few large streams.
- Its total estimate is simply size x ASSUMED_EXPANSION_RATIO. With the
  default ratio of 1.0 the cumulative ceiling can only fire when it is set
  below MAX_PDF_SIZE_BYTES; raise the ratio to make it bite.
- Byte patterns found inside compressed data can cause rare false positives
  in the polyglot scan.
- Passing every check does not make a PDF safe, only free of these patterns.
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import Callable, Optional

from upload_validator.core.config import Settings
from upload_validator.core.signatures import EMBEDDED_SIGNATURES
from upload_validator.models.api_models import CheckFailure, ErrorCode
from upload_validator.services.file_handler import StreamCapture

PDF_MARKER = b"%PDF-"
EOF_MARKER = b"%%EOF"

_VERSION_RE = re.compile(rb"^%PDF-(\d+)\.(\d+)")
_COMPRESSED_STREAM_RE = re.compile(rb"/(?:FlateDecode|LZWDecode|RunLengthDecode)(?![A-Za-z0-9])")
_OBJ_START_RE = re.compile(rb"\b\d+\s+\d+\s+obj\b")
_OBJ_END_RE = re.compile(rb"\bendobj\b")
_XREF_TABLE_RE = re.compile(rb"(?<!start)xref\b")
_XREF_STREAM_RE = re.compile(rb"/Type\s*/XRef\b")
_NAME_ESCAPE_RE = re.compile(rb"#([0-9A-Fa-f]{2})")

SCRIPT_INDICATORS = (
    b"<script",
    b"<iframe",
    b"<object",
    b"<embed",
    b"javascript:",
    b"vbscript:",
)

PdfCheck = Callable[[StreamCapture, Settings], Optional[CheckFailure]]


def _scan_regions(capture: StreamCapture) -> list[bytes]:
    # The trailer only adds coverage when it lies beyond the prefix
    if capture.truncated:
        return [capture.prefix, capture.trailer]
    return [capture.prefix]


@lru_cache(maxsize=8)
def _active_content_pattern(names: tuple[str, ...]) -> re.Pattern[bytes]:
    alternatives = b"|".join(re.escape(name.encode("ascii")) for name in sorted(names, key=len, reverse=True))
    return re.compile(rb"/(" + alternatives + rb")(?![A-Za-z0-9])")


def check_pdf_header(capture: StreamCapture, config: Settings) -> Optional[CheckFailure]:
    if not capture.header.startswith(PDF_MARKER):
        return CheckFailure(
            code=ErrorCode.MALFORMED_PDF_HEADER,
            message="Invalid PDF header: file must start with %PDF-",
            details={"header": capture.header[:8].hex()},
        )
    return None


def check_pdf_version(capture: StreamCapture, config: Settings) -> Optional[CheckFailure]:
    match = _VERSION_RE.match(capture.header)
    if match is None:
        return CheckFailure(
            code=ErrorCode.MALFORMED_PDF_HEADER,
            message="Invalid PDF header: version number is unreadable",
            details={"header": capture.header[:8].hex()},
        )
    version = (int(match.group(1)), int(match.group(2)))
    if version > config.max_pdf_version:
        return CheckFailure(
            code=ErrorCode.PDF_VERSION_UNSUPPORTED,
            message=f"Unsupported PDF version {version[0]}.{version[1]}",
            details={"version": f"{version[0]}.{version[1]}", "maxVersion": config.MAX_PDF_VERSION},
        )
    return None


def check_pdf_eof(capture: StreamCapture, config: Settings) -> Optional[CheckFailure]:
    if EOF_MARKER not in capture.trailer:
        return CheckFailure(
            code=ErrorCode.MALFORMED_PDF_EOF,
            message="Invalid PDF: missing %%EOF marker, file may be truncated or corrupted",
            details={"trailerBytes": len(capture.trailer)},
        )
    return None


def check_pdf_min_size(capture: StreamCapture, config: Settings) -> Optional[CheckFailure]:
    if capture.size < config.MIN_PDF_SIZE_BYTES:
        return CheckFailure(
            code=ErrorCode.STRUCTURAL_CORRUPTION,
            message="PDF file is too small to be valid",
            details={"size": capture.size, "minSize": config.MIN_PDF_SIZE_BYTES},
        )
    return None


def check_compression_bomb(capture: StreamCapture, config: Settings) -> Optional[CheckFailure]:
    """Estimate decompressed sizes from the number of compressed streams seen in the prefix."""
    stream_count = len(_COMPRESSED_STREAM_RE.findall(capture.prefix))
    if stream_count == 0:
        return None

    estimated_total = capture.size * config.ASSUMED_EXPANSION_RATIO
    # Extrapolate the stream count seen in the prefix to the whole file
    scanned = len(capture.prefix) or 1
    estimated_streams = stream_count * capture.size / scanned
    average_stream = estimated_total / estimated_streams

    details = {
        "compressedStreams": stream_count,
        "estimatedStreams": round(estimated_streams),
        "averageStreamBytes": int(average_stream),
        "estimatedTotalBytes": int(estimated_total),
        "maxStreamBytes": config.MAX_STREAM_DECOMPRESSED_BYTES,
        "maxTotalBytes": config.MAX_TOTAL_DECOMPRESSED_BYTES,
    }
    if average_stream > config.MAX_STREAM_DECOMPRESSED_BYTES:
        return CheckFailure(
            code=ErrorCode.SUSPECTED_COMPRESSION_BOMB,
            message="Suspected compression bomb: compressed streams are unusually large",
            details=details,
        )
    if estimated_total > config.MAX_TOTAL_DECOMPRESSED_BYTES:
        return CheckFailure(
            code=ErrorCode.SUSPECTED_COMPRESSION_BOMB,
            message="Suspected compression bomb: estimated decompressed size is too large",
            details=details,
        )
    return None


def check_polyglot(capture: StreamCapture, config: Settings) -> Optional[CheckFailure]:
    """Look for other container formats embedded after the PDF header."""
    body = capture.prefix[config.PDF_HEADER_REGION_BYTES:]
    for record in EMBEDDED_SIGNATURES:
        magic = record.parts[0][1]
        offset = body.find(magic)
        if offset != -1:
            return CheckFailure(
                code=ErrorCode.POLYGLOT_DETECTED,
                message=f"Polyglot file detected: embedded {record.description} found inside PDF",
                details={
                    "embeddedType": record.file_type,
                    "offset": offset + config.PDF_HEADER_REGION_BYTES,
                    "pattern": record.pattern,
                },
            )
        if capture.truncated and magic in capture.trailer:
            return CheckFailure(
                code=ErrorCode.POLYGLOT_DETECTED,
                message=f"Polyglot file detected: embedded {record.description} found inside PDF",
                details={"embeddedType": record.file_type, "region": "trailer", "pattern": record.pattern},
            )
    return None


def check_script_smuggling(capture: StreamCapture, config: Settings) -> Optional[CheckFailure]:
    for region in _scan_regions(capture):
        lowered = region.lower()
        for indicator in SCRIPT_INDICATORS:
            if indicator in lowered:
                return CheckFailure(
                    code=ErrorCode.SCRIPT_SMUGGLING_DETECTED,
                    message="PDF contains embedded script or HTML content",
                    details={"pattern": indicator.decode("ascii")},
                )
    return None


def check_active_content(capture: StreamCapture, config: Settings) -> Optional[CheckFailure]:
    if not config.PDF_BLOCKED_ACTIVE_CONTENT:
        return None
    pattern = _active_content_pattern(tuple(config.PDF_BLOCKED_ACTIVE_CONTENT))
    found: set[str] = set()
    for region in _scan_regions(capture):
        # Undo #xx escapes so /J#61vaScript reads as /JavaScript
        normalized = _NAME_ESCAPE_RE.sub(lambda m: bytes([int(m.group(1), 16)]), region)
        found.update(match.decode("ascii") for match in pattern.findall(normalized))
    if found:
        return CheckFailure(
            code=ErrorCode.ACTIVE_CONTENT_DETECTED,
            message="PDF contains active content that can run on open",
            details={"directives": sorted(found)},
        )
    return None


def check_structure(capture: StreamCapture, config: Settings) -> Optional[CheckFailure]:
    starts = len(_OBJ_START_RE.findall(capture.prefix))
    ends = len(_OBJ_END_RE.findall(capture.prefix))
    # One object may straddle the end of a truncated prefix
    tolerance = 1 if capture.truncated else 0
    if not 0 <= starts - ends <= tolerance:
        return CheckFailure(
            code=ErrorCode.STRUCTURAL_CORRUPTION,
            message="PDF structure is corrupted: unbalanced obj/endobj markers",
            details={"objects": starts, "endobjs": ends},
        )

    regions = (capture.prefix, capture.trailer)
    # A cross-reference stream stands in for both the xref table and the trailer
    xref_stream = any(_XREF_STREAM_RE.search(region) for region in regions)
    missing = []
    if not xref_stream and not any(_XREF_TABLE_RE.search(region) for region in regions):
        missing.append("xref")
    if not xref_stream and not any(b"trailer" in region for region in regions):
        missing.append("trailer")
    if missing:
        return CheckFailure(
            code=ErrorCode.STRUCTURAL_CORRUPTION,
            message="PDF structure is corrupted: missing " + " and ".join(missing),
            details={"missing": missing},
        )
    return None


# Cheapest first. A short file without %%EOF reports MALFORMED_PDF_EOF, not the size floor
PDF_CHECKS: tuple[tuple[str, PdfCheck], ...] = (
    ("pdf_header", check_pdf_header),
    ("pdf_version", check_pdf_version),
    ("pdf_eof", check_pdf_eof),
    ("pdf_min_size", check_pdf_min_size),
    ("compression_bomb", check_compression_bomb),
    ("polyglot", check_polyglot),
    ("script_smuggling", check_script_smuggling),
    ("active_content", check_active_content),
    ("structure", check_structure),
)


def run_pdf_checks(capture: StreamCapture, config: Settings) -> tuple[list[str], Optional[CheckFailure]]:
    """Run PDF_CHECKS in order; stop at the first failure."""
    performed = []
    for name, check in PDF_CHECKS:
        performed.append(name)
        failure = check(capture, config)
        if failure is not None:
            return performed, failure
    return performed, None
