"""
Magic-number table used to classify uploads by content.

Covers:
- Dangerous formats (executables, scripts, generic archives), checked first.
- Allowed document and image formats.
- Longer patterns searched inside PDFs to spot embedded containers.
- Declared MIME type to expected content format mapping.

Everything here is built once at import time and never mutated.
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Optional

OOXML_MARKER = b"[Content_Types].xml"


@dataclass(frozen=True)
class SignatureRecord:
    """A format tag and the byte parts that must all be present at their offsets."""

    file_type: str
    parts: tuple[tuple[int, bytes], ...]
    dangerous: bool = False
    description: str = ""

    def matches(self, header: bytes) -> bool:
        return all(header[offset:offset + len(magic)] == magic for offset, magic in self.parts)

    @property
    def pattern(self) -> str:
        return " + ".join(f"{magic!r}@{offset}" for offset, magic in self.parts)


def _sig(file_type: str, magic: bytes, offset: int = 0, *, dangerous: bool = False, description: str = "") -> SignatureRecord:
    return SignatureRecord(file_type, ((offset, magic),), dangerous, description)


DANGEROUS_SIGNATURES: tuple[SignatureRecord, ...] = (
    _sig("exe", b"MZ", dangerous=True, description="DOS/Windows executable"),
    _sig("elf", b"\x7fELF", dangerous=True, description="ELF executable"),
    _sig("macho", b"\xfe\xed\xfa\xce", dangerous=True, description="Mach-O executable (32-bit)"),
    _sig("macho", b"\xfe\xed\xfa\xcf", dangerous=True, description="Mach-O executable (64-bit)"),
    _sig("macho", b"\xce\xfa\xed\xfe", dangerous=True, description="Mach-O executable (32-bit, reversed)"),
    _sig("macho", b"\xcf\xfa\xed\xfe", dangerous=True, description="Mach-O executable (64-bit, reversed)"),
    _sig("java_class", b"\xca\xfe\xba\xbe", dangerous=True, description="Java class file"),
    _sig("script", b"#!", dangerous=True, description="Shell script"),
    _sig("zip", b"PK\x03\x04", dangerous=True, description="ZIP archive"),
    _sig("zip", b"PK\x05\x06", dangerous=True, description="ZIP archive (empty)"),
    _sig("rar", b"Rar!\x1a\x07", dangerous=True, description="RAR archive"),
    _sig("7z", b"7z\xbc\xaf\x27\x1c", dangerous=True, description="7-Zip archive"),
    _sig("gzip", b"\x1f\x8b", dangerous=True, description="GZIP archive"),
    _sig("lnk", b"L\x00\x00\x00\x01\x14\x02\x00", dangerous=True, description="Windows shortcut"),
)

ALLOWED_SIGNATURES: tuple[SignatureRecord, ...] = (
    _sig("pdf", b"%PDF", description="PDF document"),
    _sig("png", b"\x89PNG\r\n\x1a\n", description="PNG image"),
    _sig("jpeg", b"\xff\xd8\xff", description="JPEG image"),
    _sig("gif", b"GIF87a", description="GIF image"),
    _sig("gif", b"GIF89a", description="GIF image"),
    SignatureRecord("webp", ((0, b"RIFF"), (8, b"WEBP")), description="WebP image"),
    _sig("tiff", b"II*\x00", description="TIFF image (little-endian)"),
    _sig("tiff", b"MM\x00*", description="TIFF image (big-endian)"),
    _sig("heic", b"ftypheic", 4, description="HEIC image"),
    _sig("heic", b"ftypheix", 4, description="HEIC image"),
    _sig("heic", b"ftyphevc", 4, description="HEIC image sequence"),
    _sig("heic", b"ftypmif1", 4, description="HEIF image"),
    _sig("heic", b"ftypmsf1", 4, description="HEIF image sequence"),
    _sig("ole", b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1", description="OLE compound document"),
)

OOXML_SIGNATURE = _sig("ooxml", b"PK\x03\x04", description="Office Open XML document")

# Searched inside PDF bodies, so they are longer than the header signatures
EMBEDDED_SIGNATURES: tuple[SignatureRecord, ...] = (
    _sig("zip", b"PK\x03\x04", dangerous=True, description="ZIP local file header"),
    _sig("zip", b"PK\x01\x02", dangerous=True, description="ZIP central directory header"),
    _sig("elf", b"\x7fELF", dangerous=True, description="ELF executable"),
    _sig("exe", b"This program cannot be run in DOS mode", dangerous=True, description="Windows executable stub"),
    _sig("rar", b"Rar!\x1a\x07", dangerous=True, description="RAR archive"),
    _sig("7z", b"7z\xbc\xaf\x27\x1c", dangerous=True, description="7-Zip archive"),
    _sig("png", b"\x89PNG\r\n\x1a\n", description="PNG image"),
    _sig("gif", b"GIF89a", description="GIF image"),
    _sig("gif", b"GIF87a", description="GIF image"),
)

_OLE_FORMATS = frozenset({"ole"})
_OOXML_FORMATS = frozenset({"ooxml"})

MIME_TYPE_TO_FORMATS = MappingProxyType({
    "application/pdf": frozenset({"pdf"}),
    "application/x-pdf": frozenset({"pdf"}),
    "image/jpeg": frozenset({"jpeg"}),
    "image/jpg": frozenset({"jpeg"}),
    "image/png": frozenset({"png"}),
    "image/gif": frozenset({"gif"}),
    "image/webp": frozenset({"webp"}),
    "image/tiff": frozenset({"tiff"}),
    "image/heic": frozenset({"heic"}),
    "image/heif": frozenset({"heic"}),
    "application/msword": _OLE_FORMATS,
    "application/vnd.ms-excel": _OLE_FORMATS,
    "application/vnd.ms-powerpoint": _OLE_FORMATS,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": _OOXML_FORMATS,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": _OOXML_FORMATS,
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": _OOXML_FORMATS,
})


def is_ooxml_container(prefix: bytes) -> bool:
    """A ZIP is treated as an Office document only if it carries the OOXML content-types part."""
    return prefix.startswith(b"PK\x03\x04") and OOXML_MARKER in prefix


def detect_signature(header: bytes, prefix: bytes = b"") -> Optional[SignatureRecord]:
    """
    Classify content by its leading bytes.

    Dangerous signatures win over allowed ones, whatever the declared type.
    """
    for record in DANGEROUS_SIGNATURES:
        if record.matches(header):
            if record.file_type == "zip" and is_ooxml_container(prefix):
                return OOXML_SIGNATURE
            return record
    for record in ALLOWED_SIGNATURES:
        if record.matches(header):
            return record
    return None


def expected_formats(mime_type: str) -> frozenset[str]:
    return MIME_TYPE_TO_FORMATS.get(mime_type.lower(), frozenset())
