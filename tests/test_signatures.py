import pytest

from upload_validator.core.signatures import (
    ALLOWED_SIGNATURES,
    DANGEROUS_SIGNATURES,
    MIME_TYPE_TO_FORMATS,
    detect_signature,
    expected_formats,
)


@pytest.mark.parametrize(
    "header, expected",
    [
        (b"%PDF-1.7\n", "pdf"),
        (b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR", "png"),
        (b"\xff\xd8\xff\xe0\x00\x10JFIF", "jpeg"),
        (b"GIF89a\x01\x00", "gif"),
        (b"RIFF\x24\x00\x00\x00WEBPVP8 ", "webp"),
        (b"II*\x00\x08\x00\x00\x00", "tiff"),
        (b"\x00\x00\x00\x18ftypheic\x00\x00", "heic"),
        (b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1\x00", "ole"),
    ],
)
def test_allowed_formats_detected(header, expected):
    record = detect_signature(header)
    assert record is not None
    assert record.file_type == expected
    assert not record.dangerous


@pytest.mark.parametrize(
    "header, expected",
    [
        (b"MZ\x90\x00\x03\x00", "exe"),
        (b"\x7fELF\x02\x01\x01", "elf"),
        (b"#!/bin/sh\n", "script"),
        (b"PK\x03\x04\x14\x00", "zip"),
        (b"Rar!\x1a\x07\x00", "rar"),
        (b"\x1f\x8b\x08\x00", "gzip"),
        (b"\xca\xfe\xba\xbe\x00\x00", "java_class"),
    ],
)
def test_dangerous_formats_detected(header, expected):
    record = detect_signature(header)
    assert record is not None
    assert record.file_type == expected
    assert record.dangerous


def test_riff_without_webp_marker_is_not_webp():
    assert detect_signature(b"RIFF\x24\x00\x00\x00WAVEfmt ") is None


def test_zip_with_content_types_part_is_ooxml():
    prefix = b"PK\x03\x04\x14\x00\x06\x00" + b"\x00" * 22 + b"[Content_Types].xml" + b"\x00" * 40
    record = detect_signature(prefix[:16], prefix)
    assert record.file_type == "ooxml"
    assert not record.dangerous


def test_plain_zip_stays_dangerous_even_with_prefix():
    prefix = b"PK\x03\x04\x14\x00" + b"\x00" * 24 + b"payload.exe"
    record = detect_signature(prefix[:16], prefix)
    assert record.file_type == "zip"
    assert record.dangerous


def test_unknown_content_returns_none():
    assert detect_signature(b"hello world, plain text") is None
    assert detect_signature(b"") is None


def test_tables_are_read_only():
    with pytest.raises(TypeError):
        MIME_TYPE_TO_FORMATS["text/plain"] = frozenset({"txt"})
    assert isinstance(DANGEROUS_SIGNATURES, tuple)
    assert isinstance(ALLOWED_SIGNATURES, tuple)


def test_expected_formats_is_case_insensitive():
    assert expected_formats("Application/PDF") == {"pdf"}
    assert expected_formats("image/jpg") == {"jpeg"}
    assert expected_formats("text/plain") == frozenset()
