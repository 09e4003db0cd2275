import asyncio
import logging

import pytest
from fastapi.testclient import TestClient

from conftest import make_pdf
from upload_validator.api import upload
from upload_validator.api.body_limit import RequestBodyTooLarge, UploadSizeLimitMiddleware
from upload_validator.api.main import app
from upload_validator.core import rate_limit
from upload_validator.core.config import settings
from upload_validator.models.api_models import LeakyBucketConfig


@pytest.fixture
def client():
    return TestClient(app)


def _upload(client: TestClient, file_name: str, body: bytes, content_type: str = "application/pdf"):
    return client.post("/validate-file-upload", files={"file": (file_name, body, content_type)})


def _stream(client: TestClient, file_name: str, body: bytes, content_type: str = "application/pdf"):
    headers = {"x-file-name": file_name, "content-type": content_type}
    return client.post("/validate-file-upload/stream", content=body, headers=headers)


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_valid_pdf_accepted(client):
    body = make_pdf()
    resp = _upload(client, "birth_certificate.pdf", body)
    assert resp.status_code == 200
    data = resp.json()
    assert data["valid"] is True
    file_info = data["file"]
    assert file_info["name"] == "birth_certificate.pdf"
    assert file_info["originalName"] == "birth_certificate.pdf"
    assert file_info["size"] == len(body)
    assert file_info["type"] == "application/pdf"
    assert file_info["detectedType"] == "pdf"
    assert file_info["validations"] == {
        "sizeCheck": True,
        "mimeTypeCheck": True,
        "magicNumberCheck": True,
        "crossValidation": True,
        "securityScan": True,
        "polyglotCheck": True,
        "structureIntegrity": True,
    }


def test_truncated_pdf_rejected_with_eof_message(client):
    resp = _upload(client, "short.pdf", b"%PDF-1.4\n" + b"x" * 41)
    assert resp.status_code == 400
    data = resp.json()
    assert data["valid"] is False
    assert data["code"] == "MALFORMED_PDF_EOF"
    assert "%%EOF" in data["error"]


def test_executable_disguised_as_png_blocked_and_audited(client, caplog):
    with caplog.at_level(logging.WARNING, logger="upload_validator.audit"):
        resp = _upload(client, "photo.png", b"MZ\x90\x00\x03" + b"\x00" * 500, "image/png")
    assert resp.status_code == 403
    data = resp.json()
    assert data["valid"] is False
    assert data["code"] == "DANGEROUS_FILE_TYPE"
    assert "Dangerous file type" in data["error"]
    assert data["details"]["declaredType"] == "image/png"
    assert any("DANGEROUS_FILE_TYPE" in record.getMessage() for record in caplog.records)


def test_polyglot_pdf_rejected(client):
    resp = _upload(client, "forms.pdf", make_pdf(body=b"(PK\x03\x04 zip inside)"))
    assert resp.status_code == 403
    assert resp.json()["code"] == "POLYGLOT_DETECTED"


def test_empty_file_rejected(client):
    resp = _upload(client, "empty.pdf", b"")
    assert resp.status_code == 400
    assert resp.json()["code"] == "EMPTY_FILE"


def test_non_allowed_type_rejected(client):
    resp = _upload(client, "bad.txt", b"not pdf", content_type="text/plain")
    assert resp.status_code == 415
    assert resp.json()["code"] == "MIME_TYPE_NOT_ALLOWED"


def test_oversize_rejected(client, monkeypatch):
    monkeypatch.setattr(settings, "MAX_PDF_SIZE_BYTES", 256)
    resp = _upload(client, "big.pdf", make_pdf() + b"\n" * 512)
    assert resp.status_code == 413
    data = resp.json()
    assert data["code"] == "FILE_TOO_LARGE"
    assert data["details"]["limit"] == 256


def test_missing_file_field(client):
    resp = client.post("/validate-file-upload", data={"document": "x"})
    assert resp.status_code == 400
    assert resp.json() == {"valid": False, "error": "No file provided", "code": "NO_FILE_PROVIDED"}


def test_filename_is_sanitized(client):
    resp = _upload(client, "../../secret.pdf", make_pdf())
    assert resp.status_code == 200
    file_info = resp.json()["file"]
    assert file_info["name"] == "secret.pdf"
    assert file_info["originalName"] == "../../secret.pdf"


def test_streamed_upload_accepted(client):
    resp = _stream(client, "passport.pdf", make_pdf())
    assert resp.status_code == 200
    assert resp.json()["file"]["detectedType"] == "pdf"


def test_streamed_upload_requires_file_name(client):
    resp = client.post("/validate-file-upload/stream", content=make_pdf(), headers={"content-type": "application/pdf"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "NO_FILE_PROVIDED"


def test_streamed_oversize_rejected_while_reading(client, monkeypatch):
    monkeypatch.setattr(settings, "MAX_PDF_SIZE_BYTES", 100)
    resp = _stream(client, "huge.pdf", make_pdf())
    assert resp.status_code == 413
    data = resp.json()
    assert data["code"] == "FILE_TOO_LARGE"
    assert data["details"]["limit"] == 100


def test_multipart_over_declared_length_rejected_before_parsing(client, monkeypatch):
    monkeypatch.setattr(settings, "MAX_FILE_SIZE_BYTES", 256)
    monkeypatch.setattr(settings, "MAX_PDF_SIZE_BYTES", 256)
    monkeypatch.setattr(settings, "MULTIPART_OVERHEAD_BYTES", 512)
    resp = _upload(client, "huge.pdf", make_pdf() + b"\n" * 2048)
    assert resp.status_code == 413
    data = resp.json()
    assert data["valid"] is False
    assert data["code"] == "FILE_TOO_LARGE"
    assert data["details"]["declared"] is True
    assert data["details"]["limit"] == 768


def test_body_without_length_cut_off_at_ceiling(monkeypatch):
    monkeypatch.setattr(settings, "MAX_FILE_SIZE_BYTES", 100)
    monkeypatch.setattr(settings, "MAX_PDF_SIZE_BYTES", 100)
    monkeypatch.setattr(settings, "MULTIPART_OVERHEAD_BYTES", 0)
    drained = []

    async def drain(scope, receive, send):
        while True:
            message = await receive()
            drained.append(len(message["body"]))
            if not message["more_body"]:
                break

    messages = iter([{"type": "http.request", "body": b"x" * 40, "more_body": True}] * 10)

    async def receive():
        return next(messages)

    async def send(message):
        pass

    middleware = UploadSizeLimitMiddleware(drain, paths=["/validate-file-upload"])
    scope = {"type": "http", "method": "POST", "path": "/validate-file-upload", "headers": []}
    with pytest.raises(RequestBodyTooLarge) as excinfo:
        asyncio.run(middleware(scope, receive, send))
    assert excinfo.value.status_code == 413
    assert drained == [40, 40]


def test_validator_fault_reported_as_internal_error(client, monkeypatch):
    async def broken(upload_file, chunk_size):
        yield b"%PDF-1.4"
        raise OSError("disk gone")

    monkeypatch.setattr(upload, "iter_upload_file", broken)
    resp = _upload(client, "scan.pdf", make_pdf())
    assert resp.status_code == 500
    assert resp.json()["code"] == "INTERNAL_ERROR"


def test_cors_preflight(client):
    resp = client.options(
        "/validate-file-upload",
        headers={
            "Origin": "https://portal.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "content-type",
        },
    )
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] == "*"
    assert "POST" in resp.headers["access-control-allow-methods"]


def test_rate_limit_returns_busy(client, monkeypatch):
    monkeypatch.setattr(rate_limit, "bucket_cfg", LeakyBucketConfig(capacity=1, leak_rate=0.001))
    first = _upload(client, "one.pdf", make_pdf())
    second = _upload(client, "two.pdf", make_pdf())
    assert first.status_code == 200
    assert second.status_code == 503
    assert second.json() == {"valid": False, "error": "Server is Busy"}
