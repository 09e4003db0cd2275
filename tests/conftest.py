import pytest

from upload_validator.core.config import Settings
from upload_validator.core import rate_limit


def make_pdf(body: bytes = b"", version: bytes = b"1.4", eof: bool = True) -> bytes:
    """Build a small, well-formed PDF with an optional extra object body."""
    parts = [
        b"%PDF-" + version + b"\n%\xe2\xe3\xcf\xd3\n",
        b"1 0 obj\n<< /Type /Catalog /Pages 2 0 R >>\nendobj\n",
        b"2 0 obj\n<< /Type /Pages /Kids [3 0 R] /Count 1 >>\nendobj\n",
        b"3 0 obj\n<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>\nendobj\n",
    ]
    if body:
        parts.append(b"4 0 obj\n" + body + b"\nendobj\n")
    parts.append(
        b"xref\n0 4\n0000000000 65535 f \n"
        b"trailer\n<< /Size 4 /Root 1 0 R >>\nstartxref\n9\n"
    )
    if eof:
        parts.append(b"%%EOF\n")
    return b"".join(parts)


@pytest.fixture
def config():
    return Settings(_env_file=None)


@pytest.fixture(autouse=True)
def reset_rate_limit():
    # Reset leaky bucket state between tests
    rate_limit.reset_bucket()
    yield
