"""
Pytest configuration and fixtures.
"""
import io
import os
import sys
import tempfile
import zipfile
from datetime import datetime, timedelta, timezone

import pytest

import fitz  # PyMuPDF
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

# Add app to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.pdf.cms import SigningCredential
from app.pdf.sign import SignatureEmbedder
from app.services.staging import StagingStore

CERT_PASSWORD = "test-password"


def build_pdf_bytes(pages: int = 1, text: str = "Test Document") -> bytes:
    """Create a simple A4 PDF with PyMuPDF."""
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page(width=595, height=842)
        page.insert_text((50, 100), f"{text} - page {i + 1}", fontsize=24)
    data = doc.tobytes()
    doc.close()
    return data


def build_zip_bytes(entries: dict) -> bytes:
    """ZIP archive from {relative path: bytes}."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buffer.getvalue()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture(scope="session")
def pkcs12_bytes():
    """Self-signed RSA certificate and key in a password-protected PKCS#12."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "BR"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test Org"),
        x509.NameAttribute(NameOID.COMMON_NAME, "Test Signer"),
    ])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return pkcs12.serialize_key_and_certificates(
        b"test-signer",
        key,
        cert,
        None,
        serialization.BestAvailableEncryption(CERT_PASSWORD.encode()),
    )


@pytest.fixture
def credential(pkcs12_bytes):
    return SigningCredential(certificate=pkcs12_bytes, passphrase=CERT_PASSWORD)


@pytest.fixture
def wrong_password_credential(pkcs12_bytes):
    return SigningCredential(certificate=pkcs12_bytes, passphrase="not-the-password")


@pytest.fixture
def embedder():
    return SignatureEmbedder()


@pytest.fixture
def staging(temp_dir):
    return StagingStore(os.path.join(temp_dir, "staging"))


@pytest.fixture
def sample_pdf(temp_dir):
    """Create a simple test PDF on disk."""
    pdf_path = os.path.join(temp_dir, "test.pdf")
    with open(pdf_path, "wb") as f:
        f.write(build_pdf_bytes(pages=2))
    return pdf_path


@pytest.fixture
def broken_pdf(temp_dir):
    """A file with a .pdf name that is not a PDF."""
    path = os.path.join(temp_dir, "broken.pdf")
    with open(path, "wb") as f:
        f.write(b"this is not a pdf at all")
    return path


@pytest.fixture
def make_pdf_bytes():
    """Factory fixture for in-memory PDFs."""
    return build_pdf_bytes


@pytest.fixture
def make_zip_bytes():
    """Factory fixture for in-memory ZIP archives."""
    return build_zip_bytes
