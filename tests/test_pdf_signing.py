"""
Tests for PDF signing.
"""
import hashlib
import os
from datetime import datetime, timezone

import pytest

import fitz  # PyMuPDF

from app.pdf.errors import InvalidPassword, InvalidPDF, SigningErrorKind
from app.pdf.sign import SignatureEmbedder, StampSpec
from app.pdf.validate_signature import inspect_signature_structure


STAMP = "Assinado digitalmente por Test Signer"


def write_pdf(path: str, data: bytes) -> str:
    with open(path, "wb") as f:
        f.write(data)
    return path


def _sha256(path: str) -> str:
    with open(path, "rb") as f:
        return hashlib.sha256(f.read()).hexdigest()


class TestSignatureEmbedder:
    """Tests for stamping and signing."""

    def test_sign_produces_valid_structure(self, embedder, credential, sample_pdf):
        """ByteRange covers the file and Contents has the reserved size."""
        signed = embedder.sign(STAMP, credential, sample_pdf)

        structure = inspect_signature_structure(signed)
        assert structure.is_valid, structure.errors
        assert structure.byte_range_covers_file
        start1, len1, start2, len2 = structure.byte_range
        assert start1 == 0
        assert len1 + (start2 - len1) + len2 == len(signed)
        assert structure.contents_hex_length == 2770 * 2
        assert structure.sub_filter_value == "adbe.pkcs7.detached"
        assert structure.signature_field_count == 1

    def test_sign_draws_stamp_on_first_page(self, embedder, credential, sample_pdf):
        signed = embedder.sign(STAMP, credential, sample_pdf)

        doc = fitz.open(stream=signed, filetype="pdf")
        try:
            assert doc.page_count == 2
            assert STAMP in doc[0].get_text()
            assert STAMP not in doc[1].get_text()
        finally:
            doc.close()

    def test_signature_dictionary_entries(self, embedder, credential, sample_pdf):
        signed_at = datetime(2024, 1, 13, 12, 0, 0, tzinfo=timezone.utc)
        signed = embedder.sign(STAMP, credential, sample_pdf, signed_at=signed_at)

        assert b"/Adobe.PPKLite" in signed
        assert b"(D:20240113120000+00'00')" in signed
        assert b"(Assinatura digital)" in signed
        assert b"(Signature1)" in signed

    def test_sign_file_leaves_input_untouched(self, embedder, credential, sample_pdf, temp_dir):
        before = _sha256(sample_pdf)
        output_path = os.path.join(temp_dir, "out", "nested", "signed.pdf")

        result = embedder.sign_file(STAMP, credential, sample_pdf, output_path)

        assert result == output_path
        assert os.path.exists(output_path)
        assert _sha256(sample_pdf) == before
        with open(output_path, "rb") as f:
            assert inspect_signature_structure(f.read()).is_valid

    def test_resign_adds_one_field(self, embedder, credential, sample_pdf, temp_dir):
        """Signing an already signed PDF appends a second, uniquely named field."""
        first = embedder.sign_file(STAMP, credential, sample_pdf, os.path.join(temp_dir, "first.pdf"))
        second = embedder.sign(STAMP, credential, first)

        structure = inspect_signature_structure(second)
        assert structure.signature_field_count == 2
        assert structure.byte_range_covers_file
        assert b"(Signature1)" in second
        assert b"(Signature2)" in second

    def test_existing_form_fields_preserved(self, embedder, credential, temp_dir):
        doc = fitz.open()
        page = doc.new_page(width=595, height=842)
        widget = fitz.Widget()
        widget.field_type = fitz.PDF_WIDGET_TYPE_TEXT
        widget.field_name = "customer"
        widget.field_value = "ACME"
        widget.rect = fitz.Rect(50, 200, 250, 230)
        page.add_widget(widget)
        path = write_pdf(os.path.join(temp_dir, "form.pdf"), doc.tobytes())
        doc.close()

        signed = embedder.sign(STAMP, credential, path)

        assert inspect_signature_structure(signed).signature_field_count == 1
        out = fitz.open(stream=signed, filetype="pdf")
        try:
            names = [w.field_name for w in out[0].widgets()]
            assert "customer" in names
        finally:
            out.close()

    def test_owner_password_only_pdf_is_signed_unencrypted(self, embedder, credential, temp_dir, make_pdf_bytes):
        doc = fitz.open(stream=make_pdf_bytes(), filetype="pdf")
        data = doc.tobytes(encryption=fitz.PDF_ENCRYPT_AES_256, owner_pw="owner", user_pw="")
        doc.close()
        path = write_pdf(os.path.join(temp_dir, "owner.pdf"), data)

        signed = embedder.sign(STAMP, credential, path)

        out = fitz.open(stream=signed, filetype="pdf")
        try:
            assert not out.needs_pass
            assert out.xref_get_key(-1, "Encrypt")[0] == "null"
        finally:
            out.close()
        assert inspect_signature_structure(signed).is_valid

    def test_user_password_pdf_rejected(self, embedder, credential, temp_dir, make_pdf_bytes):
        doc = fitz.open(stream=make_pdf_bytes(), filetype="pdf")
        data = doc.tobytes(encryption=fitz.PDF_ENCRYPT_AES_256, owner_pw="owner", user_pw="user")
        doc.close()
        path = write_pdf(os.path.join(temp_dir, "locked.pdf"), data)

        with pytest.raises(InvalidPDF):
            embedder.sign(STAMP, credential, path)

    def test_wrong_password(self, embedder, wrong_password_credential, sample_pdf):
        with pytest.raises(InvalidPassword) as exc_info:
            embedder.sign(STAMP, wrong_password_credential, sample_pdf)
        assert exc_info.value.kind == SigningErrorKind.INVALID_PASSWORD

    def test_invalid_pdf(self, embedder, credential, broken_pdf):
        with pytest.raises(InvalidPDF):
            embedder.sign(STAMP, credential, broken_pdf)

    def test_missing_input_raises_os_error(self, embedder, credential, temp_dir):
        with pytest.raises(OSError):
            embedder.sign(STAMP, credential, os.path.join(temp_dir, "missing.pdf"))

    def test_custom_field_prefix_and_placeholder(self, credential, sample_pdf):
        embedder = SignatureEmbedder(field_prefix="Sig", placeholder_bytes=4096)

        signed = embedder.sign(STAMP, credential, sample_pdf)

        assert b"(Sig1)" in signed
        assert inspect_signature_structure(signed).contents_hex_length == 8192


class TestStampSpec:
    """Tests for stamp defaults."""

    def test_defaults(self):
        stamp = StampSpec(text="x")
        assert (stamp.x, stamp.y) == (1, 8)
        assert stamp.font_size == 8
        assert stamp.fontname == "helv"
        assert stamp.color == (0.128, 0.128, 0.128)
