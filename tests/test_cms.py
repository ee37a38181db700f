"""
Tests for the detached CMS signing primitive.
"""
import hashlib

import pytest
from asn1crypto import cms as asn1_cms

from app.pdf.cms import (
    BYTE_RANGE_PLACEHOLDER,
    SigningCredential,
    compute_byte_range,
    embed_signature,
    load_credential,
    locate_placeholders,
    patch_byte_range,
    sign_pdf,
)
from app.pdf.errors import (
    InvalidCertificate,
    InvalidPassword,
    InvalidSignature,
    InvalidSignatureField,
    SigningErrorKind,
)


def prepared_buffer(hex_digits: int = 5540, byte_range: str = BYTE_RANGE_PLACEHOLDER) -> bytes:
    """Minimal buffer shaped like a serialized PDF with one pending signature."""
    return (
        b"%PDF-1.7\n"
        b"1 0 obj\n<< /Type /Catalog >>\nendobj\n"
        b"2 0 obj\n<< /Type /Sig /Filter /Adobe.PPKLite /SubFilter /adbe.pkcs7.detached"
        b" /ByteRange " + byte_range.encode() +
        b" /Contents <" + b"0" * hex_digits + b"> >>\nendobj\n"
        b"trailer\n<< /Root 1 0 R >>\n%%EOF\n"
    )


class TestLoadCredential:
    """Tests for PKCS#12 loading."""

    def test_valid_credential(self, credential):
        loaded = load_credential(credential)
        assert loaded.key is not None
        assert "CN=Test Signer" in loaded.certificate.subject.rfc4514_string()

    def test_wrong_password(self, wrong_password_credential):
        with pytest.raises(InvalidPassword) as exc_info:
            load_credential(wrong_password_credential)
        assert exc_info.value.kind == SigningErrorKind.INVALID_PASSWORD

    def test_not_a_pkcs12(self):
        with pytest.raises(InvalidCertificate):
            load_credential(SigningCredential(certificate=b"garbage bytes", passphrase="x"))

    def test_credential_repr_hides_secrets(self, credential):
        text = repr(credential)
        assert "test-password" not in text
        assert credential.fingerprint.startswith("cert_")
        assert len(credential.fingerprint) == len("cert_") + 8


class TestPlaceholders:
    """Tests for placeholder location and ByteRange patching."""

    def test_locate_placeholders(self):
        pdf = prepared_buffer(hex_digits=100)
        slots = locate_placeholders(pdf)

        assert pdf[slots.gap_start:slots.gap_start + 1] == b"<"
        assert pdf[slots.gap_end - 1:slots.gap_end] == b">"
        assert slots.capacity_hex == 100
        start, end = slots.byte_range_span
        assert pdf[start:end] == BYTE_RANGE_PLACEHOLDER.encode()

    def test_locate_tight_formatting(self):
        pdf = prepared_buffer(hex_digits=10, byte_range="[0/**********/**********/**********]")
        slots = locate_placeholders(pdf)
        assert slots.capacity_hex == 10

    def test_missing_placeholder(self):
        pdf = prepared_buffer(byte_range="[0 10 20 30]")
        with pytest.raises(InvalidSignatureField):
            locate_placeholders(pdf)

    def test_duplicate_placeholder(self):
        pdf = prepared_buffer(hex_digits=10) + prepared_buffer(hex_digits=10)
        with pytest.raises(InvalidSignatureField):
            locate_placeholders(pdf)

    def test_patch_byte_range_keeps_length(self):
        pdf = prepared_buffer(hex_digits=100)
        slots = locate_placeholders(pdf)

        patched = patch_byte_range(pdf, slots)

        assert len(patched) == len(pdf)
        start, end = slots.byte_range_span
        values = [int(v) for v in patched[start + 1:end - 1].split()]
        assert values == list(compute_byte_range(len(pdf), slots))
        assert values[0] == 0
        assert values[1] + (values[2] - values[1]) + values[3] == len(pdf)

    def test_embed_signature_pads_with_zeros(self):
        pdf = prepared_buffer(hex_digits=20)
        slots = locate_placeholders(pdf)

        result = embed_signature(pdf, slots, b"\xab\xcd")

        assert len(result) == len(pdf)
        assert result[slots.gap_start:slots.gap_end] == b"<ABCD" + b"0" * 16 + b">"

    def test_embed_signature_too_large(self):
        pdf = prepared_buffer(hex_digits=4)
        slots = locate_placeholders(pdf)
        with pytest.raises(InvalidSignature):
            embed_signature(pdf, slots, b"\x01\x02\x03")


class TestSignPdf:
    """Tests for the end-to-end primitive over a prepared buffer."""

    def test_signature_covers_everything_but_contents(self, credential):
        pdf = prepared_buffer()
        slots = locate_placeholders(pdf)

        signed = sign_pdf(pdf, credential)

        assert len(signed) == len(pdf)
        covered = signed[:slots.gap_start] + signed[slots.gap_end:]
        der = bytes.fromhex(signed[slots.gap_start + 1:slots.gap_end - 1].decode())

        info = asn1_cms.ContentInfo.load(der, strict=False)
        assert info["content_type"].native == "signed_data"
        signed_data = info["content"]
        # Detached: no encapsulated content
        assert signed_data["encap_content_info"]["content"].native is None

        signer = signed_data["signer_infos"][0]
        assert signer["digest_algorithm"]["algorithm"].native == "sha256"
        digests = [
            attr["values"][0].native
            for attr in signer["signed_attrs"]
            if attr["type"].native == "message_digest"
        ]
        assert digests == [hashlib.sha256(covered).digest()]

    def test_placeholder_too_small(self, credential):
        with pytest.raises(InvalidSignature):
            sign_pdf(prepared_buffer(hex_digits=200), credential)

    def test_wrong_password_before_any_patch(self, wrong_password_credential):
        with pytest.raises(InvalidPassword):
            sign_pdf(prepared_buffer(), wrong_password_credential)
