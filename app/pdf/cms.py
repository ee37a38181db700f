"""
Detached CMS/PKCS#7 signing over a prepared PDF buffer.

The embedder hands over a fully serialized PDF that contains exactly one
signature dictionary with placeholder markers:

    /ByteRange [0 /********** /********** /**********]
    /Contents <0000...0000>

This module loads the PKCS#12 credential, patches the ByteRange with the real
offsets (same width, padded with spaces), signs the covered bytes and writes
the DER signature into the Contents placeholder without shifting any byte.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import List, Tuple

from asn1crypto import pkcs12 as asn1_pkcs12
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import pkcs7, pkcs12

from app.pdf.errors import (
    InvalidCertificate,
    InvalidPassword,
    InvalidSignature,
    InvalidSignatureField,
)
from app.utils.logging import fingerprint

logger = logging.getLogger(__name__)

BYTE_RANGE_MARKER = "*" * 10
BYTE_RANGE_PLACEHOLDER = f"[0 /{BYTE_RANGE_MARKER} /{BYTE_RANGE_MARKER} /{BYTE_RANGE_MARKER}]"

_BYTE_RANGE_RE = re.compile(
    rb"/ByteRange\s*(\[\s*0\s*/\*{10}\s*/\*{10}\s*/\*{10}\s*\])"
)
_CONTENTS_RE = re.compile(rb"/Contents\s*(<[0-9A-Fa-f\s]*>)")
_OBJ_START_RE = re.compile(rb"\d+\s+\d+\s+obj\b")


@dataclass(frozen=True)
class SigningCredential:
    """PKCS#12 container plus passphrase. Both are kept out of repr()."""
    certificate: bytes = field(repr=False)
    passphrase: str = field(default="", repr=False)

    @classmethod
    def from_file(cls, path: str, passphrase: str) -> "SigningCredential":
        with open(path, "rb") as f:
            return cls(certificate=f.read(), passphrase=passphrase)

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.certificate, "cert_")


@dataclass
class LoadedCredential:
    key: object
    certificate: x509.Certificate
    chain: List[x509.Certificate]


@dataclass
class SignatureSlots:
    """
    Byte offsets of the placeholders inside a prepared PDF.

    byte_range_span covers the ByteRange array including its brackets,
    contents_span covers the Contents hex string including '<' and '>'.
    """
    byte_range_span: Tuple[int, int]
    contents_span: Tuple[int, int]

    @property
    def gap_start(self) -> int:
        return self.contents_span[0]

    @property
    def gap_end(self) -> int:
        return self.contents_span[1]

    @property
    def capacity_hex(self) -> int:
        return self.gap_end - self.gap_start - 2


def load_credential(credential: SigningCredential) -> LoadedCredential:
    """
    Open a PKCS#12 container.

    Raises:
        InvalidCertificate: container unreadable, or lacks a usable key/certificate
        InvalidPassword: container is well-formed but cannot be decrypted
    """
    data = credential.certificate
    try:
        pfx = asn1_pkcs12.Pfx.load(data, strict=True)
        pfx["version"].native
        pfx["auth_safe"]["content_type"].native
    except (ValueError, TypeError, KeyError) as e:
        raise InvalidCertificate(f"Invalid certificate: not a PKCS#12 container ({e})")

    password = credential.passphrase.encode("utf-8") if credential.passphrase else None
    try:
        key, certificate, chain = pkcs12.load_key_and_certificates(data, password)
    except ValueError as e:
        logger.info(f"PKCS#12 decryption failed for {credential.fingerprint}: {e}")
        raise InvalidPassword()

    if key is None or certificate is None:
        raise InvalidCertificate("Invalid certificate: container holds no private key or certificate")

    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise InvalidCertificate(
            f"Invalid certificate: unsupported key type {type(key).__name__}"
        )

    return LoadedCredential(key=key, certificate=certificate, chain=list(chain or []))


def locate_placeholders(pdf: bytes) -> SignatureSlots:
    """
    Find the ByteRange and Contents placeholders of the pending signature.

    Raises:
        InvalidSignatureField: markers missing, duplicated, or not in one object
    """
    matches = list(_BYTE_RANGE_RE.finditer(pdf))
    if not matches:
        raise InvalidSignatureField("Invalid signature field: ByteRange placeholder not found")
    if len(matches) > 1:
        raise InvalidSignatureField(
            f"Invalid signature field: {len(matches)} ByteRange placeholders found, expected 1"
        )
    br = matches[0]

    obj_start = 0
    for m in _OBJ_START_RE.finditer(pdf, 0, br.start()):
        obj_start = m.start()
    obj_end = pdf.find(b"endobj", br.end())
    if obj_end == -1:
        obj_end = len(pdf)

    contents = _CONTENTS_RE.search(pdf, obj_start, obj_end)
    if contents is None:
        raise InvalidSignatureField(
            "Invalid signature field: Contents placeholder not found in signature dictionary"
        )

    slots = SignatureSlots(
        byte_range_span=(br.start(1), br.end(1)),
        contents_span=(contents.start(1), contents.end(1)),
    )
    if slots.capacity_hex < 2:
        raise InvalidSignatureField("Invalid signature field: Contents placeholder is empty")
    return slots


def compute_byte_range(pdf_length: int, slots: SignatureSlots) -> Tuple[int, int, int, int]:
    """[0, gap_start, gap_end, remaining]: the two covered spans around Contents."""
    return (0, slots.gap_start, slots.gap_end, pdf_length - slots.gap_end)


def patch_byte_range(pdf: bytes, slots: SignatureSlots) -> bytes:
    """Overwrite the ByteRange placeholder with real offsets, keeping its width."""
    start, end = slots.byte_range_span
    width = end - start
    values = compute_byte_range(len(pdf), slots)
    text = "[" + " ".join(str(v) for v in values) + "]"
    if len(text) > width:
        raise InvalidSignatureField(
            f"Invalid signature field: ByteRange {text} does not fit placeholder of width {width}"
        )
    text = text[:-1] + " " * (width - len(text)) + "]"
    return pdf[:start] + text.encode("ascii") + pdf[end:]


def create_detached_signature(content: bytes, loaded: LoadedCredential) -> bytes:
    """SHA-256 detached CMS signature in DER, signer certificate and chain embedded."""
    builder = (
        pkcs7.PKCS7SignatureBuilder()
        .set_data(content)
        .add_signer(loaded.certificate, loaded.key, hashes.SHA256())
    )
    for ca in loaded.chain:
        builder = builder.add_certificate(ca)

    try:
        return builder.sign(
            serialization.Encoding.DER,
            [pkcs7.PKCS7Options.DetachedSignature, pkcs7.PKCS7Options.Binary],
        )
    except (ValueError, TypeError) as e:
        raise InvalidSignature(f"Invalid signature: {e}")


def embed_signature(pdf: bytes, slots: SignatureSlots, signature: bytes) -> bytes:
    """Write the signature into the Contents placeholder, zero-padded to its length."""
    hex_sig = signature.hex().upper()
    capacity = slots.capacity_hex
    if len(hex_sig) > capacity:
        raise InvalidSignature(
            f"Invalid signature: {len(signature)} bytes exceed the reserved "
            f"{capacity // 2} byte placeholder"
        )
    padded = hex_sig + "0" * (capacity - len(hex_sig))
    return pdf[:slots.gap_start + 1] + padded.encode("ascii") + pdf[slots.gap_end - 1:]


def sign_pdf(pdf: bytes, credential: SigningCredential) -> bytes:
    """
    Sign a prepared PDF buffer in place.

    Args:
        pdf: Serialized PDF carrying exactly one pending signature dictionary
        credential: PKCS#12 credential

    Returns:
        Signed PDF bytes, same length as the input
    """
    loaded = load_credential(credential)
    slots = locate_placeholders(pdf)
    patched = patch_byte_range(pdf, slots)

    signed_content = patched[:slots.gap_start] + patched[slots.gap_end:]
    signature = create_detached_signature(signed_content, loaded)
    result = embed_signature(patched, slots, signature)

    logger.debug(
        f"CMS signature {len(signature)} bytes, ByteRange "
        f"{list(compute_byte_range(len(pdf), slots))}"
    )
    return result
