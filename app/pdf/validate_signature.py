"""
PDF Signature Structure Inspection.

Checks that a signed PDF carries the elements a PKCS#7 validator needs to
find and check the signature:

1. /FT /Sig - Signature field exists
2. /Type /Sig - Signature object present
3. /ByteRange - Data range that was signed, covering the whole file
4. /Contents - CMS/PKCS#7 signature blob
5. /SubFilter - Either /adbe.pkcs7.detached or /ETSI.CAdES.detached

This is a structural check only - it does not verify cryptographic validity.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

VALID_SUB_FILTERS = (
    "adbe.pkcs7.detached",
    "adbe.pkcs7.sha1",  # Legacy, but valid
    "ETSI.CAdES.detached",
)

_SIG_FIELD_RE = re.compile(rb"/FT\s*/Sig\b")
_SIG_OBJECT_RE = re.compile(rb"/Type\s*/Sig\b")
_BYTE_RANGE_RE = re.compile(rb"/ByteRange\s*\[\s*(\d+)\s+(\d+)\s+(\d+)\s+(\d+)\s*\]")
_SUB_FILTER_RE = re.compile(rb"/SubFilter\s*/([A-Za-z0-9._]+)")


@dataclass
class SignatureStructure:
    """Result of PDF signature structure inspection."""
    is_valid: bool
    signature_field_count: int  # /FT /Sig
    has_signature_object: bool  # /Type /Sig
    byte_range: Optional[Tuple[int, int, int, int]]  # last ByteRange in the file
    byte_range_covers_file: bool
    contents_hex_length: Optional[int]  # hex digits between '<' and '>'
    sub_filter_value: Optional[str]
    file_length: int
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def inspect_signature_structure(pdf_bytes: bytes) -> SignatureStructure:
    """
    Inspect the signature structure of a PDF held in memory.

    The last ByteRange in the file belongs to the most recent signature.
    It must describe two spans around the /Contents hex string whose lengths,
    plus the gap, add up to the file length.

    Args:
        pdf_bytes: Signed PDF content

    Returns:
        SignatureStructure with inspection details
    """
    errors: List[str] = []
    warnings: List[str] = []
    file_length = len(pdf_bytes)

    field_count = len(_SIG_FIELD_RE.findall(pdf_bytes))
    if not field_count:
        errors.append("No signature field found (/FT /Sig)")

    has_sig_object = _SIG_OBJECT_RE.search(pdf_bytes) is not None
    if not has_sig_object:
        errors.append("No signature object found (/Type /Sig)")

    byte_range = None
    covers_file = False
    contents_hex_length = None

    ranges = _BYTE_RANGE_RE.findall(pdf_bytes)
    if not ranges:
        errors.append("No ByteRange found - signature may not be valid")
    else:
        byte_range = tuple(int(v) for v in ranges[-1])
        start1, len1, start2, len2 = byte_range
        gap = start2 - len1
        covers_file = (
            start1 == 0
            and gap > 0
            and len1 + gap + len2 == file_length
        )
        if not covers_file:
            errors.append(
                f"ByteRange {list(byte_range)} does not cover the file ({file_length} bytes)"
            )
        elif pdf_bytes[len1:len1 + 1] != b"<" or pdf_bytes[start2 - 1:start2] != b">":
            covers_file = False
            errors.append("ByteRange gap does not match a /Contents hex string")
        else:
            contents = pdf_bytes[len1 + 1:start2 - 1]
            if re.fullmatch(rb"[0-9A-Fa-f]*", contents) is None:
                errors.append("Contents is not a hex string")
            else:
                contents_hex_length = len(contents)
                if not contents.strip(b"0"):
                    errors.append("Contents placeholder was never filled")

    sub_filter_value = None
    sub_filters = _SUB_FILTER_RE.findall(pdf_bytes)
    if sub_filters:
        sub_filter_value = sub_filters[-1].decode("ascii")
        if sub_filter_value not in VALID_SUB_FILTERS:
            warnings.append(f"Unusual SubFilter: {sub_filter_value}")
    else:
        errors.append("No SubFilter found - signature type unknown")

    if len(ranges) > 1:
        warnings.append(
            f"{len(ranges)} ByteRanges found; earlier signatures may no longer cover the file"
        )

    is_valid = not errors
    if not is_valid:
        logger.debug(f"Signature structure errors: {errors}")

    return SignatureStructure(
        is_valid=is_valid,
        signature_field_count=field_count,
        has_signature_object=has_sig_object,
        byte_range=byte_range,
        byte_range_covers_file=covers_file,
        contents_hex_length=contents_hex_length,
        sub_filter_value=sub_filter_value,
        file_length=file_length,
        errors=errors,
        warnings=warnings,
    )


def validate_pdf_signature_structure(pdf_path: str) -> SignatureStructure:
    """Inspect a signed PDF on disk."""
    with open(pdf_path, "rb") as f:
        return inspect_signature_structure(f.read())
