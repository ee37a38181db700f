"""
PDF signing module using PyMuPDF (fitz) and a detached CMS signature.
Draws a visible text stamp on the first page, then builds a signature field
(signature dictionary, hidden widget, AcroForm entry) whose placeholders are
filled in by app.pdf.cms.
"""
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Set, Tuple

import fitz  # PyMuPDF

from app.pdf.cms import BYTE_RANGE_PLACEHOLDER, SigningCredential, sign_pdf
from app.pdf.errors import InvalidPDF, InvalidSignatureField, SigningError, SigningFailed
from app.pdf.validate_signature import inspect_signature_structure
from app.utils.datetime_utils import format_pdf_date, utc_now

logger = logging.getLogger(__name__)

# Serialization policy for both saves: classic xref table, no object streams,
# no encryption. The signature dictionary must stay uncompressed in the file
# for the in-place ByteRange/Contents patch.
SAVE_OPTIONS = {
    "garbage": 0,
    "deflate": False,
    "use_objstms": 0,
    "encryption": fitz.PDF_ENCRYPT_NONE,
}

# Signature /F flag: Hidden
WIDGET_FLAGS = 4
# /SigFlags: SignaturesExist | AppendOnly
SIG_FLAGS = 3

_REF_RE = re.compile(r"(\d+)\s+\d+\s+R")


@dataclass(frozen=True)
class StampSpec:
    """
    Visible stamp drawn on page 1.

    Position is given in points from the top-left corner of the page:
    x from the left edge, y is the text baseline measured from the top edge.
    """
    text: str
    x: float = 1
    y: float = 8
    font_size: float = 8
    fontname: str = "helv"  # Helvetica, one of the 14 standard fonts
    color: Tuple[float, float, float] = (0.128, 0.128, 0.128)


class SignatureEmbedder:
    """Stamps and digitally signs one PDF at a time."""

    def __init__(
        self,
        reason: str = "Assinatura digital",
        field_prefix: str = "Signature",
        placeholder_bytes: int = 2770,
    ):
        self.reason = reason
        self.field_prefix = field_prefix
        self.placeholder_bytes = placeholder_bytes

    def sign(
        self,
        stamp_text: str,
        credential: SigningCredential,
        input_path: str,
        signed_at: Optional[datetime] = None,
    ) -> bytes:
        """
        Stamp and sign a PDF.

        Args:
            stamp_text: Text drawn on page 1
            credential: PKCS#12 certificate and passphrase
            input_path: Path to the source PDF (left untouched)
            signed_at: Signing time written to /M, defaults to now

        Returns:
            Signed PDF bytes

        Raises:
            SigningError: If the document or credential cannot be signed
            OSError: If the input file cannot be read
        """
        with open(input_path, "rb") as f:
            source = f.read()

        try:
            stamped = self._stamp(source, StampSpec(text=stamp_text))
            prepared = self._prepare_signature_field(stamped, signed_at or utc_now())
            signed = sign_pdf(prepared, credential)
            self._check_structure(signed)
            return signed

        except SigningError:
            raise
        except fitz.FileDataError as e:
            raise InvalidPDF(f"Invalid PDF: {e}")
        except Exception as e:
            logger.exception(f"Failed to sign PDF {os.path.basename(input_path)}")
            raise SigningFailed(str(e))

    def sign_file(
        self,
        stamp_text: str,
        credential: SigningCredential,
        input_path: str,
        output_path: str,
    ) -> str:
        """Sign input_path and write the result to output_path."""
        signed = self.sign(stamp_text, credential, input_path)

        output_dir = os.path.dirname(output_path)
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)
        with open(output_path, "wb") as f:
            f.write(signed)

        logger.info(f"Signed {os.path.basename(input_path)} ({len(signed)} bytes)")
        return output_path

    def _open(self, data: bytes) -> fitz.Document:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except RuntimeError as e:
            # FileDataError and EmptyFileError are RuntimeError subclasses
            raise InvalidPDF(f"Invalid PDF: {e}")
        if doc.needs_pass and not doc.authenticate(""):
            doc.close()
            raise InvalidPDF("Invalid PDF: document is password protected")
        if not doc.is_pdf or doc.page_count == 0:
            doc.close()
            raise InvalidPDF("Invalid PDF: document has no pages")
        return doc

    def _stamp(self, data: bytes, stamp: StampSpec) -> bytes:
        """Draw the stamp and save once to fix the byte layout."""
        doc = self._open(data)
        try:
            page = doc[0]
            page.insert_text(
                fitz.Point(stamp.x, stamp.y),
                stamp.text,
                fontsize=stamp.font_size,
                fontname=stamp.fontname,
                color=stamp.color,
            )
            return doc.tobytes(**SAVE_OPTIONS)
        finally:
            doc.close()

    def _prepare_signature_field(self, data: bytes, signed_at: datetime) -> bytes:
        """
        Add the signature dictionary, widget and AcroForm entry.

        The ByteRange holds placeholder markers and Contents a zero-filled hex
        string of the full reserved size, so the serialized layout is final
        before any offset is computed.
        """
        doc = self._open(data)
        try:
            page = doc[0]

            sig_xref = doc.get_new_xref()
            doc.update_object(sig_xref, (
                "<< /Type /Sig /Filter /Adobe.PPKLite /SubFilter /adbe.pkcs7.detached"
                f" /ByteRange {BYTE_RANGE_PLACEHOLDER}"
                f" /Contents <{'0' * (self.placeholder_bytes * 2)}>"
                f" /Reason {fitz.get_pdf_str(self.reason)}"
                f" /M ({format_pdf_date(signed_at)}) >>"
            ))

            acroform_xref = self._get_or_create_acroform(doc)
            field_name = self._next_field_name(doc, acroform_xref)

            widget_xref = doc.get_new_xref()
            doc.update_object(widget_xref, (
                "<< /Type /Annot /Subtype /Widget /FT /Sig /Rect [0 0 0 0]"
                f" /V {sig_xref} 0 R /T {fitz.get_pdf_str(field_name)}"
                f" /F {WIDGET_FLAGS} /P {page.xref} 0 R >>"
            ))
            widget_ref = f"{widget_xref} 0 R"

            _append_to_array(doc, page.xref, "Annots", widget_ref)
            _append_to_array(doc, acroform_xref, "Fields", widget_ref)
            doc.xref_set_key(acroform_xref, "SigFlags", str(SIG_FLAGS))

            logger.debug(f"Prepared signature field {field_name} (sig={sig_xref}, widget={widget_xref})")
            return doc.tobytes(**SAVE_OPTIONS)
        finally:
            doc.close()

    def _get_or_create_acroform(self, doc: fitz.Document) -> int:
        """Return the xref of the catalog's AcroForm, making it indirect if needed."""
        catalog = doc.pdf_catalog()
        kind, value = doc.xref_get_key(catalog, "AcroForm")

        if kind == "xref":
            return int(value.split()[0])

        acroform_xref = doc.get_new_xref()
        if kind == "dict":
            doc.update_object(acroform_xref, value)
        else:
            doc.update_object(acroform_xref, "<< /Fields [] >>")
        doc.xref_set_key(catalog, "AcroForm", f"{acroform_xref} 0 R")
        return acroform_xref

    def _next_field_name(self, doc: fitz.Document, acroform_xref: int) -> str:
        """First unused name of the form <prefix><n>."""
        taken: Set[str] = set()
        for ref in _array_refs(doc, acroform_xref, "Fields"):
            kind, value = doc.xref_get_key(ref, "T")
            if kind == "string":
                taken.add(value)

        n = 1
        while f"{self.field_prefix}{n}" in taken:
            n += 1
        return f"{self.field_prefix}{n}"

    def _check_structure(self, signed: bytes) -> None:
        structure = inspect_signature_structure(signed)
        if not structure.byte_range_covers_file:
            raise InvalidSignatureField(f"Invalid signature field: {'; '.join(structure.errors)}")
        if structure.contents_hex_length != self.placeholder_bytes * 2:
            raise InvalidSignatureField(
                f"Invalid signature field: Contents is {structure.contents_hex_length} hex digits, "
                f"expected {self.placeholder_bytes * 2}"
            )


def _array_refs(doc: fitz.Document, owner_xref: int, key: str) -> List[int]:
    """Object numbers referenced by an array entry, direct or indirect."""
    kind, value = doc.xref_get_key(owner_xref, key)
    if kind == "xref":
        value = doc.xref_object(int(value.split()[0]), compressed=True)
    elif kind != "array":
        return []
    return [int(m.group(1)) for m in _REF_RE.finditer(value)]


def _append_to_array(doc: fitz.Document, owner_xref: int, key: str, ref: str) -> None:
    """
    Append an indirect reference to an array entry of a dictionary.

    Existing items are preserved whether the array is stored inline or as
    its own object; a missing entry becomes a one-element array.
    """
    kind, value = doc.xref_get_key(owner_xref, key)

    if kind == "xref":
        array_xref = int(value.split()[0])
        items = doc.xref_object(array_xref, compressed=True).strip()
        doc.update_object(array_xref, f"[{items[1:-1].strip()} {ref}]")
    elif kind == "array":
        items = value.strip()
        doc.xref_set_key(owner_xref, key, f"[{items[1:-1].strip()} {ref}]")
    else:
        doc.xref_set_key(owner_xref, key, f"[{ref}]")


# Singleton instance
_signature_embedder: Optional[SignatureEmbedder] = None


def get_signature_embedder() -> SignatureEmbedder:
    """Get the signature embedder singleton, configured from settings."""
    global _signature_embedder
    if _signature_embedder is None:
        from app.config import get_settings

        settings = get_settings()
        _signature_embedder = SignatureEmbedder(
            reason=settings.signature_reason,
            field_prefix=settings.signature_field_prefix,
            placeholder_bytes=settings.signature_placeholder_bytes,
        )
    return _signature_embedder
