# PDF module
from app.pdf.cms import SigningCredential, sign_pdf
from app.pdf.errors import (
    InvalidCertificate,
    InvalidPassword,
    InvalidPDF,
    InvalidSignature,
    InvalidSignatureField,
    SigningError,
    SigningErrorKind,
    SigningFailed,
)
from app.pdf.sign import SignatureEmbedder, StampSpec, get_signature_embedder
from app.pdf.validate_signature import SignatureStructure, inspect_signature_structure

__all__ = [
    "SigningCredential",
    "sign_pdf",
    "SigningError",
    "SigningErrorKind",
    "InvalidCertificate",
    "InvalidPassword",
    "InvalidPDF",
    "InvalidSignature",
    "InvalidSignatureField",
    "SigningFailed",
    "SignatureEmbedder",
    "StampSpec",
    "get_signature_embedder",
    "SignatureStructure",
    "inspect_signature_structure",
]
