"""
Signing error taxonomy.

Every failure of the signing primitive or the embedder surfaces as a
SigningError subclass carrying a SigningErrorKind, so callers branch on the
kind instead of inspecting message text.
"""
from enum import Enum
from typing import Optional


class SigningErrorKind(str, Enum):
    INVALID_PASSWORD = "INVALID_PASSWORD"
    INVALID_CERTIFICATE = "INVALID_CERTIFICATE"
    INVALID_PDF = "INVALID_PDF"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    INVALID_SIGNATURE_FIELD = "INVALID_SIGNATURE_FIELD"
    SIGNING_FAILED = "SIGNING_FAILED"


class SigningError(Exception):
    """PDF signing error."""

    kind: SigningErrorKind = SigningErrorKind.SIGNING_FAILED
    default_message = "Signing failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidPassword(SigningError):
    kind = SigningErrorKind.INVALID_PASSWORD
    default_message = "Invalid password"


class InvalidCertificate(SigningError):
    kind = SigningErrorKind.INVALID_CERTIFICATE
    default_message = "Invalid certificate"


class InvalidPDF(SigningError):
    kind = SigningErrorKind.INVALID_PDF
    default_message = "Invalid PDF"


class InvalidSignature(SigningError):
    kind = SigningErrorKind.INVALID_SIGNATURE
    default_message = "Invalid signature"


class InvalidSignatureField(SigningError):
    kind = SigningErrorKind.INVALID_SIGNATURE_FIELD
    default_message = "Invalid signature field"


class SigningFailed(SigningError):
    """Unclassified failure; keeps the raw message of the underlying error."""

    kind = SigningErrorKind.SIGNING_FAILED

    def __init__(self, raw_message: str):
        self.raw_message = raw_message
        super().__init__(raw_message or self.default_message)
