import base64
import binascii
import os
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ZIP_MAGIC = b"PK\x03\x04"


class BaseRequest(BaseModel):
    """Base class for all request models - ignores extra fields."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# Enums
class MessageKey(str, Enum):
    """Templated progress/completion messages, resolved to text by the client."""
    SIGN_PROGRESS = "sign.progress"  # {index, total}
    ARCHIVE_PROCESSING = "archive.processing"  # {name}
    ARCHIVE_PROGRESS = "archive.progress"  # {totalProcessed, totalPdfCount}
    SIGN_COMPLETE = "sign.complete"
    SIGN_FAILED = "sign.failed"


def decode_buffer(value: Union[str, bytes, bytearray]) -> bytes:
    """
    Decode an uploaded buffer.

    Accepts raw bytes, a base64 string, or a data URL
    ("data:application/pdf;base64,...").
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not isinstance(value, str):
        raise ValueError("buffer must be a base64 string or bytes")

    s = value.strip()
    if s.startswith("data:"):
        header, _, s = s.partition(",")
        if ";base64" not in header:
            return s.encode("utf-8")
    try:
        return base64.b64decode(s, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 buffer: {e}")


# Request Models
class PdfInputItem(BaseRequest):
    """A named upload: a loose PDF or a ZIP archive of PDFs."""
    name: str = Field(..., min_length=1, max_length=255)
    buffer: bytes

    @field_validator("buffer", mode="before")
    @classmethod
    def validate_buffer(cls, v: Any) -> bytes:
        return decode_buffer(v)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        # Only the base name is kept; client-side directories are not trusted
        name = os.path.basename(v.replace("\\", "/")).strip()
        if name in ("", ".", ".."):
            raise ValueError(f"Invalid file name: '{v}'")
        return name

    @property
    def is_archive(self) -> bool:
        return self.name.lower().endswith(".zip") or self.buffer[:4] == ZIP_MAGIC


class CertPayload(PdfInputItem):
    """PKCS#12 certificate upload."""

    @field_validator("buffer")
    @classmethod
    def validate_not_empty(cls, v: bytes) -> bytes:
        if not v:
            raise ValueError("Certificate is empty")
        return v


class SignOptions(BaseRequest):
    password: str = Field(default="", max_length=1024)
    e_sign_text: str = Field(..., alias="eSignText", min_length=1, max_length=500)


class SignPdfsRequest(BaseRequest):
    cert: CertPayload
    files: List[PdfInputItem] = Field(default_factory=list)
    options: SignOptions

    @model_validator(mode="after")
    def validate_single_archive(self) -> "SignPdfsRequest":
        archives = [f.name for f in self.files if f.is_archive]
        if len(archives) > 1:
            raise ValueError(f"At most one ZIP archive per request, got {len(archives)}")
        return self


# Event Models
class ProgressEvent(BaseModel):
    """One-way progress notification: percentage plus a templated message."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    progress: int = Field(..., ge=0, le=100)
    message_key: str = Field(..., alias="messageKey")
    message_data: Dict[str, Any] = Field(default_factory=dict, alias="messageData")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)

    def to_sse_payload(self) -> str:
        return f"event: progress\ndata: {self.model_dump_json(by_alias=True)}\n\n"


class CompletionEvent(BaseModel):
    """Terminal event of a signing run."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    success: bool
    output_dir: Optional[str] = Field(None, alias="outputDir")
    message: Optional[str] = None
    failed_files: List[str] = Field(default_factory=list, alias="failedFiles")
    error: Optional[str] = None

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_sse_payload(self) -> str:
        return f"event: complete\ndata: {self.model_dump_json(by_alias=True, exclude_none=True)}\n\n"


# Response Models
class StagingCleanupResponse(BaseModel):
    success: bool = True
    cleared: List[str]


class ErrorResponse(BaseModel):
    error: bool = True
    code: str
    message: str
    request_id: Optional[str] = None
    details: Optional[dict] = None
