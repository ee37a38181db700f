"""
Configuration module - loads settings from environment variables.
Falls back to an optional .env file for local development.
"""
import json
import logging
import os
import tempfile
from functools import lru_cache
from typing import Annotated, Any, List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode

logger = logging.getLogger(__name__)


def _default_staging_dir() -> str:
    return os.path.join(tempfile.gettempdir(), "pdf-signer")


class Settings(BaseSettings):
    """Application settings."""

    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Staging / output locations
    staging_dir: str = Field(default_factory=_default_staging_dir, alias="STAGING_DIR")
    output_root: str = Field(
        default_factory=lambda: os.path.expanduser("~"),
        alias="OUTPUT_ROOT",
        description="Parent directory for signed-pdfs-<timestamp> output folders",
    )

    # Batch processing
    archive_chunk_size: int = Field(
        default=20,
        alias="ARCHIVE_CHUNK_SIZE",
        description="How many archive paths are buffered before each chunk is drained",
    )
    max_upload_mb: int = Field(default=200, alias="MAX_UPLOAD_MB")

    # Signature dictionary
    signature_reason: str = Field(default="Assinatura digital", alias="SIGNATURE_REASON")
    signature_field_prefix: str = Field(default="Signature", alias="SIGNATURE_FIELD_PREFIX")
    signature_placeholder_bytes: int = Field(
        default=2770,
        alias="SIGNATURE_PLACEHOLDER_BYTES",
        description="Reserved size of /Contents in bytes (hex length is twice this)",
    )

    # CORS
    allowed_origins: Annotated[List[str], NoDecode] = Field(default=[], alias="ALLOWED_ORIGINS")

    @field_validator("allowed_origins", mode='before')
    @classmethod
    def _parse_allowed_origins(cls, v: Any) -> List[str]:
        """Parse ALLOWED_ORIGINS from JSON list, CSV, semicolon-separated string, or list."""
        if v is None:
            return []
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                try:
                    return json.loads(s)
                except json.JSONDecodeError:
                    pass  # Fall through to delimiter parsing
            parts = [p.strip() for p in s.replace(",", ";").split(";")]
            return [p for p in parts if p]
        return []

    @field_validator("archive_chunk_size", "signature_placeholder_bytes", "max_upload_mb")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True

    @model_validator(mode='after')
    def validate_locations(self) -> 'Settings':
        """Warn about configurations that mix staging and output data."""
        staging = os.path.abspath(self.staging_dir)
        output = os.path.abspath(self.output_root)
        if staging == output or output.startswith(staging + os.sep):
            logger.warning(
                f"Configuration Warning: OUTPUT_ROOT ('{self.output_root}') lies inside "
                f"STAGING_DIR ('{self.staging_dir}'); signed outputs may be removed on cleanup."
            )
        return self

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience function for dependency injection
def get_config() -> Settings:
    return get_settings()


# Development origins (only in non-production)
DEV_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
]


def get_cors_origins() -> List[str]:
    """
    Get list of allowed CORS origins.

    Combines origins from ALLOWED_ORIGINS with development origins
    when not running in production.
    """
    settings = get_settings()
    origins = set(settings.allowed_origins)

    if settings.environment != "production":
        origins.update(DEV_CORS_ORIGINS)

    return sorted(origins)
