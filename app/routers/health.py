"""
Health check endpoints for diagnosing service dependencies.
"""
import os

import cryptography
import fitz
from fastapi import APIRouter

from app.config import get_settings

router = APIRouter(
    prefix="/health",
    tags=["health"],
)


@router.get("")
async def health_check():
    """Liveness check."""
    return {"status": "healthy", "version": "1.0.0"}


@router.get("/signing")
async def health_check_signing():
    """
    Reports the PDF and crypto library versions and whether the staging
    and output locations are usable.
    """
    settings = get_settings()
    staging_ok = os.path.isdir(settings.staging_dir) and os.access(settings.staging_dir, os.W_OK)
    output_ok = os.path.isdir(settings.output_root) and os.access(settings.output_root, os.W_OK)

    return {
        "status": "healthy" if staging_ok and output_ok else "unhealthy",
        "pymupdf_version": fitz.VersionBind,
        "mupdf_version": fitz.VersionFitz,
        "cryptography_version": cryptography.__version__,
        "staging_dir_writable": staging_ok,
        "output_root_writable": output_ok,
    }
