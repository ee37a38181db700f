"""
Upload staging store.

Persists the uploaded certificate and input files of one run under a fixed
base directory:

    <staging_dir>/pdfs   loose PDFs, the archive payload and its extraction
    <staging_dir>/certs  the PKCS#12 certificate

Both directories are cleared when the store is created and on cleanup.
Certificate files are overwritten before removal.
"""
import logging
import os
import shutil
from typing import Iterable, List, Optional

from app.models import CertPayload, PdfInputItem
from app.utils.security import wipe_file

logger = logging.getLogger(__name__)


class StagingStore:
    """Temporary file staging for one signing run at a time."""

    def __init__(self, base_dir: str):
        self.base_dir = base_dir
        self.pdf_dir = os.path.join(base_dir, "pdfs")
        self.cert_dir = os.path.join(base_dir, "certs")

        self._setup_directories()

    def _setup_directories(self) -> None:
        for path in (self.base_dir, self.pdf_dir, self.cert_dir):
            os.makedirs(path, exist_ok=True)
        self.clear_dir(self.pdf_dir)
        self.clear_dir(self.cert_dir, wipe=True)

    def clear_dir(self, dir_path: str, wipe: bool = False) -> None:
        """Remove everything inside dir_path. Idempotent; the directory itself stays."""
        if not os.path.isdir(dir_path):
            return

        for entry in os.scandir(dir_path):
            if entry.is_dir(follow_symlinks=False):
                shutil.rmtree(entry.path, ignore_errors=True)
            elif wipe:
                wipe_file(entry.path)
            else:
                try:
                    os.unlink(entry.path)
                except FileNotFoundError:
                    continue

    def _target(self, directory: str, name: str) -> str:
        target = os.path.join(directory, os.path.basename(name))
        if os.path.dirname(os.path.abspath(target)) != os.path.abspath(directory):
            raise ValueError(f"Refusing to stage file outside {directory}: {name}")
        return target

    def save_file(self, item: PdfInputItem) -> str:
        """Persist one input item; returns its staged path."""
        target = self._target(self.pdf_dir, item.name)
        with open(target, "wb") as f:
            f.write(item.buffer)
        return target

    def save_pdfs(self, files: Iterable[PdfInputItem]) -> List[str]:
        return [self.save_file(item) for item in files]

    def save_cert(self, cert: CertPayload) -> str:
        """Persist the certificate, replacing any previously staged one."""
        os.makedirs(self.cert_dir, exist_ok=True)
        self.clear_dir(self.cert_dir, wipe=True)

        target = self._target(self.cert_dir, cert.name)
        with open(target, "wb") as f:
            f.write(cert.buffer)
        return target

    def get_pdf_dir(self) -> str:
        return self.pdf_dir

    def get_cert_dir(self) -> str:
        return self.cert_dir

    def get_cert_path(self) -> Optional[str]:
        """Path of the staged certificate, or None if none is staged."""
        if not os.path.isdir(self.cert_dir):
            return None
        files = sorted(os.listdir(self.cert_dir))
        if not files:
            return None
        return os.path.join(self.cert_dir, files[0])

    def cleanup_pdfs(self) -> None:
        self.clear_dir(self.pdf_dir)

    def cleanup_certs(self) -> None:
        self.clear_dir(self.cert_dir, wipe=True)

    def cleanup(self) -> None:
        """Release all staged input and certificate data."""
        self.cleanup_pdfs()
        self.cleanup_certs()
        logger.debug(f"Staging cleared: {self.base_dir}")


# Singleton instance
_staging_store: Optional[StagingStore] = None


def get_staging_store() -> StagingStore:
    """Get the staging store singleton rooted at settings.staging_dir."""
    global _staging_store
    if _staging_store is None:
        from app.config import get_settings

        _staging_store = StagingStore(get_settings().staging_dir)
    return _staging_store
