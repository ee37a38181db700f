"""
Security utilities: secure removal of staged secrets.
"""
import logging
import os

logger = logging.getLogger(__name__)


def wipe_file(file_path: str) -> None:
    """
    Overwrite a file with zeros, then remove it.

    Used for staged certificate material, which must not outlive a run.
    Missing files are ignored so cleanup stays idempotent, including when
    another cleanup removes the file first.
    """
    try:
        size = os.path.getsize(file_path)
        with open(file_path, "r+b") as f:
            remaining = size
            block = b"\x00" * 8192
            while remaining > 0:
                n = min(remaining, len(block))
                f.write(block[:n])
                remaining -= n
            f.flush()
            os.fsync(f.fileno())
        os.remove(file_path)
    except FileNotFoundError:
        return

    logger.debug(f"Wiped staged file ({size} bytes)")
