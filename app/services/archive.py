"""
ZIP archive handling for batch signing.

- extract_archive: unpack into a dedicated directory, refusing entries that
  would land outside it
- count_pdfs: eager pre-count, gives the progress denominator
- iter_pdfs: lazy depth-first walk, one path at a time
- chunked: bounded batches over any iterator
"""
import itertools
import logging
import os
import zipfile
from typing import Iterable, Iterator, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

PDF_EXTENSION = ".pdf"


class UnsafeArchiveEntry(ValueError):
    """An archive member whose path resolves outside the extraction root."""


def is_pdf_name(name: str) -> bool:
    return name.lower().endswith(PDF_EXTENSION)


def extract_archive(archive_path: str, dest_dir: str) -> int:
    """
    Extract a ZIP archive into dest_dir.

    Args:
        archive_path: Path to the ZIP file
        dest_dir: Extraction root, created if missing

    Returns:
        Number of extracted file entries

    Raises:
        zipfile.BadZipFile: If the archive is corrupt
        UnsafeArchiveEntry: If an entry would be written outside dest_dir
    """
    os.makedirs(dest_dir, exist_ok=True)
    root = os.path.realpath(dest_dir)
    extracted = 0

    with zipfile.ZipFile(archive_path) as zf:
        for member in zf.infolist():
            target = os.path.realpath(os.path.join(root, member.filename))
            if target != root and not target.startswith(root + os.sep):
                raise UnsafeArchiveEntry(f"Archive entry escapes extraction directory: {member.filename}")
            zf.extract(member, root)
            if not member.is_dir():
                extracted += 1

    logger.info(f"Extracted {extracted} files from {os.path.basename(archive_path)}")
    return extracted


def iter_pdfs(root: str) -> Iterator[str]:
    """
    Lazily yield every PDF under root, depth-first.

    A sub-directory is fully walked before the next entry of its parent.
    Nothing is buffered beyond the open directory handles of the current
    path, and each call starts a fresh walk. Symlinks are not followed.
    """
    with os.scandir(root) as entries:
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                yield from iter_pdfs(entry.path)
            elif entry.is_file(follow_symlinks=False) and is_pdf_name(entry.name):
                yield entry.path


def count_pdfs(root: str) -> int:
    """Recursive, case-insensitive count of .pdf files under root."""
    total = 0
    for _dirpath, _dirnames, filenames in os.walk(root):
        total += sum(1 for name in filenames if is_pdf_name(name))
    return total


def chunked(iterable: Iterable[T], size: int) -> Iterator[List[T]]:
    """Yield lists of at most size items, pulling from iterable only as needed."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")

    it = iter(iterable)
    while True:
        chunk = list(itertools.islice(it, size))
        if not chunk:
            return
        yield chunk
