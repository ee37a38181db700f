"""
Batch signing pipeline.

One run signs every loose PDF first, then every PDF found inside the (single)
ZIP archive, strictly one file at a time. A file that cannot be signed is
recorded and skipped; only staging/I/O failures end a run early. Every run
ends with exactly one completion event, after which all staged data is
released.

Loose files and archive entries share one output directory, keyed by name
(archive entries by their path inside the archive). A later file with the same
output path replaces the earlier one and a warning is logged.
"""
import asyncio
import logging
import math
import os
import secrets
import tempfile
import uuid
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from app.models import CertPayload, CompletionEvent, MessageKey, PdfInputItem, ProgressEvent
from app.pdf.cms import SigningCredential
from app.pdf.errors import SigningError
from app.pdf.sign import SignatureEmbedder
from app.services.archive import UnsafeArchiveEntry, chunked, count_pdfs, extract_archive, iter_pdfs
from app.services.progress import ProgressSink
from app.services.staging import StagingStore
from app.utils.datetime_utils import output_timestamp
from app.utils.logging import set_run_id

logger = logging.getLogger(__name__)

OUTPUT_DIR_PREFIX = "signed-pdfs"
STAGED_CERT_NAME = "certificate.p12"

# Errors that abort the whole run instead of a single file
RUN_FATAL_ERRORS = (OSError, zipfile.BadZipFile, UnsafeArchiveEntry)

# Runs share the staging directories, so only one may be active at a time
_run_lock = asyncio.Lock()


@dataclass
class BatchRun:
    """Mutable state of one invocation, shared by the loose and archive phases."""
    total: int = 0
    processed: int = 0
    failed_files: List[str] = field(default_factory=list)

    def record_failure(self, name: str) -> None:
        self.failed_files.append(name)

    @property
    def percent(self) -> int:
        return percent(self.processed, self.total)


@dataclass
class BatchResult:
    success: bool
    output_dir: Optional[str]
    failed_files: List[str]
    error: Optional[str] = None


def percent(done: int, total: int) -> int:
    """Whole percentage, halves rounded up."""
    if total <= 0:
        return 100
    return min(100, math.floor(100 * done / total + 0.5))


def choose_output_dir(output_root: str, now: Optional[datetime] = None) -> str:
    """
    Fresh output location: <output_root>/signed-pdfs-<ms timestamp>-<suffix>.

    The random suffix keeps two runs in the same millisecond apart.
    """
    name = f"{OUTPUT_DIR_PREFIX}-{output_timestamp(now)}-{secrets.token_hex(3)}"
    return os.path.join(output_root, name)


class BatchPipeline:
    """Signs a batch of uploaded items and reports progress to a sink."""

    def __init__(
        self,
        embedder: SignatureEmbedder,
        staging: StagingStore,
        sink: ProgressSink,
        output_root: str,
        chunk_size: int = 20,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.embedder = embedder
        self.staging = staging
        self.sink = sink
        self.output_root = output_root
        self.chunk_size = chunk_size

    async def run(
        self,
        credential: SigningCredential,
        stamp_text: str,
        items: Sequence[PdfInputItem],
    ) -> BatchResult:
        """
        Sign all items.

        Loose PDFs are processed before the archive. Runs are serialized
        process-wide; a second caller waits until the first one completes.

        Returns:
            BatchResult mirroring the completion event
        """
        async with _run_lock:
            set_run_id(uuid.uuid4().hex[:12])
            try:
                return await self._run(credential, stamp_text, items)
            finally:
                set_run_id(None)

    async def sign_single(
        self,
        credential: SigningCredential,
        stamp_text: str,
        item: PdfInputItem,
    ) -> bytes:
        """
        Sign one PDF and return it, without writing an output directory.

        Unlike a batch run, a signing error is raised to the caller.

        Raises:
            SigningError: If the document cannot be signed
        """
        async with _run_lock:
            try:
                cert_path = await asyncio.to_thread(self._stage_cert, credential)
                staged = SigningCredential.from_file(cert_path, credential.passphrase)
                input_path = await asyncio.to_thread(self.staging.save_file, item)
                return await asyncio.to_thread(self.embedder.sign, stamp_text, staged, input_path)
            finally:
                await asyncio.to_thread(self._release_staging)

    async def _run(
        self,
        credential: SigningCredential,
        stamp_text: str,
        items: Sequence[PdfInputItem],
    ) -> BatchResult:
        loose = [item for item in items if not item.is_archive]
        archive = next((item for item in items if item.is_archive), None)
        run = BatchRun(total=len(loose))

        logger.info(
            f"Signing run started: {len(loose)} loose PDFs, "
            f"archive={'yes' if archive else 'no'}, cert={credential.fingerprint}"
        )

        try:
            output_dir = choose_output_dir(self.output_root)
            await asyncio.to_thread(os.makedirs, output_dir, exist_ok=True)

            cert_path = await asyncio.to_thread(self._stage_cert, credential)
            staged_credential = SigningCredential.from_file(cert_path, credential.passphrase)

            if loose:
                await self._sign_loose(staged_credential, stamp_text, loose, output_dir, run)
            if archive is not None:
                await self._sign_archive(staged_credential, stamp_text, archive, output_dir, run)

            result = BatchResult(success=True, output_dir=output_dir, failed_files=run.failed_files)
            await self.sink.complete(CompletionEvent(
                success=True,
                output_dir=output_dir,
                failed_files=list(run.failed_files),
                message=MessageKey.SIGN_COMPLETE.value,
            ))
            logger.info(
                f"Signing run completed: {run.processed - len(run.failed_files)}/{run.processed} signed, "
                f"output={output_dir}"
            )

        except RUN_FATAL_ERRORS as e:
            logger.error(f"Signing run aborted: {type(e).__name__}: {e}")
            result = await self._fail(run, str(e))
        except Exception as e:
            logger.exception(f"Signing run aborted by unexpected error: {e}")
            result = await self._fail(run, str(e))
        finally:
            await asyncio.to_thread(self._release_staging)

        return result

    async def _fail(self, run: BatchRun, error: str) -> BatchResult:
        await self.sink.complete(CompletionEvent(
            success=False,
            error=error,
            failed_files=list(run.failed_files),
            message=MessageKey.SIGN_FAILED.value,
        ))
        return BatchResult(success=False, output_dir=None, failed_files=run.failed_files, error=error)

    def _stage_cert(self, credential: SigningCredential) -> str:
        return self.staging.save_cert(CertPayload(name=STAGED_CERT_NAME, buffer=credential.certificate))

    def _release_staging(self) -> None:
        try:
            self.staging.cleanup()
        except OSError as e:
            logger.warning(f"Staging cleanup incomplete: {e}")

    async def _sign_one(
        self,
        credential: SigningCredential,
        stamp_text: str,
        input_path: str,
        output_path: str,
        label: str,
        run: BatchRun,
    ) -> bool:
        """Sign one file; a signing error is recorded under label, not raised."""
        if await asyncio.to_thread(os.path.exists, output_path):
            logger.warning(f"Output for {label} already exists and will be overwritten")
        try:
            await asyncio.to_thread(
                self.embedder.sign_file, stamp_text, credential, input_path, output_path
            )
            return True
        except SigningError as e:
            logger.warning(f"Failed to sign {label}: [{e.kind.value}] {e}")
            run.record_failure(label)
            return False

    async def _sign_loose(
        self,
        credential: SigningCredential,
        stamp_text: str,
        loose: List[PdfInputItem],
        output_dir: str,
        run: BatchRun,
    ) -> None:
        total = len(loose)
        for index, item in enumerate(loose, start=1):
            input_path = await asyncio.to_thread(self.staging.save_file, item)
            output_path = os.path.join(output_dir, item.name)

            await self._sign_one(credential, stamp_text, input_path, output_path, item.name, run)
            run.processed += 1

            await self.sink.emit(ProgressEvent(
                progress=percent(index, total),
                message_key=MessageKey.SIGN_PROGRESS.value,
                message_data={"index": index, "total": total},
            ))

    async def _sign_archive(
        self,
        credential: SigningCredential,
        stamp_text: str,
        archive: PdfInputItem,
        output_dir: str,
        run: BatchRun,
    ) -> None:
        await self.sink.emit(ProgressEvent(
            progress=0,
            message_key=MessageKey.ARCHIVE_PROCESSING.value,
            message_data={"name": archive.name},
        ))

        archive_path = await asyncio.to_thread(self.staging.save_file, archive)
        extract_dir = await asyncio.to_thread(
            tempfile.mkdtemp, prefix="archive-", dir=self.staging.get_pdf_dir()
        )
        await asyncio.to_thread(extract_archive, archive_path, extract_dir)
        await asyncio.to_thread(os.remove, archive_path)

        archive_total = await asyncio.to_thread(count_pdfs, extract_dir)
        run.total += archive_total
        logger.info(f"Archive {archive.name}: {archive_total} PDFs, chunk size {self.chunk_size}")

        for chunk in chunked(iter_pdfs(extract_dir), self.chunk_size):
            for input_path in chunk:
                relative = os.path.relpath(input_path, extract_dir)
                output_path = os.path.join(output_dir, relative)

                await self._sign_one(credential, stamp_text, input_path, output_path, relative, run)
                await asyncio.to_thread(os.remove, input_path)
                run.processed += 1

                await self.sink.emit(ProgressEvent(
                    progress=run.percent,
                    message_key=MessageKey.ARCHIVE_PROGRESS.value,
                    message_data={"totalProcessed": run.processed, "totalPdfCount": run.total},
                ))


def create_batch_pipeline(sink: ProgressSink) -> BatchPipeline:
    """Build a pipeline wired to the configured embedder and staging store."""
    from app.config import get_settings
    from app.pdf.sign import get_signature_embedder
    from app.services.staging import get_staging_store

    settings = get_settings()
    return BatchPipeline(
        embedder=get_signature_embedder(),
        staging=get_staging_store(),
        sink=sink,
        output_root=settings.output_root,
        chunk_size=settings.archive_chunk_size,
    )


def get_run_lock() -> asyncio.Lock:
    """Lock held by every run; staging maintenance takes it too."""
    return _run_lock
