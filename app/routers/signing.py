"""
Signing API Router.
Paths: /v1/sign, /v1/sign/single, /v1/staging
"""
import asyncio
from typing import Coroutine, Set

from fastapi import APIRouter, Depends, Response
from fastapi.responses import StreamingResponse

from app.config import Settings, get_config
from app.exceptions import PayloadTooLargeException, SigningException, ValidationException
from app.models import ErrorResponse, SignPdfsRequest, StagingCleanupResponse
from app.pdf.cms import SigningCredential
from app.pdf.errors import SigningError
from app.services.batch import create_batch_pipeline, get_run_lock
from app.services.progress import MemoryQueueProgressSink, NullProgressSink
from app.services.staging import get_staging_store
from app.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["signing"])

# Strong references to running batch tasks; a disconnected client does not cancel its run
_background_runs: Set[asyncio.Task] = set()


def start_background_run(coro: Coroutine) -> asyncio.Task:
    """Run a batch in the background, detached from the request that started it."""
    task = asyncio.create_task(coro)
    _background_runs.add(task)
    task.add_done_callback(_background_runs.discard)
    return task


async def wait_for_background_runs() -> None:
    """Block until every batch started by this process has finished."""
    if _background_runs:
        logger.info(f"Waiting for {len(_background_runs)} signing run(s) to finish")
        await asyncio.gather(*list(_background_runs), return_exceptions=True)


def _check_upload_size(request: SignPdfsRequest, settings: Settings) -> None:
    size = len(request.cert.buffer) + sum(len(f.buffer) for f in request.files)
    if size > settings.max_upload_bytes:
        raise PayloadTooLargeException(size, settings.max_upload_bytes)


def _credential(request: SignPdfsRequest) -> SigningCredential:
    return SigningCredential(
        certificate=request.cert.buffer,
        passphrase=request.options.password,
    )


@router.post(
    "/v1/sign",
    summary="Sign PDFs (batch)",
    description="Signs loose PDFs and/or one ZIP archive of PDFs. "
                "Streams `progress` events followed by a single `complete` event.",
    response_class=StreamingResponse,
    responses={400: {"model": ErrorResponse}, 413: {"model": ErrorResponse}},
)
async def sign_pdfs(
    request: SignPdfsRequest,
    settings: Settings = Depends(get_config),
):
    _check_upload_size(request, settings)

    sink = MemoryQueueProgressSink()
    pipeline = create_batch_pipeline(sink)
    credential = _credential(request)

    logger.info(f"Batch signing requested: {len(request.files)} items, cert={credential.fingerprint}")

    start_background_run(pipeline.run(credential, request.options.e_sign_text, request.files))

    async def event_stream():
        try:
            async for event in sink.stream():
                yield event.to_sse_payload()
        except asyncio.CancelledError:
            logger.info("Progress stream closed by client; signing run continues")
            raise

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@router.post(
    "/v1/sign/single",
    summary="Sign one PDF",
    description="Signs exactly one PDF and returns it. A signing error aborts the request with 422.",
    response_class=Response,
    responses={
        200: {"content": {"application/pdf": {}}},
        400: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def sign_single_pdf(
    request: SignPdfsRequest,
    settings: Settings = Depends(get_config),
):
    _check_upload_size(request, settings)

    if len(request.files) != 1 or request.files[0].is_archive:
        raise ValidationException(
            "Exactly one PDF file is required",
            details={"files": [f.name for f in request.files]},
        )

    item = request.files[0]
    pipeline = create_batch_pipeline(NullProgressSink())
    try:
        signed = await pipeline.sign_single(_credential(request), request.options.e_sign_text, item)
    except SigningError as e:
        raise SigningException.from_error(e)

    return Response(
        content=signed,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{item.name}"'},
    )


@router.delete("/v1/staging/pdfs", response_model=StagingCleanupResponse)
async def clean_pdf_staging():
    """Remove staged input PDFs."""
    staging = get_staging_store()
    async with get_run_lock():
        await asyncio.to_thread(staging.cleanup_pdfs)
    return StagingCleanupResponse(cleared=[staging.get_pdf_dir()])


@router.delete("/v1/staging/certs", response_model=StagingCleanupResponse)
async def clean_cert_staging():
    """Wipe and remove the staged certificate."""
    staging = get_staging_store()
    async with get_run_lock():
        await asyncio.to_thread(staging.cleanup_certs)
    return StagingCleanupResponse(cleared=[staging.get_cert_dir()])


@router.delete("/v1/staging", response_model=StagingCleanupResponse)
async def clean_staging():
    """Remove all staged data."""
    staging = get_staging_store()
    async with get_run_lock():
        await asyncio.to_thread(staging.cleanup)
    return StagingCleanupResponse(cleared=[staging.get_pdf_dir(), staging.get_cert_dir()])
