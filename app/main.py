"""
PDF Signing Service - Main FastAPI Application
Batch stamping and PKCS#7 signing of PDFs and ZIP archives of PDFs.
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from app.config import get_cors_origins, get_settings
from app.exceptions import (
    AppException,
    app_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from app.services.batch import get_run_lock
from app.services.staging import get_staging_store
from app.utils.logging import RequestIdMiddleware, setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    setup_logging(
        environment=settings.environment,
        level=logging.DEBUG if settings.debug else logging.INFO,
    )
    staging = get_staging_store()
    logger.info(f"Starting PDF Signing Service v1.0.0 ({settings.environment}), staging={staging.base_dir}")
    yield
    # Staged inputs belong to any run still in flight
    await signing.wait_for_background_runs()
    async with get_run_lock():
        await asyncio.to_thread(staging.cleanup)
    logger.info("Shutting down PDF Signing Service")


app = FastAPI(
    title="PDF Signing Service",
    description="""Batch PDF signing service.

Each PDF gets a visible text stamp on its first page and a detached PKCS#7
signature made with the uploaded PKCS#12 certificate. Loose PDFs and one ZIP
archive of PDFs (any directory depth) can be signed in one request; progress
is streamed as server-sent events.
""",
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "signing", "description": "PDF signing and staging maintenance"},
        {"name": "health", "description": "Health check endpoints"},
    ],
)


from app.routers import health, signing

# Middleware
app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(ValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(health.router)
app.include_router(signing.router)
