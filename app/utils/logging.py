"""
Logging configuration with request_id and run_id correlation.
Structured logging for Cloud Logging compatibility.

Secret protection:
- Never log certificate bytes or passphrases
- Use fingerprints (sha256[:8]) for correlation
"""
import hashlib
import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional, Union

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


def fingerprint(value: Optional[Union[str, bytes]], prefix: str = "") -> str:
    """
    Create a safe fingerprint for logging secret values.

    Args:
        value: The sensitive value to fingerprint (certificate bytes, passphrase, ...)
        prefix: Optional prefix for the fingerprint (e.g., "cert_")

    Returns:
        8-char hex fingerprint with optional prefix, or "none" if value is None/empty

    Example:
        fingerprint(b"...pfx bytes...", "cert_") -> "cert_a1b2c3d4"
    """
    if not value:
        return f"{prefix}none" if prefix else "none"
    if isinstance(value, str):
        value = value.encode()
    fp = hashlib.sha256(value).hexdigest()[:8]
    return f"{prefix}{fp}" if prefix else fp


# Context variables for request correlation
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
run_id_var: ContextVar[Optional[str]] = ContextVar("run_id", default=None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def set_run_id(run_id: Optional[str]) -> None:
    run_id_var.set(run_id)


def clear_context() -> None:
    """Clear all context variables."""
    request_id_var.set(None)
    run_id_var.set(None)


class CloudLoggingFormatter(logging.Formatter):
    """
    Formatter for Google Cloud Logging structured logs.
    Outputs JSON format compatible with Cloud Logging.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "severity": record.levelname,
            "message": record.getMessage(),
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "logging.googleapis.com/sourceLocation": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        request_id = request_id_var.get()
        if request_id:
            log_entry["logging.googleapis.com/trace"] = request_id
            log_entry["request_id"] = request_id

        run_id = run_id_var.get()
        if run_id:
            log_entry["run_id"] = run_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_entry["data"] = record.extra_data

        return json.dumps(log_entry)


class DevelopmentFormatter(logging.Formatter):
    """Human-readable formatter for local development."""

    def format(self, record: logging.LogRecord) -> str:
        request_id = request_id_var.get() or "-"
        run_id = run_id_var.get()

        prefix = f"[{record.levelname}] [{request_id[:8] if request_id != '-' else '-'}]"
        if run_id:
            prefix += f" [run:{run_id[:8]}]"

        message = f"{prefix} {record.getMessage()}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def setup_logging(environment: str = "development", level: int = logging.INFO) -> None:
    """
    Configure logging based on environment.
    - production: JSON structured logs for Cloud Logging
    - development: Human-readable format
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if environment == "production":
        handler.setFormatter(CloudLoggingFormatter())
    else:
        handler.setFormatter(DevelopmentFormatter())

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware that assigns a unique request_id to each request.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_request_id(request_id)

        request.state.request_id = request_id

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_context()


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)
