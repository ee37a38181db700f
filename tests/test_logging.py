"""
Tests for logging helpers.
"""
import json
import logging

from app.utils.logging import (
    CloudLoggingFormatter,
    DevelopmentFormatter,
    clear_context,
    fingerprint,
    set_request_id,
    set_run_id,
)


def make_record(message: str) -> logging.LogRecord:
    return logging.LogRecord(
        name="test", level=logging.INFO, pathname=__file__, lineno=1,
        msg=message, args=None, exc_info=None,
    )


class TestFingerprint:
    """Tests for secret fingerprints."""

    def test_deterministic(self):
        assert fingerprint(b"pfx-bytes") == fingerprint(b"pfx-bytes")
        assert len(fingerprint(b"pfx-bytes")) == 8

    def test_str_and_bytes_agree(self):
        assert fingerprint("secret") == fingerprint(b"secret")

    def test_prefix(self):
        assert fingerprint(b"x", "cert_").startswith("cert_")

    def test_empty(self):
        assert fingerprint(None) == "none"
        assert fingerprint(b"", "cert_") == "cert_none"


class TestFormatters:
    """Tests for log formatters."""

    def teardown_method(self):
        clear_context()

    def test_cloud_formatter_includes_context(self):
        set_request_id("req-123")
        set_run_id("run-456")

        entry = json.loads(CloudLoggingFormatter().format(make_record("hello")))

        assert entry["message"] == "hello"
        assert entry["severity"] == "INFO"
        assert entry["request_id"] == "req-123"
        assert entry["run_id"] == "run-456"

    def test_cloud_formatter_without_context(self):
        entry = json.loads(CloudLoggingFormatter().format(make_record("hello")))

        assert "request_id" not in entry
        assert "run_id" not in entry

    def test_development_formatter(self):
        set_request_id("abcdef1234567890")
        set_run_id("0123456789ab")

        line = DevelopmentFormatter().format(make_record("signed"))

        assert line == "[INFO] [abcdef12] [run:01234567] signed"
