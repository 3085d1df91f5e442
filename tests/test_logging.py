"""Tests for logging configuration and redaction."""

import json
import logging
from collections.abc import Iterator
from datetime import UTC, datetime
from types import SimpleNamespace

import pytest
from loguru import logger

from workspace_oauth_proxy.logging import (
    REDACTED,
    _cloud_logging_serializer,
    configure_logging,
    redact_sensitive_fields,
)


def _record(extra: dict, level: str = "INFO", no: int = 20) -> dict:
    return {
        "level": SimpleNamespace(name=level, no=no),
        "message": "hello",
        "time": datetime(2026, 1, 1, tzinfo=UTC),
        "file": SimpleNamespace(path="/app/x.py"),
        "line": 10,
        "function": "f",
        "exception": None,
        "extra": extra,
    }


class TestRedaction:
    """Tests for the redaction patcher."""

    def test_sensitive_keys_masked(self) -> None:
        record = {"extra": {"client_secret": "s3cret", "secret": "workspace-oauth-client-secret"}}

        redact_sensitive_fields(record)

        assert record["extra"]["client_secret"] == REDACTED
        assert record["extra"]["secret"] == "workspace-oauth-client-secret"

    def test_nested_extra_masked(self) -> None:
        """Payloads passed as extra={...} are masked too."""
        record = {"extra": {"extra": {"access_token": "ya29.x", "Code": "4/0", "path": "/exchange"}}}

        redact_sensitive_fields(record)

        assert record["extra"]["extra"] == {
            "access_token": REDACTED,
            "Code": REDACTED,
            "path": "/exchange",
        }


class TestCloudLoggingSerializer:
    """Tests for the Cloud Logging JSON format."""

    def test_basic_fields(self) -> None:
        entry = json.loads(_cloud_logging_serializer(_record({})))

        assert entry["severity"] == "INFO"
        assert entry["message"] == "hello"
        assert entry["time"].startswith("2026-01-01T00:00:00")

    def test_extra_is_flattened(self) -> None:
        entry = json.loads(
            _cloud_logging_serializer(_record({"extra": {"path": "/exchange"}, "_internal": 1}))
        )

        assert entry["path"] == "/exchange"
        assert "extra" not in entry
        assert "_internal" not in entry

    def test_request_id_becomes_label(self) -> None:
        entry = json.loads(_cloud_logging_serializer(_record({"request_id": "req-1"})))

        assert entry["logging.googleapis.com/labels"] == {
            "service": "workspace-oauth-proxy",
            "request_id": "req-1",
        }
        assert "request_id" not in entry

    def test_errors_carry_source_location(self) -> None:
        entry = json.loads(_cloud_logging_serializer(_record({}, level="ERROR", no=40)))

        assert entry["severity"] == "ERROR"
        assert entry["logging.googleapis.com/sourceLocation"]["line"] == "10"


class TestConfigureLogging:
    """End-to-end: configured logger masks secrets before any sink sees them."""

    @pytest.fixture
    def lines(self) -> Iterator[list[str]]:
        configure_logging(is_production=False, log_level="DEBUG")
        captured: list[str] = []
        logger.add(lambda message: captured.append(str(message)), format="{message} {extra}")
        yield captured
        logger.remove()

    def test_configured_logger_redacts(self, lines: list[str]) -> None:
        logger.info("Exchanging", extra={"code": "4/0-sensitive", "redirect_uri": "https://x"})

        assert len(lines) == 1
        assert "4/0-sensitive" not in lines[0]
        assert "https://x" in lines[0]

    def test_standard_logging_routed_to_loguru(self, lines: list[str]) -> None:
        logging.getLogger("uvicorn.error").warning("Worker restarted")

        assert any("Worker restarted" in line for line in lines)

    def test_http_client_info_suppressed(self, lines: list[str]) -> None:
        logging.getLogger("httpx").info("HTTP Request: POST https://oauth2.googleapis.com/token")

        assert lines == []
