"""Structured JSON logging configuration for Google Cloud Logging.

Production output is one JSON object per line on stdout, which Cloud Run
and Cloud Functions forward to Cloud Logging as structured entries. In
development, uses human-readable colored output on stderr.

Log lines never carry credentials. Call sites only pass non-sensitive
context, and a patcher masks any sensitive key that slips into `extra`.
Tracebacks are rendered without variable values in every environment since
frame locals can hold the client secret.
"""

import json
import logging
import sys
import traceback
from typing import Any

from loguru import logger

SERVICE_NAME = "workspace-oauth-proxy"

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = frozenset(
    {
        "code",
        "code_verifier",
        "client_secret",
        "secret_value",
        "access_token",
        "refresh_token",
        "id_token",
        "token",
    }
)

# Loguru level name -> Cloud Logging severity
_SEVERITY = {
    "TRACE": "DEBUG",
    "DEBUG": "DEBUG",
    "INFO": "INFO",
    "SUCCESS": "INFO",
    "WARNING": "WARNING",
    "ERROR": "ERROR",
    "CRITICAL": "CRITICAL",
}

_DEV_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> "
    "<level>{level: <8}</level> "
    "<cyan>{name}:{line}</cyan> "
    "<level>{message}</level> "
    "<dim>{extra}</dim>"
)

# Standard library loggers routed into loguru
_STDLIB_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")
_QUIET_STDLIB_LOGGERS = ("httpx", "httpcore", "google.auth", "google.api_core")


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if key.lower() in SENSITIVE_KEYS else _redact(item)
            for key, item in value.items()
        }
    return value


def redact_sensitive_fields(record: dict[str, Any]) -> None:
    """Loguru patcher masking sensitive keys in `extra` (nested dicts included)."""
    record["extra"].update(_redact(record["extra"]))


def _flatten_extra(extra: dict[str, Any]) -> dict[str, Any]:
    """Merge `logger.info(..., extra={...})` payloads with bound context."""
    fields: dict[str, Any] = {}
    for key, value in extra.items():
        # Loguru internals
        if key.startswith("_"):
            continue
        if key == "extra" and isinstance(value, dict):
            fields.update(value)
        else:
            fields[key] = value
    return fields


def _exception_entry(exception: Any) -> dict[str, Any]:
    tb = None
    if exception.traceback:
        tb = "".join(
            traceback.format_exception(exception.type, exception.value, exception.traceback)
        )
    return {
        "type": exception.type.__name__ if exception.type else None,
        "value": str(exception.value) if exception.value else None,
        "traceback": tb,
    }


def _cloud_logging_serializer(record: dict[str, Any]) -> str:
    """Serialize a loguru record as a Cloud Logging structured entry.

    `severity`, `message` and `time` are the fields Cloud Logging interprets.
    The request ID goes into the entry's labels so all lines of one request
    can be filtered together; other context fields sit at the top level.
    """
    entry: dict[str, Any] = {
        "severity": _SEVERITY.get(record["level"].name, "INFO"),
        "message": record["message"],
        "time": record["time"].isoformat(),
    }

    if record["level"].no >= logging.ERROR:
        entry["logging.googleapis.com/sourceLocation"] = {
            "file": record["file"].path,
            "line": str(record["line"]),
            "function": record["function"],
        }

    if record["exception"] is not None:
        entry["exception"] = _exception_entry(record["exception"])

    fields = _flatten_extra(record.get("extra", {}))
    labels = {"service": SERVICE_NAME}
    request_id = fields.pop("request_id", None)
    if request_id:
        labels["request_id"] = request_id
    entry["logging.googleapis.com/labels"] = labels
    entry.update(fields)

    return json.dumps(entry, default=str)


def _json_sink(message: Any) -> None:
    sys.stdout.write(_cloud_logging_serializer(message.record) + "\n")
    sys.stdout.flush()


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(*, is_production: bool, log_level: str = "INFO") -> None:
    """Configure loguru for the application.

    Args:
        is_production: If True, output JSON for Cloud Logging. If False, use
            human-readable colored output for development.
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    logger.remove()
    logger.configure(patcher=redact_sensitive_fields)

    if is_production:
        logger.add(_json_sink, level=log_level, format="{message}", backtrace=False, diagnose=False)
    else:
        logger.add(
            sys.stderr,
            level=log_level,
            format=_DEV_FORMAT,
            colorize=True,
            backtrace=True,
            diagnose=False,
        )

    _route_standard_logging(log_level)


def _route_standard_logging(log_level: str) -> None:
    """Send uvicorn and client library logs through loguru."""
    handler = InterceptHandler()
    logging.basicConfig(handlers=[handler], level=log_level, force=True)

    for name in _STDLIB_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [handler]
        std_logger.propagate = False
        std_logger.setLevel(log_level)

    # Request lines from client libraries only matter when something fails
    quiet_level = max(logging.WARNING, logging.getLevelName(log_level))
    for name in _QUIET_STDLIB_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [handler]
        std_logger.propagate = False
        std_logger.setLevel(quiet_level)
