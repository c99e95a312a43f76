"""Structured logging with correlation IDs for verification tracing.

Provides:
- JSON log formatting
- Correlation, resource and identity context fields
- A dedicated security logger for replay / payer-binding suspicions
- Address and URL masking helpers
"""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
resource_id_var: ContextVar[Optional[str]] = ContextVar("resource_id", default=None)
identity_id_var: ContextVar[Optional[str]] = ContextVar("identity_id", default=None)

SECURITY_LOGGER_NAME = "wager_chain.security"

_CONTEXT_FIELDS = ("correlation_id", "resource_id", "identity_id")

_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        *_CONTEXT_FIELDS,
    }
)


class CorrelationIDFilter(logging.Filter):
    """Adds correlation context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        record.resource_id = resource_id_var.get()
        record.identity_id = identity_id_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure structured logging for the process.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging (True) or simple format (False)
        log_file: Optional file path for logging output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - "
            "[%(correlation_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(CorrelationIDFilter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(CorrelationIDFilter())
        root_logger.addHandler(file_handler)


def setup_logging_from_settings(settings: Any) -> None:
    setup_logging(level=settings.log_level, json_format=settings.log_json)


def generate_correlation_id() -> str:
    return f"cor_{uuid.uuid4().hex[:16]}"


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def ensure_correlation_id() -> str:
    """Return the current correlation ID, creating one if unset."""
    current = correlation_id_var.get()
    if current:
        return current
    new_id = generate_correlation_id()
    correlation_id_var.set(new_id)
    return new_id


def set_resource_context(resource_id: str) -> None:
    resource_id_var.set(resource_id)


def set_identity_context(identity_id: str) -> None:
    identity_id_var.set(identity_id)


def clear_context() -> None:
    correlation_id_var.set(None)
    resource_id_var.set(None)
    identity_id_var.set(None)


def mask_address(address: Optional[str]) -> str:
    """Shorten an address to ``0x1234...abcd`` for logs."""
    if not address:
        return "<none>"
    if len(address) < 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


def mask_url(url: str) -> str:
    """Mask query parameters and path keys (e.g. provider API keys)."""
    if "?" in url:
        url = url.split("?")[0] + "?<params_masked>"
    parts = url.split("/")
    # https://host/v2/<key> style provider URLs
    if len(parts) > 3 and len(parts[-1]) >= 24:
        parts[-1] = "<key_masked>"
    return "/".join(parts)


def log_security_event(event: str, **fields: Any) -> None:
    """Emit a security-significant event on the dedicated logger."""
    logging.getLogger(SECURITY_LOGGER_NAME).warning(
        f"[security] {event}",
        extra={"security_event": event, **fields},
    )
