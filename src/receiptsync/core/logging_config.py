"""Logging configuration for the ingestion and sync pipeline."""

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

PACKAGE_LOGGER = "receiptsync"
LOG_FILE_NAME = "receiptsync.log"
REDACTED = "***REDACTED***"
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Substrings of extra keys whose values never reach a log sink
SENSITIVE_KEY_PARTS = (
    "session_token",
    "access_token",
    "api_key",
    "password",
    "cookie",
    "authorization",
    "raw_document",
)

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "stack_info",
        "exc_info",
        "exc_text",
        "message",
    }
)


class LoggingConfig(BaseModel):
    """Where and how the package logs."""

    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="json", description="json or text")
    max_file_size_mb: int = Field(default=10, description="Rotate after this size")
    backup_count: int = Field(default=10, description="Rotated files kept")
    log_path: Path = Field(default=Path("logs"), description="Log directory")
    enable_file_output: bool = Field(default=True, description="Write a log file")
    enable_console_output: bool = Field(default=True, description="Log to stderr")
    sanitize_sensitive_data: bool = Field(
        default=True, description="Redact tokens, cookies and document bytes"
    )

    def setup_directories(self) -> None:
        """Create the log directory if it doesn't exist."""
        self.log_path.mkdir(parents=True, exist_ok=True)


def is_sensitive(key: str) -> bool:
    """True when an extra field name looks like a credential or payload."""
    lowered = key.lower()
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def redact(value: Any) -> Any:  # noqa: ANN401
    """Mask sensitive keys in nested dicts and lists."""
    if isinstance(value, dict):
        return {
            key: REDACTED if is_sensitive(str(key)) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list | tuple):
        return [redact(item) for item in value]
    return value


def _json_default(obj: Any) -> str:  # noqa: ANN401
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return f"{obj:.2f}"
    if isinstance(obj, bytes):
        return f"<{len(obj)} bytes>"
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, with `extra=` fields at the top level."""

    def __init__(self, *, sanitize_sensitive: bool = True) -> None:
        super().__init__()
        self.sanitize_sensitive = sanitize_sensitive

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "component": record.name.rsplit(".", 1)[-1],
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS
        }
        if self.sanitize_sensitive:
            extra = redact(extra)
        entry.update(extra)

        return json.dumps(entry, default=_json_default, ensure_ascii=False)


def _build_handlers(
    config: LoggingConfig, formatter: logging.Formatter
) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if config.enable_file_output:
        config.setup_directories()
        handlers.append(
            logging.handlers.RotatingFileHandler(
                filename=config.log_path / LOG_FILE_NAME,
                maxBytes=config.max_file_size_mb * 1024 * 1024,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
        )
    if config.enable_console_output:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(config: LoggingConfig) -> logging.Logger:
    """Configure the package logger; safe to call more than once."""
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter
    if config.log_format == "json":
        formatter = StructuredFormatter(
            sanitize_sensitive=config.sanitize_sensitive_data
        )
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    for handler in _build_handlers(config, formatter):
        package_logger.addHandler(handler)
    package_logger.propagate = False
    return package_logger
