"""
Structured logging for pgstat-alert.

Every outcome of the monitor (probe results, suppressed alerts, channel
failures, action output) is only observable through this log sink.
Features:
- JSONL (one JSON object per line) rolling log file
- Plain or JSON console output
- Credentials masked before rendering
- Structured context binding (instance, probe, channel)
"""

from __future__ import annotations

import logging
import os
import re
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any, TextIO

import structlog

from pgstat_alert.config import get_config
from pgstat_alert.exceptions import PgStatAlertError

if TYPE_CHECKING:
    from structlog.types import Processor

DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5
MASK = "***"

# Event keys whose values are always masked
SECRET_KEYS = frozenset({"password", "bot_token", "access_token", "token", "authorization"})

# Secrets embedded in free text (conninfo strings, API URLs, headers)
_SECRET_PATTERNS = [
    re.compile(r"(password\s*=\s*)('[^']*'|\S+)", re.IGNORECASE),
    re.compile(r"(/bot)(\d+:[A-Za-z0-9_-]+)"),
    re.compile(r"(bearer\s+)([A-Za-z0-9._~+/=-]+)", re.IGNORECASE),
]

_QUIET_LOGGERS = ("psycopg", "psycopg.pool")


class JSONLRotatingHandler(RotatingFileHandler):
    """Rotating file handler writing one JSON object per line."""

    def __init__(
        self,
        filename: str | Path,
        max_bytes: int = DEFAULT_MAX_BYTES,
        backup_count: int = DEFAULT_BACKUP_COUNT,
        encoding: str = "utf-8",
    ):
        path = Path(filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(
            filename=str(path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding=encoding,
        )


def mask_secrets(text: str) -> str:
    """Replace credentials found in ``text`` with a mask."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: m.group(1) + MASK, text)
    return text


def _redact_secrets(
    _logger: logging.Logger, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key, value in event_dict.items():
        if key in SECRET_KEYS and value:
            event_dict[key] = MASK
        elif isinstance(value, str):
            event_dict[key] = mask_secrets(value)
    return event_dict


def _add_service_info(
    _logger: logging.Logger, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    event_dict["service"] = "pgstat-alert"
    event_dict["hostname"] = os.environ.get("HOSTNAME", "unknown")
    event_dict["pid"] = os.getpid()
    return event_dict


def _add_timestamp_utc(
    _logger: logging.Logger, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _structure_exception(
    _logger: logging.Logger, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Render an ``exception=`` value as a dict, with error codes for our own errors."""
    exc = event_dict.pop("exception", None)
    if isinstance(exc, PgStatAlertError):
        event_dict["exception"] = exc.to_dict()
    elif isinstance(exc, BaseException):
        event_dict["exception"] = {"error_type": type(exc).__name__, "message": str(exc)}
    elif exc:
        event_dict["exception"] = exc
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        _add_timestamp_utc,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        _structure_exception,
        _redact_secrets,
        structlog.processors.UnicodeDecoder(),
    ]


def _file_handler(path: str, level: int, max_bytes: int, backup_count: int) -> logging.Handler:
    handler = JSONLRotatingHandler(filename=path, max_bytes=max_bytes, backup_count=backup_count)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors(),
            processors=[
                _add_service_info,
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
        )
    )
    handler.setLevel(level)
    return handler


def _console_handler(fmt: str, level: int, stream: TextIO) -> logging.Handler:
    renderer: Processor
    if fmt.lower() == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=False,
            exception_formatter=structlog.dev.plain_traceback,
        )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    handler.setLevel(level)
    return handler


def setup_logging(
    level: str | None = None,
    format: str | None = None,
    log_file: str | None = None,
    max_bytes: int | None = None,
    backup_count: int | None = None,
    enable_console: bool | None = None,
) -> None:
    """
    Configure structured logging for the application.

    Unset arguments fall back to the ``logging`` section of the global
    configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        format: Console format (json, plain).
        log_file: JSONL log file path; no file sink when unset.
        max_bytes: Size at which the log file is rotated. Default 10MB.
        backup_count: Number of rotated files kept. Default 5.
        enable_console: Whether to log to stdout.
    """
    settings = get_config().logging

    log_level = getattr(logging, (level or settings.level).upper(), logging.INFO)
    log_file = log_file or settings.file_path
    if enable_console is None:
        enable_console = settings.console

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = []
    if log_file:
        handlers.append(
            _file_handler(
                log_file,
                log_level,
                max_bytes or DEFAULT_MAX_BYTES,
                backup_count or DEFAULT_BACKUP_COUNT,
            )
        )
    if enable_console:
        handlers.append(_console_handler(format or settings.format, log_level, sys.stdout))

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> Any:
    """
    Get a structured logger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("probe_started", probe="connection_count")
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables to all subsequent log messages in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def with_context(**kwargs: Any) -> Iterator[None]:
    """
    Temporarily bind context variables.

    Example:
        with with_context(instance="production-db-01", probe="disk_usage"):
            logger.info("tick")
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
