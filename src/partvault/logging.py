"""Structured logging for partvault, built on structlog over stdlib logging.

Library code only calls :func:`get_logger`; the CLI decides where the
output goes via :func:`setup_logging` or :func:`setup_logging_from_config`.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path

import structlog

from partvault.core.models import LogFormat, LoggingConfig

# Substrings of event keys whose values never reach the output
_SENSITIVE_KEYS = frozenset({
    "password",
    "secret",
    "token",
    "account_key",
    "access_key",
    "credential",
    "authorization",
    "sas",
})

# SDK loggers that log every HTTP request at INFO
_QUIET_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3", "azure")

_LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
_LOG_FILE_BACKUPS = 5


def _redact_sensitive(
        _logger: logging.Logger,
        _method: str,
        event_dict: dict,
) -> dict:
    """Mask values of keys that look like credentials."""
    for key in event_dict:
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            event_dict[key] = "***REDACTED***"
    return event_dict


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _redact_sensitive,
        structlog.processors.UnicodeDecoder(),
    ]


def _formatter(renderer: structlog.types.Processor) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def _file_handler(log_file: Path) -> logging.Handler:
    """Rotating JSON file handler; JSON regardless of the console format."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=_LOG_FILE_MAX_BYTES, backupCount=_LOG_FILE_BACKUPS, encoding="utf-8"
    )
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    return handler


def setup_logging(
        level: str = "INFO",
        log_file: Path | None = None,
        log_format: LogFormat = LogFormat.CONSOLE,
) -> None:
    """Route structlog events through the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional rotating log file, always written as JSON.
        log_format: Console output as human-friendly text or JSON lines.
    """
    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if log_format == LogFormat.JSON:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    # Logs go to stderr so stdout stays usable for command output
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(_formatter(renderer))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    if log_file:
        root_logger.addHandler(_file_handler(log_file))
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging_from_config(
        config: LoggingConfig,
        *,
        verbose: bool = False,
        log_json: bool = False,
) -> None:
    """Apply a ``[logging]`` config table; CLI flags take precedence."""
    setup_logging(
        level="DEBUG" if verbose else config.level,
        log_file=config.log_file,
        log_format=LogFormat.JSON if log_json else config.format,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog bound logger."""
    return structlog.get_logger(name)
