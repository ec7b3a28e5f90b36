"""Structured logging configuration using structlog."""

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import Any

import structlog

from evidence_core.core.config import settings

SERVICE_NAME = "evidence-core"

# Libraries that log every request or statement at INFO
QUIET_LOGGERS: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "celery": logging.INFO,
}


def add_service_info(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Stamp every event with the service and deployment environment."""
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("environment", settings.environment)
    return event_dict


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_format: "json" or "console" (defaults to settings.log_format)
        log_level: Root level name (defaults to settings.log_level)
    """
    log_format = log_format or settings.log_format
    log_level = log_level or settings.log_level

    if log_format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    # Applied to structlog and stdlib records alike
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_service_info,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if log_format == "json":
        shared_processors.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, typically with the calling module's __name__."""
    return structlog.get_logger(name)


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """
    Bind context for the duration of a block, then restore the previous values.

    Usage:
        with log_context(content_item_id=str(item.id), stage="EVIDENCE"):
            logger.info("Running stage")  # includes content_item_id and stage
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
