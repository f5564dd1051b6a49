from __future__ import annotations

import logging
from typing import Any

import structlog

from .config import Settings


def configure_logging(level: str = "INFO", *, json: bool = True) -> None:
    """Configure structlog and standard logging for the routing core."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer: Any = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(*, name: str | None = None, **kwargs: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    if kwargs:
        return logger.bind(**kwargs)
    return logger


def truncate_for_log(value: str | None, max_len: int = 2000) -> str:
    """Trim long prompt or response text before it is attached to a log event."""
    if not value or len(value) <= max_len:
        return value or ""
    return value[:max_len] + "... (truncated)"


def configure_logging_from_settings(settings: Settings) -> None:
    configure_logging(settings.observability.log_level, json=settings.observability.log_json)
