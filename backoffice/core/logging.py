from __future__ import annotations

import logging
import sys
from typing import Any, Optional

import structlog

from backoffice.core.config import settings

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("aiohttp.access", "sqlalchemy.engine", "uvicorn.access")


def _renderer():
    if settings.log_format == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def configure_structlog() -> None:
    """Route structlog through stdlib logging at ``LOG_LEVEL``."""
    level = getattr(logging, settings.log_level, logging.INFO)

    logging.basicConfig(level=level, format="%(message)s", stream=sys.stdout)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_structlog_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name) if name else structlog.get_logger()


def bind_request_context(request_id: str, **extra: Any) -> None:
    """Start a fresh log context for one request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **extra)
