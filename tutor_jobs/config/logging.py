import logging
import sys
from typing import Any

import structlog

from .settings import Settings, settings as default_settings


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structured logging with structlog."""
    settings = settings or default_settings
    level = getattr(logging, settings.log_level)

    # Standard library loggers (uvicorn, sqlalchemy, handlers using logging)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    callsite = (
        [structlog.processors.CallsiteParameter.FUNC_NAME] if settings.debug else []
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.CallsiteParameterAdder(parameters=callsite),
            structlog.processors.format_exc_info,
            (
                structlog.dev.ConsoleRenderer()
                if settings.debug
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def add_request_context(request_id: str, **context: Any) -> None:
    """Add request-specific context to all log messages."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **context)


def dispatch_context(worker_id: str, **context: Any):
    """Context manager tagging every log line of a dispatcher run with its worker id."""
    return structlog.contextvars.bound_contextvars(worker_id=worker_id, **context)
