"""Structured logging setup using structlog.

Console rendering is the default; set ``SMARTFHIR_LOG_FORMAT=json`` for
machine-readable output. Importing smartfhir never configures logging; host
applications and scripts call :func:`configure_logging` themselves. Loggers
are obtained with :func:`get_logger` and emit dotted event names, e.g.
``smartfhir.oauth.token_acquired``.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.typing import Processor

from smartfhir.core.settings import LogSettings


class _LoggingState:
    """Tracks whether structlog has been configured in this process."""

    configured: bool = False


_state = _LoggingState()


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(settings: LogSettings | None = None, force: bool = False) -> None:
    """Configure structlog and the stdlib root logger once per process."""
    if _state.configured and not force:
        return

    settings = settings or LogSettings()
    shared = _shared_processors()

    renderer: Processor
    if settings.format.lower() == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=False,
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=[
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.level.upper(), logging.INFO))

    structlog.contextvars.bind_contextvars(service=settings.service_name)
    _state.configured = True


def get_logger(name: str) -> Any:
    """Return a structured logger over the stdlib logger ``name``.

    Nothing is configured here; handlers and levels stay with the host
    application, which may call :func:`configure_logging`.
    """
    return structlog.wrap_logger(logging.getLogger(name))
