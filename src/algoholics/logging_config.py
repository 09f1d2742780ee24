"""Structured logging configuration with structlog."""

import logging
import sys

import structlog

from algoholics.config import Settings

SERVICE_NAME = "algoholics"

# Driver loggers follow settings.driver_log_level instead of the app level
DRIVER_LOGGERS = ("asyncpg", "redis", "asyncio")


def _add_service(_logger: object, _method: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging(settings: Settings) -> None:
    """Route structlog through stdlib logging on stdout.

    Every event carries ``service=algoholics``. ``log_format`` picks JSON
    lines or the colored console renderer.
    """
    if settings.log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            _add_service,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=_level(settings.log_level), format="%(message)s", stream=sys.stdout)
    for name in DRIVER_LOGGERS:
        logging.getLogger(name).setLevel(_level(settings.driver_log_level))
