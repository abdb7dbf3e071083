"""Structured logging configuration with structlog."""

import logging

import structlog

from lifedrop.config import Settings

# Libraries that log every statement or connection at INFO.
_NOISY_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "httpx")


def setup_logging(settings: Settings) -> None:
    """JSON lines unless ``log_format`` asks for the console renderer.

    Every event carries the environment name, plus whatever the request ID
    middleware bound into the context for the current request.
    """
    renderer: structlog.types.Processor = (
        structlog.dev.ConsoleRenderer() if settings.log_format == "console" else structlog.processors.JSONRenderer()
    )

    def add_environment(
        _logger: object, _method: str, event_dict: structlog.types.EventDict
    ) -> structlog.types.EventDict:
        event_dict.setdefault("env", settings.environment)
        return event_dict

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_environment,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
