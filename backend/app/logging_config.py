############################################################
#
# mathchat - Math-focused Chat Service
#
# logging_config.py: Structured logging configuration using structlog
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Structured logging for MathChat.

Events are snake_case names with keyword fields. Request-scoped fields
(``request_id``, ``user_id``) ride along through contextvars. Chat text
that ends up in a log line is clipped so a long reply cannot flood it.
"""

import logging
import sys
from typing import Any, List

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from backend.app.settings import Settings, get_settings

# Chatty at INFO: access log, connection pools, SDK retries
_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "openai", "aiosqlite")

# Fields that may carry user or model text
_TEXT_FIELDS = ("prompt", "message", "response", "error")
MAX_TEXT_FIELD_CHARS = 500


def clip_text_fields(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Clip chat text fields to MAX_TEXT_FIELD_CHARS."""
    for key in _TEXT_FIELDS:
        value = event_dict.get(key)
        if isinstance(value, str) and len(value) > MAX_TEXT_FIELD_CHARS:
            event_dict[key] = (
                value[:MAX_TEXT_FIELD_CHARS]
                + f"... [{len(value) - MAX_TEXT_FIELD_CHARS} more chars]"
            )
    return event_dict


def _build_handlers(
    settings: Settings, formatter: logging.Formatter, level: int
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
    return handlers


def setup_logging() -> None:
    """Route structlog and stdlib logging through one formatter."""
    settings = get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    shared_processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        clip_text_fields,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    root_logger = logging.getLogger()
    root_logger.handlers = _build_handlers(settings, formatter, log_level)
    root_logger.setLevel(log_level)

    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    if settings.database_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def bind_request_context(**kwargs: Any) -> None:
    """Bind request-scoped fields (request_id, user_id) for logging."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
