"""Structured logging for the retry layer using structlog.

Every retry decision is logged as a structured event (``session_id``,
``delay_ms``, ``elapsed_ms``...), so the renderer choice matters: JSON lines
in production, colored console output otherwise. Level and environment come
from ``AGENT_LOG_LEVEL`` / ``AGENT_ENVIRONMENT`` unless passed explicitly.
"""

import logging
import sys

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from llm_resilience.config import RetrySettings, get_settings

APP_NAME = "llm-resilience"

# Transport libraries log every request; retries already log their own events
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def add_app_context(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Tag every event with the application name."""
    event_dict.setdefault("app", APP_NAME)
    return event_dict


def _renderer(is_production: bool) -> tuple[list[Processor], Processor]:
    if is_production:
        return [structlog.processors.format_exc_info], structlog.processors.JSONRenderer()
    return [structlog.processors.ExceptionPrettyPrinter()], structlog.dev.ConsoleRenderer(colors=True)


def configure_logging(
    log_level: str | None = None,
    environment: str | None = None,
    settings: RetrySettings | None = None,
) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Args:
        log_level: Logging level name; defaults to ``settings.LOG_LEVEL``
        environment: ``production`` selects JSON output; defaults to
            ``settings.ENVIRONMENT``
        settings: Settings to read defaults from (environment if None)
    """
    if log_level is None or environment is None:
        settings = settings or get_settings()
        log_level = log_level or settings.LOG_LEVEL
        environment = environment or settings.ENVIRONMENT

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    is_production = environment.lower() == "production"

    extra_processors, renderer = _renderer(is_production)
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_app_context,
        *extra_processors,
    ]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared_processors)
    )
    handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.get_logger(__name__).info(
        "Logging configured",
        log_level=logging.getLevelName(level),
        environment=environment,
        renderer="json" if is_production else "console",
    )
