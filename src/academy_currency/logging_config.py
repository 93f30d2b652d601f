"""structlog setup shared by the API and the CLI.

The API logs to stdout, pretty in development and JSON elsewhere. The CLI
logs to stderr at WARNING and above so that stdout carries only command
output (``academy-currency token`` is meant to be captured by the shell).
"""

import logging
import sys
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, TextIO
from uuid import UUID

import structlog
from structlog.types import EventDict, Processor

from academy_currency.config import Settings, get_settings

# httpx logs every FX provider request at INFO
_CHATTY_LOGGERS = ("httpx", "httpcore")


def _plain_values(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Render rates, conversion ids and statuses as plain text."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
        elif isinstance(value, (Decimal, UUID)):
            event_dict[key] = str(value)
    return event_dict


def _add_service(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    settings = get_settings()
    event_dict["app"] = settings.app_name
    event_dict["environment"] = settings.environment.value
    return event_dict


def _processors(log_format: str, colors: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _plain_values,
    ]
    if log_format == "json":
        processors += [
            _add_service,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=colors,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )
    return processors


def _configure(
    settings: Settings,
    *,
    stream: TextIO,
    level: int,
    cache_loggers: bool,
) -> None:
    structlog.configure(
        processors=_processors(settings.log_format, colors=stream.isatty()),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=cache_loggers,
    )

    logging.basicConfig(format="%(message)s", stream=stream, level=level)

    if settings.log_file:
        _add_file_handler(settings.log_file, level)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def configure_logging(settings: Settings | None = None) -> None:
    """Configure logging for the API process.

    Call once at startup, before the first log call.
    """
    settings = settings or get_settings()
    _configure(
        settings,
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.value),
        cache_loggers=True,
    )


def configure_cli_logging(settings: Settings | None = None) -> None:
    """Send CLI logs to stderr, WARNING and above."""
    settings = settings or get_settings()
    _configure(
        settings,
        stream=sys.stderr,
        level=max(getattr(logging, settings.log_level.value), logging.WARNING),
        # main() may run several times in one process
        cache_loggers=False,
    )


def _add_file_handler(log_file: Path, level: int) -> None:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    logging.getLogger().addHandler(handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("currency_conversion_started", tenant_id="academy-1")
    """
    return structlog.stdlib.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind request-scoped values (request id, tenant id) to later log calls."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind log context for the duration of a with block.

    Example:
        with LogContext(tenant_id=context.tenant_id, from_currency="USD"):
            logger.info("currency_conversion_requested")
    """

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs

    def __enter__(self) -> "LogContext":
        bind_context(**self.kwargs)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.kwargs.keys())
