# src/dailycast/core/logging.py
"""Structured logging setup.

Engine modules log through structlog; SQLAlchemy, httpx and dynaconf log
through stdlib logging. Both end up in a single stdout handler whose
ProcessorFormatter renders JSON (scheduler) or console lines (operators).
"""

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog
from structlog.stdlib import ProcessorFormatter

if TYPE_CHECKING:
    from dailycast.core.config import LoggingSettings

# Raised to WARNING at minimum; at DEBUG they log every statement and request.
_NOISY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "opentelemetry",
    "dynaconf",
)


def _drop_formatter_keys(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Strip the _record/_from_structlog keys ProcessorFormatter injects."""
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def _pre_chain() -> list[Any]:
    """Processors every event passes through, structlog or stdlib."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]


def _render_chain(json_output: bool) -> list[Any]:
    if json_output:
        return [_drop_formatter_keys, structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [_drop_formatter_keys, structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def configure_logging(*, json_output: bool = False, level: str = "INFO") -> None:
    """Route structlog and stdlib logging to one stdout handler.

    Replaces any handlers already on the root logger, so calling it again
    (tests, CLI reconfiguration) never duplicates output.

    Args:
        json_output: Render one JSON object per line instead of console text
        level: Root log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    numeric_level: int = getattr(logging, level.upper())
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Reconfiguration must reach loggers created at import time
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProcessorFormatter(processors=_render_chain(json_output), foreign_pre_chain=pre_chain))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(numeric_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def configure_from_settings(
    settings: "LoggingSettings",
    *,
    json_output: bool | None = None,
    level: str | None = None,
) -> None:
    """Apply the logging section of the settings file.

    Explicit arguments (command line flags) take precedence over settings.
    """
    configure_logging(
        json_output=settings.json_output if json_output is None else json_output,
        level=settings.level if level is None else level,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Bound structlog logger for a module name."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
