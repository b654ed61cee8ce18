"""
tickflow — Structured Logging
===============================
JSON-structured logging with automatic tick-number injection.

Every log line emitted while the host tick callback is running carries the
``tick`` it belongs to, so bridge drains, tick-resident processing and the
task logic they resume can be correlated afterwards.

Usage:
    from tickflow.core.logging import get_logger
    logger = get_logger(__name__)
    logger.info("runner.task_started", task="WalkTask", task_index=1)
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from enum import StrEnum
from typing import Any

import structlog
from structlog.types import EventDict, WrappedLogger

from tickflow.core.config import get_settings

# ── Context Variable ────────────────────────────────────────────────────
# Set by the host integration for the duration of one tick callback.
current_tick_ctx: ContextVar[int | None] = ContextVar(
    "current_tick", default=None
)


def _add_app_context(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add application-level context to every log entry."""
    settings = get_settings()
    event_dict.setdefault("app", settings.app_name)
    event_dict.setdefault("environment", settings.environment.value)
    return event_dict


def _add_tick_number(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Inject the current tick number if we are inside a tick callback."""
    tick = current_tick_ctx.get(None)
    if tick is not None:
        event_dict.setdefault("tick", tick)
    return event_dict


def configure_logging() -> None:
    """
    Configure structlog + stdlib logging.

    Must be called once at startup (before any log emission).
    """
    settings = get_settings()

    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _add_app_context,
        _add_tick_number,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structured logger bound to the given module name."""
    return structlog.get_logger(name)


# ── Message-level logging for task code ─────────────────────────────────


class LogSeverity(StrEnum):
    """Severity levels accepted from automation task code."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


_SEVERITY_METHODS: dict[LogSeverity, str] = {
    LogSeverity.DEBUG: "debug",
    LogSeverity.INFO: "info",
    LogSeverity.WARN: "warning",
    LogSeverity.ERROR: "error",
}

_task_logger = get_logger("tickflow.task")


def log_message(
    message: str,
    severity: LogSeverity | str = LogSeverity.INFO,
    **context: Any,
) -> None:
    """
    Emit a free-form message from task code.

    Unknown severities are logged at ``info``.  Never raises: a broken
    handler must not take a running task down with it.
    """
    try:
        level = LogSeverity(str(severity).lower())
    except ValueError:
        level = LogSeverity.INFO
    try:
        getattr(_task_logger, _SEVERITY_METHODS[level])(
            "task.message", message=message, **context
        )
    except Exception:  # noqa: BLE001
        logging.getLogger("tickflow.task").debug(
            "log_message failed", exc_info=True
        )
