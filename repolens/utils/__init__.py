"""Logging setup shared by the CLI and the worker.

structlog renders repolens' own events; stdlib logging carries Shadows'
TaskLogger output and third-party loggers at the same level. Workflow runs
bind ``workflow_id`` and ``session_id`` into contextvars so every event a run
emits can be grepped by id.
"""

from __future__ import annotations

import logging
import sys

import structlog

from repolens.config import settings

# Third-party loggers that are noisy at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore")


def _level(name: str | None) -> int:
    value = logging.getLevelName((name or settings.log_level).upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """Configure structlog and stdlib logging.

    Args:
        level:      Level name; defaults to ``settings.log_level``.
        log_format: ``"console"`` or ``"json"``; defaults to ``settings.log_format``.
    """
    log_level = _level(level)
    fmt = (log_format or settings.log_format).lower()

    if fmt == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def workflow_context(workflow_id: str, session_id: str | None = None):
    """Context manager binding the run's ids onto every structlog event."""
    return structlog.contextvars.bound_contextvars(
        workflow_id=workflow_id,
        session_id=session_id,
    )
