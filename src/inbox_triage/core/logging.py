"""structlog setup and per-run correlation ids.

Log lines go to stderr so command output on stdout stays clean. Each triage
run stores its id in a ContextVar; a processor copies it into every entry
as ``triage_run_id``.

Usage:
    from inbox_triage.core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("messages_scored", fetched=12, low_priority=5)
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog

RUN_ID_KEY = "triage_run_id"

_run_id: ContextVar[str | None] = ContextVar("triage_run_id", default=None)


def set_correlation_id(correlation_id: str | None) -> None:
    """Tag subsequent log entries in this context with a run id (None clears it)."""
    _run_id.set(correlation_id)


def get_correlation_id() -> str | None:
    return _run_id.get()


def add_correlation_id(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Processor: attach the current run id, if any."""
    run_id = _run_id.get()
    if run_id is not None:
        event_dict.setdefault(RUN_ID_KEY, run_id)
    return event_dict


def _processors(json_output: bool) -> list[structlog.types.Processor]:
    chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        add_correlation_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        chain += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return chain


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Route structlog through stdlib logging at the given level.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_output: One JSON object per line instead of the console renderer
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=logging.getLevelName(log_level.upper()),
        force=True,
    )

    structlog.configure(
        processors=_processors(json_output),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def short_id(message_id: str) -> str:
    """Provider ids are long; keep the first 20 characters for log output."""
    return message_id if len(message_id) <= 20 else f"{message_id[:20]}..."
