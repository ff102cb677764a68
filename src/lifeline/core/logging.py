# src/lifeline/core/logging.py
"""Log output for the lifeline CLI and for hosts embedding SessionGuard.

Library modules only ever call structlog.get_logger(__name__) and emit
snake_case events with key/value context (checkpoint_created,
resume_offered, checkpoint_abandoned, ...). Nothing is printed until a
process calls configure_logging(); the CLI does so once per invocation.

Both structlog events and plain stdlib records (SQLAlchemy, alembic,
Dynaconf) end up on one stderr handler, rendered as JSON lines or for
a terminal. stdout belongs to the CLI's tables and summaries.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

# Capped at WARNING (or the root level, if stricter) even under --verbose
_QUIET_LIBRARIES: tuple[str, ...] = (
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "alembic",
    "dynaconf",
)


def _drop_formatter_keys(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    # ProcessorFormatter puts these on every record it handles
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def _pre_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]


def _render_chain(json_output: bool) -> list[Any]:
    if json_output:
        return [
            _drop_formatter_keys,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [
        _drop_formatter_keys,
        structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
    ]


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
) -> None:
    """Send lifeline's events and third-party records to stderr.

    Replaces the root logger's handlers, so calling it again (a second
    CLI invocation in the same test process, say) starts from scratch.

    Args:
        json_output: One JSON object per line instead of console rendering.
        level: Root level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    root_level = getattr(logging, level.upper())
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ProcessorFormatter(processors=_render_chain(json_output), foreign_pre_chain=pre_chain))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(root_level)

    library_level = max(root_level, logging.WARNING)
    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """structlog logger for name, typed for callers that want the stdlib API."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
