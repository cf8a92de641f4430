"""Structured logging setup for the errata logger tree.

Modules only call structlog.get_logger(__name__). Nothing is configured on
import. configure_logging() is what debug mode calls, and applications may
call it to get errata's own diagnostics on stderr.

Only the stdlib "errata" logger is touched: it gets a single stderr handler
and stops propagating, so the root logger and every other logger keep the
host's configuration. structlog itself is configured only when the host has
not configured it already; an application that owns structlog keeps its
processors and errata records still reach the "errata" handler through the
stdlib.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

ERRATA_LOGGER = "errata"

_HANDLER_NAME = "errata-stderr"

_SHARED_PROCESSORS: tuple[Any, ...] = (
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.StackInfoRenderer(),
)


def _drop_formatter_keys(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Strip the _record/_from_structlog keys ProcessorFormatter injects."""
    event_dict.pop("_record", None)
    event_dict.pop("_from_structlog", None)
    return event_dict


def _stderr_handler(json_output: bool) -> logging.Handler:
    renderer: list[Any] = (
        [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        if json_output
        else [structlog.dev.ConsoleRenderer(colors=False)]
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        ProcessorFormatter(
            processors=[_drop_formatter_keys, *renderer],
            foreign_pre_chain=list(_SHARED_PROCESSORS),
        )
    )
    return handler


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
) -> logging.Logger:
    """Route errata's own log output to stderr.

    Calling it again replaces the handler installed by the previous call.

    Args:
        json_output: If True, output JSON. If False, human-readable.
        level: Log level for the errata logger (DEBUG, INFO, WARNING, ERROR).

    Returns:
        The configured stdlib "errata" logger.
    """
    if not structlog.is_configured():
        structlog.configure(
            processors=[*_SHARED_PROCESSORS, ProcessorFormatter.wrap_for_formatter],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=False,
        )

    errata_logger = logging.getLogger(ERRATA_LOGGER)
    for existing in [h for h in errata_logger.handlers if h.get_name() == _HANDLER_NAME]:
        errata_logger.removeHandler(existing)
        existing.close()
    errata_logger.addHandler(_stderr_handler(json_output))
    errata_logger.setLevel(getattr(logging, level.upper()))
    errata_logger.propagate = False
    return errata_logger
