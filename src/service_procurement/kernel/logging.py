"""
Workflow logging

structlog on top of the standard logging module. Every line carries the
correlation id of the invocation that produced it, so the entries of one CLI
call (or one embedding request) can be grouped.

Offer prices and rejection reasons are commercial data and never reach the
logs.
"""

import contextvars
import logging
import sys
import time
from typing import Any, TextIO

import structlog

from service_procurement.kernel.errors import ProcurementError
from service_procurement.kernel.ids import generate_id

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)

# Context keys masked by redact_context
COMMERCIAL_FIELDS = frozenset({"price", "rejection_reason", "rp_rejection_reason"})
MASK = "***REDACTED***"


def new_correlation_id() -> str:
    """Open a fresh correlation scope (one per CLI invocation)"""
    cid = generate_id()
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str:
    """Correlation id of the current context, assigned on first use"""
    return _correlation_id.get() or new_correlation_id()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id.set(correlation_id)


def _add_correlation_id(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    event_dict.setdefault("correlation_id", get_correlation_id())
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    log_level: str = "INFO",
    stream: TextIO | None = None,
) -> None:
    """
    Route workflow logs through structlog

    Args:
        json_output: One JSON object per line instead of console lines
        log_level: Threshold name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        stream: Destination; stderr by default so CLI stdout stays parseable
    """
    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stderr,
        level=getattr(logging, log_level.upper()),
    )

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_correlation_id,
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def redact_context(context: dict[str, Any]) -> dict[str, Any]:
    """
    Mask commercial fields in a log context

    Example:
        >>> redact_context({"price": "1200.00", "action": "submit_offer"})
        {'price': '***REDACTED***', 'action': 'submit_offer'}
    """
    return {k: MASK if k in COMMERCIAL_FIELDS else v for k, v in context.items()}


class LogOperation:
    """
    Time one workflow action and log how it ended

    A completed action logs at INFO. A rejected one (any ProcurementError) logs
    at WARNING with its error code and no traceback; anything else logs at
    ERROR with the traceback. The exception always propagates.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        **context: Any,
    ) -> None:
        self.logger = logger
        self.operation = operation
        self.context = redact_context(context)
        self.start_time: float = 0.0

    def _fields(self) -> dict[str, Any]:
        elapsed_ms = (time.perf_counter() - self.start_time) * 1000
        return {"operation": self.operation, "duration_ms": round(elapsed_ms, 2), **self.context}

    def __enter__(self) -> "LogOperation":
        self.start_time = time.perf_counter()
        self.logger.debug(f"{self.operation} started", operation=self.operation, **self.context)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if exc_val is None:
            self.logger.info(f"{self.operation} completed", **self._fields())
        elif isinstance(exc_val, ProcurementError):
            self.logger.warning(
                f"{self.operation} rejected",
                error=exc_val.code,
                reason=str(exc_val),
                **self._fields(),
            )
        else:
            self.logger.error(f"{self.operation} failed", exc_info=exc_val, **self._fields())
