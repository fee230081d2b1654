"""
Structured Logging with Correlation IDs

Every log line emitted while a batch is being reconciled carries:
- tenant_id: Operator/tenant the batch belongs to
- batch_id: Held batch identifier (one weekly upload)
- week_label: Human label of the processing week (e.g. "2025-W14")
- trip_id: Trip (VRID) being resolved, when relevant
- workflow_id: Temporal workflow execution, when run durably

Usage:
    from core.observability.logging import get_logger, with_correlation

    logger = get_logger(__name__)

    with with_correlation(batch_id="B-001", week_label="2025-W14"):
        logger.info("Reconciling batch")  # Includes batch_id and week_label
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional


# =============================================================================
# Correlation Context
# =============================================================================

@dataclass
class CorrelationContext:
    """Context for correlating logs across one reconciliation run."""
    tenant_id: Optional[str] = None
    batch_id: Optional[str] = None
    week_label: Optional[str] = None
    trip_id: Optional[str] = None
    workflow_id: Optional[str] = None
    activity_name: Optional[str] = None
    stage: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None values."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def merge(self, **kwargs) -> "CorrelationContext":
        """Create a new context with merged values."""
        data = self.to_dict()
        data.update({k: v for k, v in kwargs.items() if v is not None})
        return CorrelationContext(**data)


_correlation_context: ContextVar[CorrelationContext] = ContextVar(
    "correlation_context",
    default=CorrelationContext()
)


def get_correlation_context() -> CorrelationContext:
    """Get the current correlation context."""
    return _correlation_context.get()


@contextmanager
def with_correlation(**kwargs):
    """
    Context manager to set correlation IDs for logging.

    Usage:
        with with_correlation(batch_id="B-001", stage="resolve"):
            logger.info("Resolving")  # Will include batch_id and stage
    """
    new_ctx = get_correlation_context().merge(**kwargs)
    token = _correlation_context.set(new_ctx)
    try:
        yield new_ctx
    finally:
        _correlation_context.reset(token)


# =============================================================================
# Formatters
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """
    JSON formatter that includes correlation context.

    Output format:
    {
        "timestamp": "2025-04-07T12:00:00.000Z",
        "level": "INFO",
        "logger": "reconciliation.engine",
        "message": "Reconciliation complete",
        "batch_id": "B-001",
        "week_label": "2025-W14",
        "lines_processed": 412
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        log_data.update(get_correlation_context().to_dict())

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable formatter with the key correlation IDs.

    Output format:
    2025-04-07 12:00:00 [INFO ] reconciliation.engine [acme/B-001/2025-W14]: Reconciliation complete
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_correlation_context()

        parts = [p for p in (ctx.tenant_id, ctx.batch_id, ctx.week_label) if p]
        if ctx.trip_id:
            parts.append(f"trip:{ctx.trip_id}")
        correlation = "/".join(parts) if parts else "-"

        timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S")
        msg = f"{timestamp} [{record.levelname:5}] {record.name} [{correlation}]: {record.getMessage()}"

        extra = getattr(record, "extra_fields", None)
        if extra:
            msg += " " + " ".join(f"{k}={v}" for k, v in extra.items())

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


# =============================================================================
# Logger
# =============================================================================

# Application packages whose level follows configure_logging()
APP_LOGGERS = (
    "identity_resolver",
    "historical_archive",
    "pending_mappings",
    "reconciliation",
    "balance_ledger",
    "activities",
    "workflows",
    "api",
    "workers",
    "scripts",
)

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "openpyxl": logging.WARNING,
    "temporalio": logging.INFO,
}


class CorrelatedLogger(logging.LoggerAdapter):
    """
    Logger adapter accepting ``extra_fields={...}`` on every call.

    The fields end up on the record as ``record.extra_fields`` where both
    formatters pick them up next to the correlation context.
    """

    def __init__(self, logger: logging.Logger):
        super().__init__(logger, {})

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra["extra_fields"] = kwargs.pop("extra_fields", None) or {}
        kwargs["extra"] = extra
        return msg, kwargs


_loggers: Dict[str, CorrelatedLogger] = {}
_handler: Optional[logging.Handler] = None


def configure_logging(
    level: int = logging.INFO,
    json_format: bool = False,
    stream=None,
) -> logging.Handler:
    """
    Install the application log handler on the root logger.

    Calling it again swaps the previous handler for a new one, so the API,
    the worker and the scripts can each configure logging from settings.

    Args:
        level: Level for the handler and the application packages
        json_format: Emit JSON lines instead of human-readable text
        stream: Output stream (stdout by default)

    Returns:
        The installed handler
    """
    global _handler

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())
    root.addHandler(handler)
    root.setLevel(min(root.level or logging.WARNING, level))

    for name in APP_LOGGERS:
        logging.getLogger(name).setLevel(level)
    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, quiet_level))

    _handler = handler
    return handler


def get_logger(name: str) -> CorrelatedLogger:
    """
    Get a correlated logger for the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        CorrelatedLogger instance, one per name
    """
    if name not in _loggers:
        _loggers[name] = CorrelatedLogger(logging.getLogger(name))
    return _loggers[name]
