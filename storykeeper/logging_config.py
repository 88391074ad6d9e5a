"""
Structured JSON logging for lifecycle observability.

Provides structured logging with trace IDs for correlating the mark, move and
tree-rebuild steps of one request, plus a context manager that times a
long-running operation and logs its outcome.
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime

# Context variables for trace correlation
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)
operation_var: ContextVar[str | None] = ContextVar("operation", default=None)

# Extra fields copied from log records into the JSON payload
_EXTRA_FIELDS = (
    "event",
    "duration_ms",
    "tenant_id",
    "story_id",
    "comment_id",
    "job_id",
    "from_state",
    "to_state",
    "lifecycle_event",
    "comments_moved",
    "attempt",
    "reason",
    "warning_kind",
    "warnings",
    "job_data",
    "error",
)


# -----------------------------------------------------------------------------
# JSON Formatter
# -----------------------------------------------------------------------------


class JSONFormatter(logging.Formatter):
    """
    Format log records as single-line JSON.

    Output format:
    {"timestamp": "...", "level": "INFO", "message": "...", "trace_id": "...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        trace_id = trace_id_var.get()
        if trace_id:
            log_data["trace_id"] = trace_id

        operation = operation_var.get()
        if operation:
            log_data["operation"] = operation

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, default=str)


def configure_logging(json_format: bool = True, level: str = "INFO") -> None:
    """
    Configure logging for deployed or local runs.

    Args:
        json_format: If True, use JSON format. If False, use human-readable format.
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


# -----------------------------------------------------------------------------
# Context Managers
# -----------------------------------------------------------------------------


@contextmanager
def log_operation(operation: str, trace_id: str | None = None, **fields):
    """
    Context manager for operation-level logging.

    Logs start and end with duration. Exceptions are logged and re-raised.

    Usage:
        with log_operation("archive", story_id=story_id, tenant_id=tenant_id):
            # ... move comments ...
    """
    trace_token = trace_id_var.set(trace_id) if trace_id else None
    operation_token = operation_var.set(operation)

    start_time = time.time()
    logger = logging.getLogger("storykeeper.operations")

    logger.info(f"{operation} started", extra={"event": f"{operation}_start", **fields})

    try:
        yield
        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"{operation} completed",
            extra={"event": f"{operation}_complete", "duration_ms": duration_ms, **fields},
        )
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"{operation} failed: {e}",
            extra={"event": f"{operation}_failed", "duration_ms": duration_ms, **fields},
            exc_info=True,
        )
        raise
    finally:
        operation_var.reset(operation_token)
        if trace_token is not None:
            trace_id_var.reset(trace_token)
