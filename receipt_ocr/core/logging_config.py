"""Logging setup for batch runs.

Pipeline modules log through ``logging.getLogger(__name__)`` and attach
run context with ``extra=``::

    logger.warning("Error processing 3.pdf", extra={"run_id": rid, "item_id": "3"})

Two renderings are available: one JSON object per line (for log shipping
and ``jq``) or a readable text line with the context appended as
``key=value`` pairs.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

# Attributes picked up from ``extra=`` when present
CONTEXT_FIELDS = (
    "run_id",
    "batch_index",
    "item_id",
    "stage",
    "error_code",
    "duration_ms",
    "retry_attempt",
    "succeeded",
    "failed",
)

NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")


def _context(record: logging.LogRecord) -> dict[str, Any]:
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)}


class StructuredFormatter(logging.Formatter):
    """Render each record as a single JSON object.

    Example output::

        {"timestamp": "2025-12-05T17:52:00.123456Z", "level": "INFO",
         "logger": "receipt_ocr.pipeline.controller",
         "message": "Processing batch 2/3", "run_id": "...", "batch_index": 1}
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data: dict[str, Any] = {
            "timestamp": created.strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        log_data.update(_context(record))

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, _ = record.exc_info
            log_data["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ContextTextFormatter(logging.Formatter):
    """Plain text lines with the run context appended, for terminals."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        # Tracebacks stay at the end
        head, sep, tail = line.partition("\n")
        return f"{head} [{pairs}]{sep}{tail}"


def configure_structured_logging(
    level: str = "INFO",
    json_format: bool = True,
) -> None:
    """Replace root handlers with a single stderr handler.

    Args:
        level: Logging level name, case-insensitive
        json_format: JSON lines (True) or readable text (False)
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if json_format else ContextTextFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
