"""
Structured logging configuration for production use.

JSON logs in production, text in development. Settlement log lines carry the
(user, date, stage) they belong to so a failed unit can be found and replayed:

    logger.error("...", extra=settlement_context(user_id, day, "ledger", attempt=2))

Those keys are top-level in the JSON output and appended as key=value pairs
in the text output.
"""
import logging
import sys
import json
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional
from core.config import settings

# Record attributes promoted to first-class log keys, in output order.
CONTEXT_FIELDS = ("user_id", "settlement_date", "stage", "attempt", "will_retry", "task_id")


def settlement_context(user_id: Any, settlement_date: date, stage: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
    """extra= payload for a log line about one user's settlement."""
    context: Dict[str, Any] = {"user_id": str(user_id), "settlement_date": settlement_date.isoformat()}
    if stage is not None:
        context["stage"] = stage
    context.update(fields)
    return context


def _context_of(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        field: getattr(record, field)
        for field in CONTEXT_FIELDS
        if getattr(record, field, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        log_data.update(_context_of(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Free-form fields from extra={"extra_fields": {...}}
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class ContextTextFormatter(logging.Formatter):
    """Plain text for development, with settlement context appended."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context_of(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        first, newline, rest = line.partition("\n")
        return f"{first} [{pairs}]{newline}{rest}"


def setup_logging():
    """
    Configure application-wide logging.

    Uses JSON format in production, text format in development.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = ContextTextFormatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Engine echo and broker chatter drown out settlement lines
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)
    logging.getLogger("kombu").setLevel(logging.WARNING)

    return root_logger
