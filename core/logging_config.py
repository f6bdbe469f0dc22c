"""Structured logging configuration with correlation fields."""
import logging
import json
import sys
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from contextvars import ContextVar

# Context variables for log correlation
current_request_id: ContextVar[str] = ContextVar("request_id", default="")
current_upload_id: ContextVar[str] = ContextVar("upload_id", default="")
current_trip_id: ContextVar[str] = ContextVar("trip_id", default="")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_upload_id() -> str:
    """Generate a unique upload ID for log correlation."""
    return f"upload_{_utcnow().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


class JSONFormatter(logging.Formatter):
    """JSON log formatter with correlation fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": _utcnow().isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add correlation fields if present
        if request_id := current_request_id.get():
            log_data["request_id"] = request_id
        if upload_id := current_upload_id.get():
            log_data["upload_id"] = upload_id
        if trip_id := current_trip_id.get():
            log_data["trip_id"] = trip_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields from record
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter with correlation fields."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = _utcnow().strftime("%Y-%m-%d %H:%M:%S")

        ctx_parts = []
        if request_id := current_request_id.get():
            ctx_parts.append(f"req={request_id}")
        if upload_id := current_upload_id.get():
            ctx_parts.append(f"upload={upload_id[-8:]}")
        if trip_id := current_trip_id.get():
            ctx_parts.append(f"trip={trip_id}")

        ctx_str = f" [{', '.join(ctx_parts)}]" if ctx_parts else ""

        msg = f"{timestamp} {record.levelname:8s} {record.name}{ctx_str}: {record.getMessage()}"

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


def setup_logging(
    level: str = "INFO",
    format_type: str = "text",
    logger_name: Optional[str] = None,
) -> logging.Logger:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: "json" for structured logs, "text" for human-readable
        logger_name: Specific logger name, or None for root logger

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper(), logging.INFO))

    if format_type.lower() == "json":
        formatter = JSONFormatter()
    else:
        formatter = TextFormatter()

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Named loggers don't propagate to root
    if logger_name is not None:
        logger.propagate = False

    return logger


class LogContext:
    """Context manager for setting and clearing log context."""

    def __init__(
        self,
        request_id: Optional[str] = None,
        upload_id: Optional[str] = None,
        trip_id: Optional[str] = None,
    ):
        self.request_id = request_id
        self.upload_id = upload_id
        self.trip_id = trip_id
        self._tokens = {}

    def __enter__(self):
        if self.request_id:
            self._tokens["request_id"] = current_request_id.set(self.request_id)
        if self.upload_id:
            self._tokens["upload_id"] = current_upload_id.set(self.upload_id)
        if self.trip_id:
            self._tokens["trip_id"] = current_trip_id.set(self.trip_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for name, token in self._tokens.items():
            getattr(globals()[f"current_{name}"], "reset")(token)
        return False
