"""Logging configuration with JSON format and trace context support."""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from tracelink.config.settings import TracelinkSettings, get_settings
from tracelink.tracer import get_trace_logging_context


class TraceContextFilter(logging.Filter):
    """Filter that stamps the active span's ids onto log records.

    Explicit values passed via ``extra=`` win over the active context.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Add trace_id/span_id/parent_span_id when a span is active."""
        for key, value in get_trace_logging_context().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    """Format log records as JSON for structured logging."""

    # Optional fields to extract from log records
    _OPTIONAL_FIELDS = (
        "trace_id",
        "span_id",
        "parent_span_id",
        "http.method",
        "http.url",
        "http.status_code",
        "outcome",
        "duration_ms",
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add optional fields if present
        for field in self._OPTIONAL_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Standard text formatter with consistent format."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def configure_logging(
    level: str = "INFO", format: str = "text", inject_trace_context: bool = True
) -> None:
    """Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format ('text' or 'json')
        inject_trace_context: If True, stamp active trace/span ids on every record
    """
    # Get root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Create console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Set formatter based on format
    if format.lower() == "json":
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(TextFormatter())

    if inject_trace_context:
        console_handler.addFilter(TraceContextFilter())

    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def configure_logging_from_settings(settings: TracelinkSettings | None = None) -> None:
    """Configure logging from log_level, log_format and log_trace_context."""
    settings = settings or get_settings()
    configure_logging(
        level=settings.log_level,
        format=settings.log_format,
        inject_trace_context=settings.log_trace_context,
    )
