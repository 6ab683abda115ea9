"""Structured logging with OpenTelemetry trace context injection."""

import json
import logging
from typing import Any, TypedDict

from opentelemetry import trace

SDK_LOGGER_NAME = "telemetryflow"

STANDARD_LOG_RECORD_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
    "asctime",
}


class StructuredLog(TypedDict, total=False):
    timestamp: str
    level: str
    logger: str
    message: str

    trace_id: str
    span_id: str
    sampled: bool

    exception: str


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter that automatically injects trace context into logs.

    Every line carries timestamp, level, logger and message. When a valid
    span is current, trace_id / span_id / sampled are added so SDK
    diagnostics can be correlated with the application's own traces.
    Anything passed through `extra=` is copied into the line as-is.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON with trace context."""
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # there are legitimate cases where there is no active span
        # logging should never break in these cases so we skip injection
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            log_data["trace_id"] = format(span_context.trace_id, "032x")
            log_data["span_id"] = format(span_context.span_id, "016x")
            log_data["sampled"] = bool(span_context.trace_flags & 0x01)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add any extra fields from logger.info("msg", extra={"key": "value"})
        for key, value in record.__dict__.items():
            if key not in STANDARD_LOG_RECORD_ATTRS:
                log_data[key] = value

        structured_log: StructuredLog = log_data  # type: ignore[assignment]
        return json.dumps(structured_log, default=str)


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure structured logging for the SDK's own diagnostics.

    Only the `telemetryflow` logger is touched; the application's root
    logger and its handlers are left alone.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        The configured SDK logger
    """
    logger = logging.getLogger(SDK_LOGGER_NAME)
    logger.setLevel(level)

    # no duplicates when called more than once
    logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logger.addHandler(handler)
    logger.propagate = False

    # Silence noisy transport libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("grpc").setLevel(logging.WARNING)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Usage:
        logger = get_logger(__name__)
        logger.info("Exporter created", extra={"extra_fields": {"signal": "traces"}})

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
