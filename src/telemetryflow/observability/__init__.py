"""Logging for the SDK's own diagnostics."""

from telemetryflow.observability.logging import (
    StructuredFormatter,
    get_logger,
    setup_logging,
)

__all__ = ["StructuredFormatter", "get_logger", "setup_logging"]
