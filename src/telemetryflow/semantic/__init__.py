"""Semantic contract shared across the SDK."""

from telemetryflow.semantic.contract import (
    Attributes,
    Headers,
    Protocol,
    Severity,
    SignalType,
    SpanKind,
)

__all__ = [
    "Attributes",
    "Headers",
    "Protocol",
    "Severity",
    "SignalType",
    "SpanKind",
]
