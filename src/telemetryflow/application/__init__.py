"""Application layer: command and query values, handler interface."""

from telemetryflow.application.commands import (
    AddSpanEvent,
    Command,
    EmitBatchLogs,
    EmitLog,
    EndSpan,
    FlushTelemetry,
    InitializeSDK,
    RecordCounter,
    RecordGauge,
    RecordHistogram,
    RecordMetric,
    ShutdownSDK,
    StartSpan,
)
from telemetryflow.application.handler import CommandHandler
from telemetryflow.application.queries import GetSDKStatus, SDKStatus

__all__ = [
    "AddSpanEvent",
    "Command",
    "CommandHandler",
    "EmitBatchLogs",
    "EmitLog",
    "EndSpan",
    "FlushTelemetry",
    "GetSDKStatus",
    "InitializeSDK",
    "RecordCounter",
    "RecordGauge",
    "RecordHistogram",
    "RecordMetric",
    "SDKStatus",
    "ShutdownSDK",
    "StartSpan",
]
