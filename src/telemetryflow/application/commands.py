"""Command values - one immutable payload type per telemetry operation.

Commands carry no behaviour. The client builds them and the command handler
interprets them, dispatching on the `kind` discriminator. `Command` is the
closed union of every variant.
"""

from datetime import UTC, datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from telemetryflow.domain.config import TelemetryConfig


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _Command(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


# ============================================================================
# Lifecycle commands
# ============================================================================


class InitializeSDK(_Command):
    """Create exporters and providers for every enabled signal."""

    kind: Literal["initialize_sdk"] = "initialize_sdk"
    config: TelemetryConfig = Field(..., description="Validated SDK configuration")


class ShutdownSDK(_Command):
    """Flush and shut down every provider."""

    kind: Literal["shutdown_sdk"] = "shutdown_sdk"
    timeout: float = Field(30.0, description="Upper bound for the shutdown, in seconds")


class FlushTelemetry(_Command):
    """Force export of everything buffered."""

    kind: Literal["flush_telemetry"] = "flush_telemetry"
    timeout: float = Field(10.0, description="Upper bound for the flush, in seconds")


# ============================================================================
# Metric commands
# ============================================================================


class RecordMetric(_Command):
    """Record a generic metric data point (exported as a gauge)."""

    kind: Literal["record_metric"] = "record_metric"
    name: str
    value: float
    unit: str = ""
    attributes: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)


class RecordCounter(_Command):
    """Add to a monotonic counter."""

    kind: Literal["record_counter"] = "record_counter"
    name: str
    value: int
    attributes: dict[str, Any] = Field(default_factory=dict)


class RecordGauge(_Command):
    """Set a gauge value."""

    kind: Literal["record_gauge"] = "record_gauge"
    name: str
    value: float
    attributes: dict[str, Any] = Field(default_factory=dict)


class RecordHistogram(_Command):
    """Record a histogram measurement."""

    kind: Literal["record_histogram"] = "record_histogram"
    name: str
    value: float
    unit: str = ""
    attributes: dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Log commands
# ============================================================================


class EmitLog(_Command):
    """Emit one structured log record, optionally correlated to a span."""

    kind: Literal["emit_log"] = "emit_log"
    severity: str
    message: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)
    trace_id: Optional[str] = Field(None, description="32 hex digit trace id")
    span_id: Optional[str] = Field(None, description="16 hex digit span id")


class EmitBatchLogs(_Command):
    """Emit several log records in order."""

    kind: Literal["emit_batch_logs"] = "emit_batch_logs"
    logs: list[EmitLog] = Field(default_factory=list)


# ============================================================================
# Trace commands
# ============================================================================


class StartSpan(_Command):
    """Start a span and register it for later EndSpan / AddSpanEvent."""

    kind: Literal["start_span"] = "start_span"
    name: str
    span_kind: str = Field("internal", description="internal, server, client, producer or consumer")
    attributes: dict[str, Any] = Field(default_factory=dict)
    parent_id: Optional[str] = Field(None, description="Id of a registered parent span")


class EndSpan(_Command):
    """End a registered span, recording an error if one is given."""

    kind: Literal["end_span"] = "end_span"
    span_id: str
    error: Optional[BaseException] = None


class AddSpanEvent(_Command):
    """Add a timestamped event to a registered span."""

    kind: Literal["add_span_event"] = "add_span_event"
    span_id: str
    name: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)


Command = Annotated[
    Union[
        InitializeSDK,
        ShutdownSDK,
        FlushTelemetry,
        RecordMetric,
        RecordCounter,
        RecordGauge,
        RecordHistogram,
        EmitLog,
        EmitBatchLogs,
        StartSpan,
        EndSpan,
        AddSpanEvent,
    ],
    Field(discriminator="kind"),
]
"""Every command the handler understands."""
