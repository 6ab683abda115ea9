"""TelemetryFlow SDK - send metrics, logs and traces to TelemetryFlow over OTLP.

The SDK wraps the OpenTelemetry SDK and OTLP exporters behind a small client
with a guarded lifecycle and a fluent builder.

Example:
    >>> from telemetryflow import TelemetryFlowBuilder
    >>>
    >>> client = (
    >>>     TelemetryFlowBuilder()
    >>>     .with_api_key("tfk_abc", "tfs_xyz")
    >>>     .with_endpoint("localhost:4317")
    >>>     .with_service("checkout", "2.1.0")
    >>>     .with_insecure(True)
    >>>     .build()
    >>> )
    >>> with client:
    >>>     client.increment_counter("orders.created")
    >>>     span_id = client.start_span("process-order", kind="server")
    >>>     client.log_info("order processed", {"order.id": "A-17"})
    >>>     client.end_span(span_id)
"""

from telemetryflow.builder import (
    TelemetryFlowBuilder,
    must_new_from_env,
    must_new_simple,
    new_from_env,
    new_simple,
)
from telemetryflow.client import LifecycleState, TelemetryFlowClient
from telemetryflow.domain import Credentials, TelemetryConfig
from telemetryflow.errors import (
    AlreadyInitializedError,
    ConfigurationError,
    CredentialFormatError,
    ExportSetupError,
    InvalidCommandError,
    NotInitializedError,
    SignalDisabledError,
    SpanNotFoundError,
    TelemetryFlowError,
    TelemetryTimeoutError,
    TransportError,
)
from telemetryflow.semantic import Protocol, Severity, SignalType, SpanKind

__version__ = "1.1.0"

__all__ = [
    "TelemetryFlowBuilder",
    "TelemetryFlowClient",
    "LifecycleState",
    "TelemetryConfig",
    "Credentials",
    "Protocol",
    "SignalType",
    "SpanKind",
    "Severity",
    "new_from_env",
    "must_new_from_env",
    "new_simple",
    "must_new_simple",
    "TelemetryFlowError",
    "ConfigurationError",
    "CredentialFormatError",
    "NotInitializedError",
    "AlreadyInitializedError",
    "ExportSetupError",
    "SignalDisabledError",
    "SpanNotFoundError",
    "TransportError",
    "TelemetryTimeoutError",
    "InvalidCommandError",
    "__version__",
]
