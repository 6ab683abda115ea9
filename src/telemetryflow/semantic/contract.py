"""Semantic contract - protocol, signal, span kind and attribute name constants.

This module defines the stable vocabulary shared by the configuration, the
command handler and the exporter factory. All resource attribute names the
SDK adds on top of the OpenTelemetry semantic conventions live here.
"""

from enum import Enum

from opentelemetry._logs import SeverityNumber


class Protocol(str, Enum):
    """OTLP transport protocols."""

    GRPC = "grpc"
    """OTLP over gRPC (default port 4317)."""

    HTTP = "http"
    """OTLP over HTTP/protobuf (default port 4318)."""


class SignalType(str, Enum):
    """Telemetry signal types."""

    METRICS = "metrics"
    LOGS = "logs"
    TRACES = "traces"


class SpanKind(str, Enum):
    """Span kinds accepted by `start_span`.

    Unknown kind strings are treated as INTERNAL.
    """

    INTERNAL = "internal"
    SERVER = "server"
    CLIENT = "client"
    PRODUCER = "producer"
    CONSUMER = "consumer"


class Severity(str, Enum):
    """Log severities accepted by `log`."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


SEVERITY_NUMBERS = {
    "debug": SeverityNumber.DEBUG,
    "info": SeverityNumber.INFO,
    "warn": SeverityNumber.WARN,
    "warning": SeverityNumber.WARN,
    "error": SeverityNumber.ERROR,
    "fatal": SeverityNumber.FATAL,
    "critical": SeverityNumber.FATAL,
}
"""Severity string → OpenTelemetry severity number. Unknown severities map to INFO."""


class Attributes:
    """Resource attribute name constants.

    All SDK-specific attributes follow the naming convention:
    - Prefix: telemetryflow.
    - Case: snake_case
    - Hierarchy: dot-separated (e.g., telemetryflow.collector.id)
    """

    # ============================================================================
    # Service identity (OpenTelemetry semantic conventions)
    # ============================================================================

    SERVICE_NAMESPACE = "service.namespace"
    """Namespace the service belongs to (default: telemetryflow)."""

    PROCESS_RUNTIME_NAME = "process.runtime.name"
    PROCESS_RUNTIME_VERSION = "process.runtime.version"
    PROCESS_RUNTIME_DESCRIPTION = "process.runtime.description"

    HOST_NAME = "host.name"
    """Collector hostname, auto-detected when not configured."""

    # ============================================================================
    # Collector identity (only when resource enrichment is enabled)
    # ============================================================================

    COLLECTOR_ID = "telemetryflow.collector.id"
    """Unique collector instance identifier."""

    COLLECTOR_NAME = "telemetryflow.collector.name"
    """Human-readable collector name."""

    COLLECTOR_DESCRIPTION = "telemetryflow.collector.description"
    """Human-readable collector description."""

    COLLECTOR_TAG_PREFIX = "telemetryflow.collector.tag."
    """Prefix for custom collector tags (telemetryflow.collector.tag.<key>)."""

    DATACENTER = "telemetryflow.datacenter"
    """Datacenter identifier."""


class Headers:
    """Request header / gRPC metadata names sent with every export."""

    AUTHORIZATION = "authorization"
    """Carries `Bearer <key_id>:<key_secret>`."""

    COLLECTOR_ID = "x-telemetryflow-collector-id"
    """Collector identifier, sent only when configured."""
