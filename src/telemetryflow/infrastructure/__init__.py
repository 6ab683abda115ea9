"""Infrastructure: command handler, exporter factory and OTLP transport."""

from telemetryflow.infrastructure.exporters import (
    ExporterSettings,
    ExporterTransport,
    OTLPExporterFactory,
    RetrySettings,
)
from telemetryflow.infrastructure.handlers import TelemetryCommandHandler, convert_attributes
from telemetryflow.infrastructure.transport import AuthMetadataInterceptor, OTLPTransport

__all__ = [
    "AuthMetadataInterceptor",
    "ExporterSettings",
    "ExporterTransport",
    "OTLPExporterFactory",
    "OTLPTransport",
    "RetrySettings",
    "TelemetryCommandHandler",
    "convert_attributes",
]
