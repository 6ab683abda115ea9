"""OTLP transport - builds the OpenTelemetry OTLP exporters.

This is the only module that knows about the concrete exporter classes from
opentelemetry-exporter-otlp-proto-grpc and opentelemetry-exporter-otlp-proto-http.
It receives fully resolved ExporterSettings and only translates them into
constructor arguments and channel options.
"""

import collections
import json
from typing import Any

import grpc
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import (
    OTLPLogExporter as GRPCLogExporter,
)
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
    OTLPMetricExporter as GRPCMetricExporter,
)
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
    OTLPSpanExporter as GRPCSpanExporter,
)
from opentelemetry.exporter.otlp.proto.http import Compression as HTTPCompression
from opentelemetry.exporter.otlp.proto.http._log_exporter import (
    OTLPLogExporter as HTTPLogExporter,
)
from opentelemetry.exporter.otlp.proto.http.metric_exporter import (
    OTLPMetricExporter as HTTPMetricExporter,
)
from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
    OTLPSpanExporter as HTTPSpanExporter,
)

from telemetryflow.infrastructure.exporters import (
    ExporterSettings,
    ExporterTransport,
    RetrySettings,
)
from telemetryflow.semantic.contract import Headers, Protocol

MIB = 1024 * 1024

# gRPC clamps retryPolicy.maxAttempts to 5
GRPC_MAX_ATTEMPTS = 5

GRPC_RETRYABLE_STATUS_CODES = [
    "UNAVAILABLE",
    "RESOURCE_EXHAUSTED",
    "ABORTED",
    "DEADLINE_EXCEEDED",
]


class _ClientCallDetails(
    collections.namedtuple(
        "_ClientCallDetails",
        ("method", "timeout", "metadata", "credentials", "wait_for_ready", "compression"),
    ),
    grpc.ClientCallDetails,
):
    pass


class AuthMetadataInterceptor(grpc.UnaryUnaryClientInterceptor):
    """Re-injects the authorization metadata into every outgoing unary call.

    Any existing authorization entry is replaced, never duplicated.
    """

    def __init__(self, authorization: str) -> None:
        self._authorization = authorization

    def intercept_unary_unary(self, continuation, client_call_details, request):
        metadata = [
            (key, value)
            for key, value in (client_call_details.metadata or ())
            if key != Headers.AUTHORIZATION
        ]
        metadata.append((Headers.AUTHORIZATION, self._authorization))

        details = _ClientCallDetails(
            client_call_details.method,
            client_call_details.timeout,
            metadata,
            client_call_details.credentials,
            getattr(client_call_details, "wait_for_ready", None),
            getattr(client_call_details, "compression", None),
        )
        return continuation(details, request)


class _AuthenticatedChannelMixin:
    """Wraps every channel the exporter builds with AuthMetadataInterceptor.

    The OTLP gRPC exporters rebuild their channel after an UNAVAILABLE error,
    so the wrapping happens in the rebuild hook rather than once after
    construction.
    """

    def __init__(self, *args, authorization: str, **kwargs) -> None:
        # read by _initialize_channel_and_stub, which runs inside __init__
        self._authorization = authorization
        super().__init__(*args, **kwargs)

    def _initialize_channel_and_stub(self) -> None:
        super()._initialize_channel_and_stub()
        self._channel = grpc.intercept_channel(
            self._channel, AuthMetadataInterceptor(self._authorization)
        )
        self._client = self._stub(self._channel)


class AuthenticatedSpanExporter(_AuthenticatedChannelMixin, GRPCSpanExporter):
    pass


class AuthenticatedMetricExporter(_AuthenticatedChannelMixin, GRPCMetricExporter):
    pass


class AuthenticatedLogExporter(_AuthenticatedChannelMixin, GRPCLogExporter):
    pass


def _duration(seconds: float) -> str:
    return f"{seconds:.3f}s"


def grpc_service_config(retry: RetrySettings) -> dict[str, Any]:
    """gRPC service config applying the retry policy to every method."""
    return {
        "methodConfig": [
            {
                "name": [{}],
                "retryPolicy": {
                    "maxAttempts": max(2, min(retry.max_retries + 1, GRPC_MAX_ATTEMPTS)),
                    "initialBackoff": _duration(retry.initial_interval),
                    "maxBackoff": _duration(retry.max_interval),
                    "backoffMultiplier": 2,
                    "retryableStatusCodes": GRPC_RETRYABLE_STATUS_CODES,
                },
            }
        ]
    }


def grpc_channel_options(settings: ExporterSettings) -> tuple[tuple[str, Any], ...]:
    """Channel options for keepalive, message sizes and retries."""
    keepalive = settings.grpc_keepalive
    options: list[tuple[str, Any]] = [
        ("grpc.keepalive_time_ms", int(keepalive.time * 1000)),
        ("grpc.keepalive_timeout_ms", int(keepalive.timeout * 1000)),
        ("grpc.keepalive_permit_without_calls", int(keepalive.permit_without_stream)),
        ("grpc.max_receive_message_length", settings.grpc_max_recv_msg_size * MIB),
        ("grpc.max_send_message_length", settings.grpc_max_send_msg_size * MIB),
    ]
    if settings.retry is not None and settings.retry.max_retries > 0:
        options.append(("grpc.enable_retries", 1))
        options.append(("grpc.service_config", json.dumps(grpc_service_config(settings.retry))))
    else:
        options.append(("grpc.enable_retries", 0))
    return tuple(options)


class OTLPTransport(ExporterTransport):
    """Default transport backed by the OpenTelemetry OTLP exporters.

    Both exporter families retry transient failures until their export
    deadline, which is ExporterSettings.export_timeout.

    Example:
        >>> factory = OTLPExporterFactory(config, OTLPTransport())
        >>> exporter = factory.create_trace_exporter()
    """

    def create_trace_exporter(self, settings: ExporterSettings) -> Any:
        if settings.protocol is Protocol.GRPC:
            return self._grpc_exporter(AuthenticatedSpanExporter, settings)
        return self._http_exporter(HTTPSpanExporter, settings)

    def create_metric_exporter(self, settings: ExporterSettings) -> Any:
        if settings.protocol is Protocol.GRPC:
            return self._grpc_exporter(AuthenticatedMetricExporter, settings)
        return self._http_exporter(HTTPMetricExporter, settings)

    def create_log_exporter(self, settings: ExporterSettings) -> Any:
        if settings.protocol is Protocol.GRPC:
            return self._grpc_exporter(AuthenticatedLogExporter, settings)
        return self._http_exporter(HTTPLogExporter, settings)

    def _grpc_exporter(self, exporter_cls: type, settings: ExporterSettings) -> Any:
        credentials = None if settings.insecure else grpc.ssl_channel_credentials()
        compression = (
            grpc.Compression.Gzip if settings.compression else grpc.Compression.NoCompression
        )
        return exporter_cls(
            endpoint=settings.endpoint,
            insecure=settings.insecure,
            credentials=credentials,
            headers=settings.headers,
            timeout=settings.export_timeout,
            compression=compression,
            channel_options=grpc_channel_options(settings),
            authorization=settings.headers[Headers.AUTHORIZATION],
        )

    def _http_exporter(self, exporter_cls: type, settings: ExporterSettings) -> Any:
        compression = (
            HTTPCompression.Gzip if settings.compression else HTTPCompression.NoCompression
        )
        return exporter_cls(
            endpoint=settings.url,
            headers=settings.headers,
            timeout=settings.export_timeout,
            compression=compression,
        )
