"""Unit tests for the OTLP transport: retry wiring, channel options and auth."""

import json

import grpc
import pytest
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
    OTLPSpanExporter as GRPCSpanExporter,
)
from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
    OTLPSpanExporter as HTTPSpanExporter,
)

from telemetryflow.domain.config import GRPCKeepalive
from telemetryflow.infrastructure.exporters import ExporterSettings, RetrySettings
from telemetryflow.infrastructure.transport import (
    AuthenticatedSpanExporter,
    AuthMetadataInterceptor,
    OTLPTransport,
    grpc_channel_options,
    grpc_service_config,
)
from telemetryflow.semantic.contract import Headers, Protocol, SignalType

RETRY = RetrySettings(max_retries=3, initial_interval=5.0, max_interval=10.0, max_elapsed=15.0)


def _settings(protocol=Protocol.GRPC, **overrides):
    values = {
        "signal": SignalType.TRACES,
        "protocol": protocol,
        "endpoint": "localhost:4317",
        "path": "/v2/traces",
        "timeout": 5.0,
        "headers": {Headers.AUTHORIZATION: "Bearer tfk_a:tfs_b"},
        "insecure": True,
        "retry": RETRY,
    }
    values.update(overrides)
    return ExporterSettings(**values)


class _CallDetails:
    method = "/opentelemetry.proto.collector.trace.v1.TraceService/Export"
    timeout = 5.0
    credentials = None
    wait_for_ready = None
    compression = None

    def __init__(self, metadata):
        self.metadata = metadata


# ============================================================================
# Auth interceptor
# ============================================================================


@pytest.mark.unit
def test_interceptor_replaces_authorization_metadata():
    """
    BEHAVIOR: The interceptor drops any stale authorization entry, adds the
    current one and keeps every other metadata entry.
    """
    interceptor = AuthMetadataInterceptor("Bearer tfk_a:tfs_b")
    seen = {}

    def continuation(details, request):
        seen["details"] = details
        seen["request"] = request
        return "response"

    metadata = [(Headers.AUTHORIZATION, "Bearer stale"), (Headers.COLLECTOR_ID, "col-1")]
    result = interceptor.intercept_unary_unary(continuation, _CallDetails(metadata), "payload")

    assert result == "response"
    assert seen["request"] == "payload"
    details = seen["details"]
    assert details.method == _CallDetails.method
    assert details.timeout == 5.0
    assert sorted(details.metadata) == sorted(
        [(Headers.COLLECTOR_ID, "col-1"), (Headers.AUTHORIZATION, "Bearer tfk_a:tfs_b")]
    )


@pytest.mark.unit
def test_interceptor_adds_authorization_when_metadata_empty():
    interceptor = AuthMetadataInterceptor("Bearer tfk_a:tfs_b")

    details = interceptor.intercept_unary_unary(
        lambda details, request: details, _CallDetails(None), None
    )

    assert details.metadata == [(Headers.AUTHORIZATION, "Bearer tfk_a:tfs_b")]


# ============================================================================
# gRPC options
# ============================================================================


@pytest.mark.unit
def test_service_config_carries_retry_policy():
    policy = grpc_service_config(RETRY)["methodConfig"][0]["retryPolicy"]

    assert policy["maxAttempts"] == 4
    assert policy["initialBackoff"] == "5.000s"
    assert policy["maxBackoff"] == "10.000s"
    assert "UNAVAILABLE" in policy["retryableStatusCodes"]


@pytest.mark.unit
def test_service_config_clamps_attempts():
    many = RETRY.model_copy(update={"max_retries": 20})

    policy = grpc_service_config(many)["methodConfig"][0]["retryPolicy"]

    assert policy["maxAttempts"] == 5


@pytest.mark.unit
def test_channel_options_for_keepalive_sizes_and_retry():
    settings = _settings(
        grpc_keepalive=GRPCKeepalive(time=20.0, timeout=4.0, permit_without_stream=False),
        grpc_max_recv_msg_size=16,
        grpc_max_send_msg_size=8,
    )

    options = dict(grpc_channel_options(settings))

    assert options["grpc.keepalive_time_ms"] == 20_000
    assert options["grpc.keepalive_timeout_ms"] == 4_000
    assert options["grpc.keepalive_permit_without_calls"] == 0
    assert options["grpc.max_receive_message_length"] == 16 * 1024 * 1024
    assert options["grpc.max_send_message_length"] == 8 * 1024 * 1024
    assert options["grpc.enable_retries"] == 1
    assert json.loads(options["grpc.service_config"])["methodConfig"]


@pytest.mark.unit
def test_channel_options_without_retry():
    options = dict(grpc_channel_options(_settings(retry=None)))

    assert options["grpc.enable_retries"] == 0
    assert "grpc.service_config" not in options

# ============================================================================
# Exporter construction
# ============================================================================


@pytest.mark.unit
def test_http_exporter_points_at_signal_url():
    exporter = OTLPTransport().create_trace_exporter(
        _settings(Protocol.HTTP, endpoint="localhost:4318")
    )

    try:
        assert isinstance(exporter, HTTPSpanExporter)
        assert exporter._endpoint == "http://localhost:4318/v2/traces"
    finally:
        exporter.shutdown()


@pytest.mark.unit
def test_grpc_exporter_is_created_without_connecting():
    """
    BEHAVIOR: Building a gRPC exporter does not contact the collector, so
    it succeeds with nothing listening.
    """
    exporter = OTLPTransport().create_trace_exporter(_settings())

    try:
        assert isinstance(exporter, GRPCSpanExporter)
        assert isinstance(exporter, AuthenticatedSpanExporter)
    finally:
        exporter.shutdown()


@pytest.mark.unit
@pytest.mark.parametrize(
    "create",
    [
        OTLPTransport.create_trace_exporter,
        OTLPTransport.create_metric_exporter,
        OTLPTransport.create_log_exporter,
    ],
)
def test_grpc_channel_rebuild_keeps_interceptor_and_options(monkeypatch, create):
    """
    BEHAVIOR: The exporter rebuilds its channel after an UNAVAILABLE error.
    The rebuilt channel is wrapped with the auth interceptor again and is
    created from the same keepalive, message-size and retry options.
    """
    wrapped = []
    intercept_channel = grpc.intercept_channel

    def recording_intercept_channel(channel, *interceptors):
        wrapped.append(interceptors)
        return intercept_channel(channel, *interceptors)

    monkeypatch.setattr(grpc, "intercept_channel", recording_intercept_channel)

    exporter = create(OTLPTransport(), _settings())
    first_channel = exporter._channel
    try:
        exporter._initialize_channel_and_stub()

        assert len(wrapped) == 2
        for interceptors in wrapped:
            (interceptor,) = interceptors
            assert isinstance(interceptor, AuthMetadataInterceptor)
        assert exporter._channel is not first_channel

        options = dict(exporter._channel_options)
        assert options["grpc.keepalive_time_ms"] == 10_000
        assert options["grpc.max_send_message_length"] == 4 * 1024 * 1024
        assert options["grpc.enable_retries"] == 1
        assert "grpc.service_config" in options
    finally:
        first_channel.close()
        exporter.shutdown()


@pytest.mark.unit
def test_grpc_export_deadline_capped_by_retry_budget():
    """
    BEHAVIOR: The exporter retries until its deadline, so the deadline is
    the smaller of the timeout and max_retries x backoff.
    """
    exporter = OTLPTransport().create_trace_exporter(_settings(timeout=30.0))

    try:
        assert exporter._timeout == 15.0
    finally:
        exporter.shutdown()


@pytest.mark.unit
def test_grpc_export_deadline_without_retry_is_timeout():
    exporter = OTLPTransport().create_trace_exporter(_settings(timeout=30.0, retry=None))

    try:
        assert exporter._timeout == 30.0
    finally:
        exporter.shutdown()
