"""Unit tests for the OpenTelemetry-backed command handler.

The handler runs against real OpenTelemetry SDK providers whose exporters
are in-memory, so every test observes what would have been exported.
"""

import logging
import threading
import warnings
from datetime import UTC, datetime

import pytest
from conftest import FailingTransport, RecordingTransport
from opentelemetry import trace
from opentelemetry._logs import SeverityNumber
from opentelemetry.trace import SpanKind as OTelSpanKind
from opentelemetry.trace import StatusCode

from telemetryflow.application.commands import (
    AddSpanEvent,
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
from telemetryflow.application.queries import GetSDKStatus
from telemetryflow.errors import (
    AlreadyInitializedError,
    ConfigurationError,
    ExportSetupError,
    NotInitializedError,
    SignalDisabledError,
    SpanNotFoundError,
    TelemetryFlowError,
    TelemetryTimeoutError,
    TransportError,
)
from telemetryflow.infrastructure.handlers import TelemetryCommandHandler, convert_attributes
from telemetryflow.semantic.contract import SignalType


@pytest.fixture
def ready(handler, config):
    handler.handle(InitializeSDK(config=config))
    return handler


def _flush(handler):
    handler.handle(FlushTelemetry())


# ============================================================================
# Initialization
# ============================================================================


@pytest.mark.unit
def test_initialize_creates_exporter_per_enabled_signal(ready, transport):
    """
    BEHAVIOR: One exporter is requested per enabled signal and the status
    reports every signal as live.
    """
    assert set(transport.settings) == set(SignalType)

    status = ready.handle(GetSDKStatus())
    assert status.initialized is True
    assert set(status.enabled_signals) == set(SignalType)
    assert status.service_name == "checkout"
    assert status.protocol == "grpc"


@pytest.mark.unit
def test_initialize_skips_disabled_signals(config, transport):
    config.with_signals(metrics=True, logs=False, traces=True)
    handler = TelemetryCommandHandler(config, transport)

    handler.handle(InitializeSDK(config=config))

    assert set(transport.settings) == {SignalType.METRICS, SignalType.TRACES}
    handler.handle(ShutdownSDK())


@pytest.mark.unit
def test_second_initialize_rejected(ready, config):
    with pytest.raises(AlreadyInitializedError):
        ready.handle(InitializeSDK(config=config))


@pytest.mark.unit
def test_initialize_revalidates_config(handler, config):
    config.with_batch_settings(1.0, 0)

    with pytest.raises(ConfigurationError):
        handler.handle(InitializeSDK(config=config))

    assert handler.handle(GetSDKStatus()).initialized is False


@pytest.mark.unit
def test_initialize_with_unsupported_protocol_fails(handler, config):
    config.with_protocol("udp")

    with pytest.raises(ExportSetupError) as exc_info:
        handler.handle(InitializeSDK(config=config))

    assert "unsupported protocol: udp" in str(exc_info.value)


@pytest.mark.unit
def test_transport_failure_cleans_up_and_reports(config):
    """
    BEHAVIOR: When one exporter cannot be created the error surfaces as
    TransportError, providers built so far are shut down and the handler
    stays uninitialized.
    """
    transport = FailingTransport()
    handler = TelemetryCommandHandler(config, transport)

    with pytest.raises(TransportError) as exc_info:
        handler.handle(InitializeSDK(config=config))

    assert "collector unreachable" in str(exc_info.value)
    assert handler.handle(GetSDKStatus()).initialized is False
    # traces are built before metrics, so their provider was torn down
    assert transport.span_exporter._stopped is True


@pytest.mark.unit
def test_initialize_times_out_with_expired_deadline(handler, config):
    with pytest.raises(TelemetryTimeoutError):
        handler.handle(InitializeSDK(config=config), timeout=0)

    assert handler.handle(GetSDKStatus()).initialized is False


# ============================================================================
# Metrics
# ============================================================================


@pytest.mark.unit
def test_counter_accumulates(ready, transport):
    ready.handle(RecordCounter(name="orders", value=2, attributes={"region": "eu"}))
    ready.handle(RecordCounter(name="orders", value=3, attributes={"region": "eu"}))
    _flush(ready)

    points = transport.metric_exporter.points("orders")
    assert len(points) == 1
    assert points[0].value == 5
    assert dict(points[0].attributes) == {"region": "eu"}


@pytest.mark.unit
def test_gauge_keeps_last_value(ready, transport):
    ready.handle(RecordGauge(name="queue.depth", value=4.0))
    ready.handle(RecordGauge(name="queue.depth", value=9.0))
    _flush(ready)

    points = transport.metric_exporter.points("queue.depth")
    assert [point.value for point in points] == [9.0]


@pytest.mark.unit
def test_generic_metric_is_exported_as_gauge(ready, transport):
    ready.handle(RecordMetric(name="temperature", value=21.5, unit="Cel"))
    _flush(ready)

    points = transport.metric_exporter.points("temperature")
    assert [point.value for point in points] == [21.5]


@pytest.mark.unit
def test_histogram_records_distribution(ready, transport):
    for value in (10.0, 20.0, 30.0):
        ready.handle(RecordHistogram(name="latency", value=value, unit="ms"))
    _flush(ready)

    (point,) = transport.metric_exporter.points("latency")
    assert point.count == 3
    assert point.sum == 60.0


@pytest.mark.unit
def test_unit_mismatch_reuses_instrument_and_warns(ready, transport):
    """
    BEHAVIOR: A second recording under the same name with a different unit
    lands on the first instrument, and the mismatch is logged.
    """
    records = []
    collector = logging.Handler(level=logging.WARNING)
    collector.emit = records.append
    handlers_logger = logging.getLogger("telemetryflow.infrastructure.handlers")
    handlers_logger.addHandler(collector)
    try:
        ready.handle(RecordHistogram(name="payload", value=1.0, unit="ms"))
        ready.handle(RecordHistogram(name="payload", value=2.0, unit="s"))
    finally:
        handlers_logger.removeHandler(collector)
    _flush(ready)

    (point,) = transport.metric_exporter.points("payload")
    assert point.count == 2
    (record,) = [r for r in records if r.getMessage() == "Instrument unit mismatch"]
    assert record.extra_fields["unit"] == "ms"
    assert record.extra_fields["requested"] == "s"


@pytest.mark.unit
def test_same_unit_does_not_warn(ready):
    records = []
    collector = logging.Handler(level=logging.WARNING)
    collector.emit = records.append
    handlers_logger = logging.getLogger("telemetryflow.infrastructure.handlers")
    handlers_logger.addHandler(collector)
    try:
        ready.handle(RecordHistogram(name="payload", value=1.0, unit="ms"))
        ready.handle(RecordHistogram(name="payload", value=2.0, unit="ms"))
    finally:
        handlers_logger.removeHandler(collector)

    assert records == []


def _histogram_inside_span(handler):
    span_id = handler.handle(StartSpan(name="request"))
    with trace.use_span(handler._spans[span_id], end_on_exit=False):
        handler.handle(RecordHistogram(name="latency", value=12.0, unit="ms"))
    handler.handle(EndSpan(span_id=span_id))
    _flush(handler)
    return span_id


@pytest.mark.unit
def test_exemplars_link_points_to_sampled_span(ready, transport):
    """
    BEHAVIOR: With exemplars on (the default), a measurement taken inside a
    sampled span carries an exemplar pointing at that span.
    """
    span_id = _histogram_inside_span(ready)

    (point,) = transport.metric_exporter.points("latency")
    assert point.exemplars
    assert format(point.exemplars[0].span_id, "016x") == span_id


@pytest.mark.unit
def test_exemplars_disabled(config, transport):
    config.with_exemplars(False)
    handler = TelemetryCommandHandler(config, transport)
    handler.handle(InitializeSDK(config=config))

    _histogram_inside_span(handler)

    (point,) = transport.metric_exporter.points("latency")
    assert not point.exemplars
    handler.handle(ShutdownSDK())


@pytest.mark.unit
def test_metrics_disabled_raises_signal_disabled(config, transport):
    config.with_signals(metrics=False, logs=True, traces=True)
    handler = TelemetryCommandHandler(config, transport)
    handler.handle(InitializeSDK(config=config))

    with pytest.raises(SignalDisabledError):
        handler.handle(RecordCounter(name="orders", value=1))

    handler.handle(ShutdownSDK())


@pytest.mark.unit
def test_emission_before_initialize_raises(handler):
    with pytest.raises(NotInitializedError):
        handler.handle(RecordGauge(name="g", value=1.0))


# ============================================================================
# Logs
# ============================================================================


@pytest.mark.unit
def test_logs_are_exported_with_severity_and_attributes(ready, transport):
    ready.handle(EmitLog(severity="warn", message="disk almost full", attributes={"disk": "/var"}))
    _flush(ready)

    (record,) = transport.log_exporter.log_records()
    assert record.body == "disk almost full"
    assert record.severity_number == SeverityNumber.WARN
    assert record.attributes["disk"] == "/var"


@pytest.mark.unit
def test_log_attributes_are_kept_verbatim(ready, transport):
    """
    BEHAVIOR: Attribute keys reach the exported record unchanged, even ones
    named like fields of a stdlib logging record.
    """
    ready.handle(EmitLog(severity="info", message="hello", attributes={"msg": "other"}))
    _flush(ready)

    (record,) = transport.log_exporter.log_records()
    assert record.body == "hello"
    assert dict(record.attributes) == {"msg": "other"}


@pytest.mark.unit
def test_batch_logs_are_exported_in_order(ready, transport):
    logs = [EmitLog(severity="info", message=f"line {i}") for i in range(3)]

    ready.handle(EmitBatchLogs(logs=logs))
    _flush(ready)

    assert transport.log_exporter.bodies() == ["line 0", "line 1", "line 2"]


@pytest.mark.unit
def test_log_correlates_with_registered_span(ready, transport):
    span_id = ready.handle(StartSpan(name="request"))

    ready.handle(EmitLog(severity="info", message="inside", span_id=span_id))
    _flush(ready)

    (record,) = transport.log_exporter.log_records()
    assert format(record.span_id, "016x") == span_id


@pytest.mark.unit
def test_log_correlates_with_explicit_trace_context(ready, transport):
    trace_id = "4bf92f3577b34da6a3ce929d0e0e4736"
    span_id = "00f067aa0ba902b7"

    ready.handle(EmitLog(severity="error", message="remote", trace_id=trace_id, span_id=span_id))
    _flush(ready)

    (record,) = transport.log_exporter.log_records()
    assert format(record.trace_id, "032x") == trace_id
    assert format(record.span_id, "016x") == span_id


@pytest.mark.unit
def test_unknown_severity_maps_to_info(ready, transport):
    ready.handle(EmitLog(severity="verbose", message="x"))
    _flush(ready)

    (record,) = transport.log_exporter.log_records()
    assert record.severity_number == SeverityNumber.INFO
    assert record.severity_text == "INFO"


@pytest.mark.unit
def test_log_keeps_command_timestamp_without_deprecated_bridge(ready, transport):
    """
    BEHAVIOR: Logs are written straight to the OpenTelemetry logger, so the
    command timestamp is exported as is and the deprecated stdlib logging
    bridge is never touched.
    """
    timestamp = datetime(2024, 5, 1, 12, 30, 15, 250_000, tzinfo=UTC)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        ready.handle(EmitLog(severity="error", message="x", timestamp=timestamp))
    _flush(ready)

    (record,) = transport.log_exporter.log_records()
    assert record.timestamp == int(timestamp.timestamp()) * 1_000_000_000 + 250_000_000
    assert record.severity_text == "ERROR"
    assert not [w for w in caught if "LoggingHandler" in str(w.message)]


@pytest.mark.unit
def test_logs_disabled_raises_signal_disabled(config, transport):
    config.with_signals(metrics=True, logs=False, traces=True)
    handler = TelemetryCommandHandler(config, transport)
    handler.handle(InitializeSDK(config=config))

    with pytest.raises(SignalDisabledError):
        handler.handle(EmitLog(severity="info", message="x"))

    handler.handle(ShutdownSDK())


# ============================================================================
# Traces
# ============================================================================


@pytest.mark.unit
def test_start_and_end_span_exports_it(ready, transport):
    span_id = ready.handle(StartSpan(name="checkout", span_kind="server", attributes={"cart.items": 3}))

    assert len(span_id) == 16
    int(span_id, 16)

    ready.handle(EndSpan(span_id=span_id))
    _flush(ready)

    (span,) = transport.span_exporter.get_finished_spans()
    assert span.name == "checkout"
    assert span.kind is OTelSpanKind.SERVER
    assert span.attributes["cart.items"] == 3
    assert format(span.context.span_id, "016x") == span_id


@pytest.mark.unit
def test_span_ids_are_unique(ready):
    ids = {ready.handle(StartSpan(name=f"s{i}")) for i in range(20)}

    assert len(ids) == 20
    assert ready.handle(GetSDKStatus()).active_spans == 20


@pytest.mark.unit
def test_unknown_span_kind_is_internal(ready, transport):
    span_id = ready.handle(StartSpan(name="job", span_kind="batch"))
    ready.handle(EndSpan(span_id=span_id))
    _flush(ready)

    (span,) = transport.span_exporter.get_finished_spans()
    assert span.kind is OTelSpanKind.INTERNAL


@pytest.mark.unit
def test_child_span_uses_registered_parent(ready, transport):
    parent_id = ready.handle(StartSpan(name="parent"))
    child_id = ready.handle(StartSpan(name="child", parent_id=parent_id))
    ready.handle(EndSpan(span_id=child_id))
    ready.handle(EndSpan(span_id=parent_id))
    _flush(ready)

    spans = {span.name: span for span in transport.span_exporter.get_finished_spans()}
    assert spans["child"].parent.span_id == spans["parent"].context.span_id
    assert spans["child"].context.trace_id == spans["parent"].context.trace_id


@pytest.mark.unit
def test_unknown_parent_raises_span_not_found(ready):
    with pytest.raises(SpanNotFoundError):
        ready.handle(StartSpan(name="orphan", parent_id="ffffffffffffffff"))


@pytest.mark.unit
def test_end_span_with_error_sets_error_status(ready, transport):
    span_id = ready.handle(StartSpan(name="charge"))

    ready.handle(EndSpan(span_id=span_id, error=ValueError("card declined")))
    _flush(ready)

    (span,) = transport.span_exporter.get_finished_spans()
    assert span.status.status_code is StatusCode.ERROR
    assert "card declined" in span.status.description
    assert [event.name for event in span.events] == ["exception"]


@pytest.mark.unit
def test_end_span_twice_raises_span_not_found(ready):
    """
    BEHAVIOR: Ending a span removes it from the registry, so a second end
    with the same id is an unknown span.
    """
    span_id = ready.handle(StartSpan(name="once"))
    ready.handle(EndSpan(span_id=span_id))

    with pytest.raises(SpanNotFoundError):
        ready.handle(EndSpan(span_id=span_id))


@pytest.mark.unit
def test_add_span_event(ready, transport):
    span_id = ready.handle(StartSpan(name="upload"))

    ready.handle(AddSpanEvent(span_id=span_id, name="chunk.sent", attributes={"bytes": 1024}))
    ready.handle(EndSpan(span_id=span_id))
    _flush(ready)

    (span,) = transport.span_exporter.get_finished_spans()
    (event,) = span.events
    assert event.name == "chunk.sent"
    assert event.attributes["bytes"] == 1024


@pytest.mark.unit
def test_add_event_to_unknown_span_raises(ready):
    with pytest.raises(SpanNotFoundError):
        ready.handle(AddSpanEvent(span_id="0000000000000001", name="e"))


@pytest.mark.unit
def test_traces_disabled_raises_signal_disabled(config, transport):
    config.with_signals(metrics=True, logs=True, traces=False)
    handler = TelemetryCommandHandler(config, transport)
    handler.handle(InitializeSDK(config=config))

    with pytest.raises(SignalDisabledError):
        handler.handle(StartSpan(name="s"))

    handler.handle(ShutdownSDK())


# ============================================================================
# Flush and shutdown
# ============================================================================


@pytest.mark.unit
def test_flush_before_initialize_raises(handler):
    with pytest.raises(NotInitializedError):
        handler.handle(FlushTelemetry())


@pytest.mark.unit
def test_shutdown_ends_open_spans_and_resets(ready, transport):
    """
    BEHAVIOR: Shutdown ends spans that are still open, exports them and
    leaves the handler uninitialized.
    """
    ready.handle(StartSpan(name="dangling"))

    ready.handle(ShutdownSDK())

    assert [span.name for span in transport.span_exporter.get_finished_spans()] == ["dangling"]
    status = ready.handle(GetSDKStatus())
    assert status.initialized is False
    assert status.active_spans == 0
    assert status.enabled_signals == []
    assert transport.log_exporter.shut_down is True


@pytest.mark.unit
def test_shutdown_without_initialize_is_noop(handler):
    handler.handle(ShutdownSDK())

    assert handler.handle(GetSDKStatus()).initialized is False


@pytest.mark.unit
def test_handler_can_be_reinitialized_after_shutdown(config):
    handler = TelemetryCommandHandler(config, RecordingTransport())
    handler.handle(InitializeSDK(config=config))
    handler.handle(ShutdownSDK())

    handler.handle(InitializeSDK(config=config))

    assert handler.handle(GetSDKStatus()).initialized is True
    handler.handle(ShutdownSDK())


@pytest.mark.unit
def test_flush_reporting_incomplete_raises_timeout(ready, transport, monkeypatch):
    with monkeypatch.context() as patch:
        patch.setattr(ready._tracer_provider, "force_flush", lambda timeout_millis=30_000: False)

        with pytest.raises(TelemetryTimeoutError) as exc_info:
            ready.handle(FlushTelemetry())

    assert "traces" in str(exc_info.value)


@pytest.mark.unit
def test_failed_shutdown_keeps_handler_initialized(ready, monkeypatch):
    def broken(timeout_millis=30_000):
        raise RuntimeError("connection reset")

    with monkeypatch.context() as patch:
        patch.setattr(ready._meter_provider, "force_flush", broken)

        with pytest.raises(TransportError) as exc_info:
            ready.handle(ShutdownSDK())

    assert "connection reset" in str(exc_info.value)
    assert ready.handle(GetSDKStatus()).initialized is True

    ready.handle(ShutdownSDK())
    assert ready.handle(GetSDKStatus()).initialized is False


@pytest.mark.unit
def test_shutdown_waits_for_in_flight_emission(ready, transport, monkeypatch):
    """
    BEHAVIOR: A shutdown issued while an emission is between its signal
    check and its recording waits for that emission, which completes and
    is exported by the shutdown drain.
    """
    original = ready._require_signal
    shutdown_errors = []
    blocked = []

    def shutdown():
        try:
            ready.handle(ShutdownSDK())
        except Exception as e:
            shutdown_errors.append(e)

    shutdown_thread = threading.Thread(target=shutdown)

    def require_then_race(signal, source):
        checked = original(signal, source)
        if not shutdown_thread.is_alive() and not blocked:
            shutdown_thread.start()
            shutdown_thread.join(timeout=0.2)
            blocked.append(shutdown_thread.is_alive())
        return checked

    monkeypatch.setattr(ready, "_require_signal", require_then_race)

    ready.handle(RecordCounter(name="orders", value=1))
    shutdown_thread.join(timeout=5)

    assert blocked == [True]
    assert not shutdown_thread.is_alive()
    assert shutdown_errors == []
    assert ready.handle(GetSDKStatus()).initialized is False
    assert [point.value for point in transport.metric_exporter.points("orders")] == [1]


@pytest.mark.unit
def test_emission_after_concurrent_shutdown_raises_not_initialized(ready):
    ready.handle(ShutdownSDK())

    with pytest.raises(NotInitializedError):
        ready.handle(RecordCounter(name="orders", value=1))
    with pytest.raises(NotInitializedError):
        ready.handle(EmitLog(severity="info", message="late"))
    with pytest.raises(NotInitializedError):
        ready.handle(StartSpan(name="late"))


@pytest.mark.unit
def test_unknown_command_raises(handler):
    with pytest.raises(TelemetryFlowError):
        handler.handle(object())


# ============================================================================
# Attribute conversion
# ============================================================================


@pytest.mark.unit
def test_convert_attributes():
    """
    BEHAVIOR: Primitive values and homogeneous sequences pass through,
    None is dropped and anything else is stringified.
    """
    converted = convert_attributes(
        {
            "s": "x",
            "b": True,
            "i": 3,
            "f": 1.5,
            "seq": [1, 2, 3],
            "mixed": [1, "a"],
            "none": None,
            "obj": {"nested": 1},
        }
    )

    assert converted == {
        "s": "x",
        "b": True,
        "i": 3,
        "f": 1.5,
        "seq": (1, 2, 3),
        "mixed": "[1, 'a']",
        "obj": "{'nested': 1}",
    }
