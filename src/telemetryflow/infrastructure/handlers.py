"""Telemetry command handler - runs commands against the OpenTelemetry SDK.

The handler owns the tracer, meter and logger providers created on
InitializeSDK, the per-name instrument cache and the registry of spans that
were started but not yet ended. Commands are dispatched on their `kind`.
"""

import threading
import time
from datetime import datetime
from typing import Any, Callable, Optional, Union

from opentelemetry import trace
from opentelemetry._logs import SeverityNumber
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import (
    AlwaysOffExemplarFilter,
    MeterProvider,
    TraceBasedExemplarFilter,
)
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import (
    NonRecordingSpan,
    SpanContext,
    Status,
    StatusCode,
    TraceFlags,
)

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
from telemetryflow.domain.config import TelemetryConfig
from telemetryflow.errors import (
    AlreadyInitializedError,
    ExportSetupError,
    NotInitializedError,
    SignalDisabledError,
    SpanNotFoundError,
    TelemetryFlowError,
    TelemetryTimeoutError,
    TransportError,
)
from telemetryflow.infrastructure.exporters import ExporterTransport, OTLPExporterFactory
from telemetryflow.infrastructure.transport import OTLPTransport
from telemetryflow.locks import ReadWriteLock
from telemetryflow.observability.logging import get_logger
from telemetryflow.semantic.contract import SEVERITY_NUMBERS, SignalType, SpanKind

logger = get_logger(__name__)

# Queue size floor for the span and log batch processors
DEFAULT_MAX_QUEUE_SIZE = 2048

SPAN_KINDS = {
    SpanKind.INTERNAL.value: trace.SpanKind.INTERNAL,
    SpanKind.SERVER.value: trace.SpanKind.SERVER,
    SpanKind.CLIENT.value: trace.SpanKind.CLIENT,
    SpanKind.PRODUCER.value: trace.SpanKind.PRODUCER,
    SpanKind.CONSUMER.value: trace.SpanKind.CONSUMER,
}

_PRIMITIVES = (str, bool, int, float)


def convert_attributes(attributes: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Convert arbitrary attribute values into OpenTelemetry attribute values.

    str, bool, int and float pass through, as do homogeneous sequences of
    them. None values are dropped. Anything else is stringified.
    """
    converted: dict[str, Any] = {}
    for key, value in (attributes or {}).items():
        if value is None:
            continue
        if isinstance(value, _PRIMITIVES):
            converted[key] = value
        elif (
            isinstance(value, (list, tuple))
            and all(isinstance(item, _PRIMITIVES) for item in value)
            and len({type(item) for item in value}) <= 1
        ):
            converted[key] = tuple(value)
        else:
            converted[key] = str(value)
    return converted


def span_id_hex(span: trace.Span) -> str:
    return format(span.get_span_context().span_id, "016x")


def _nanos(timestamp: datetime) -> int:
    return int(timestamp.timestamp()) * 1_000_000_000 + timestamp.microsecond * 1000


def _deadline(timeout: Optional[float]) -> Optional[float]:
    return None if timeout is None else time.monotonic() + timeout


def _remaining(deadline: Optional[float], operation: str) -> Optional[float]:
    if deadline is None:
        return None
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise TelemetryTimeoutError(f"{operation} exceeded its deadline")
    return remaining


def _effective_timeout(command_timeout: float, timeout: Optional[float]) -> float:
    if timeout is None:
        return command_timeout
    return min(command_timeout, timeout)


class TelemetryCommandHandler(CommandHandler):
    """Default CommandHandler backed by the OpenTelemetry SDK.

    Providers are private to the handler and never installed as the
    OpenTelemetry globals, so several clients can coexist in one process.

    Example:
        >>> handler = TelemetryCommandHandler(config)
        >>> handler.handle(InitializeSDK(config=config), timeout=5.0)
        >>> span_id = handler.handle(StartSpan(name="checkout"))
        >>> handler.handle(EndSpan(span_id=span_id))
    """

    def __init__(
        self,
        config: TelemetryConfig,
        transport: Optional[ExporterTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport or OTLPTransport()
        self._initialized = False
        # initialize and shutdown take the write side, every other command the read side
        self._lifecycle_lock = ReadWriteLock()

        self._tracer_provider: Optional[TracerProvider] = None
        self._meter_provider: Optional[MeterProvider] = None
        self._logger_provider: Optional[LoggerProvider] = None
        self._tracer: Optional[trace.Tracer] = None
        self._meter: Any = None
        self._otel_logger: Any = None
        # providers already shut down by a partially failed shutdown
        self._closed: set[SignalType] = set()

        # (kind, name) -> (instrument, unit it was created with)
        self._instruments: dict[tuple[str, str], tuple[Any, str]] = {}
        self._instruments_lock = threading.Lock()

        self._spans: dict[str, trace.Span] = {}
        self._spans_lock = threading.Lock()

        self._dispatch: dict[str, Callable[..., Any]] = {
            "initialize_sdk": self._initialize,
            "shutdown_sdk": self._shutdown,
            "flush_telemetry": self._flush,
            "record_metric": self._record_metric,
            "record_counter": self._record_counter,
            "record_gauge": self._record_gauge,
            "record_histogram": self._record_histogram,
            "emit_log": self._emit_log,
            "emit_batch_logs": self._emit_batch_logs,
            "start_span": self._start_span,
            "end_span": self._end_span,
            "add_span_event": self._add_span_event,
            "get_sdk_status": self._status,
        }
        self._timed = {"initialize_sdk", "shutdown_sdk", "flush_telemetry"}
        self._exclusive = {"initialize_sdk", "shutdown_sdk"}

    def handle(
        self,
        command: Union[Command, GetSDKStatus],
        timeout: Optional[float] = None,
    ) -> Any:
        kind = getattr(command, "kind", None)
        method = self._dispatch.get(kind)
        if method is None:
            raise TelemetryFlowError(f"unknown command type: {type(command).__name__}")
        if kind in self._exclusive:
            with self._lifecycle_lock.write_locked():
                return method(command, timeout)
        with self._lifecycle_lock.read_locked():
            if kind in self._timed:
                return method(command, timeout)
            return method(command)

    @property
    def tracer_provider(self) -> Optional[TracerProvider]:
        """The private tracer provider, or None when traces are disabled or not initialized."""
        return self._tracer_provider

    @property
    def meter_provider(self) -> Optional[MeterProvider]:
        return self._meter_provider

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _initialize(self, command: InitializeSDK, timeout: Optional[float]) -> None:
        if self._initialized:
            raise AlreadyInitializedError("SDK already initialized")

        config = command.config
        config.validate()
        deadline = _deadline(timeout)

        factory = OTLPExporterFactory(config, self._transport)
        resource = factory.create_resource()

        builders: list[tuple[SignalType, Callable[[OTLPExporterFactory, Resource], Any]]] = [
            (SignalType.TRACES, self._build_tracer_provider),
            (SignalType.METRICS, self._build_meter_provider),
            (SignalType.LOGS, self._build_logger_provider),
        ]
        providers: dict[SignalType, Any] = {}
        try:
            for signal, build in builders:
                if not config.is_signal_enabled(signal):
                    continue
                _remaining(deadline, "initialization")
                try:
                    providers[signal] = build(factory, resource)
                except TelemetryFlowError:
                    raise
                except Exception as e:
                    raise ExportSetupError(
                        f"failed to set up {signal.value} provider: {e}"
                    ) from e
            _remaining(deadline, "initialization")
        except Exception:
            self._discard(providers)
            raise

        self._config = config
        self._tracer_provider = providers.get(SignalType.TRACES)
        self._meter_provider = providers.get(SignalType.METRICS)
        self._logger_provider = providers.get(SignalType.LOGS)

        version = config.service_version
        if self._tracer_provider is not None:
            self._tracer = self._tracer_provider.get_tracer(config.service_name, version)
        if self._meter_provider is not None:
            self._meter = self._meter_provider.get_meter(config.service_name, version)
        if self._logger_provider is not None:
            self._otel_logger = self._logger_provider.get_logger(config.service_name, version)
        self._closed.clear()
        self._initialized = True

        logger.info(
            "Telemetry SDK initialized",
            extra={
                "extra_fields": {
                    "service": config.service_name,
                    "endpoint": config.endpoint,
                    "collector_id": factory.collector_id,
                    "signals": sorted(signal.value for signal in providers),
                }
            },
        )

    def _build_tracer_provider(
        self, factory: OTLPExporterFactory, resource: Resource
    ) -> TracerProvider:
        batch = self._batch_options(factory)
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(BatchSpanProcessor(factory.create_trace_exporter(), **batch))
        return provider

    def _build_meter_provider(
        self, factory: OTLPExporterFactory, resource: Resource
    ) -> MeterProvider:
        config = factory.config
        reader = PeriodicExportingMetricReader(
            factory.create_metric_exporter(),
            export_interval_millis=config.batch_settings.timeout * 1000,
            export_timeout_millis=config.timeout * 1000,
        )
        exemplar_filter = (
            TraceBasedExemplarFilter() if config.exemplars_enabled else AlwaysOffExemplarFilter()
        )
        return MeterProvider(
            resource=resource, metric_readers=[reader], exemplar_filter=exemplar_filter
        )

    def _build_logger_provider(
        self, factory: OTLPExporterFactory, resource: Resource
    ) -> LoggerProvider:
        batch = self._batch_options(factory)
        provider = LoggerProvider(resource=resource)
        provider.add_log_record_processor(
            BatchLogRecordProcessor(factory.create_log_exporter(), **batch)
        )
        return provider

    @staticmethod
    def _batch_options(factory: OTLPExporterFactory) -> dict[str, Any]:
        config = factory.config
        batch = config.batch_settings
        return {
            "max_queue_size": max(DEFAULT_MAX_QUEUE_SIZE, batch.max_size),
            "schedule_delay_millis": batch.timeout * 1000,
            "max_export_batch_size": batch.max_size,
            "export_timeout_millis": config.timeout * 1000,
        }

    def _discard(self, providers: dict[SignalType, Any]) -> None:
        for signal, provider in providers.items():
            try:
                provider.shutdown()
            except Exception as e:
                logger.warning(
                    "Provider cleanup failed",
                    extra={"extra_fields": {"signal": signal.value, "error": str(e)}},
                )

    def _shutdown(self, command: ShutdownSDK, timeout: Optional[float]) -> None:
        if not self._initialized:
            return

        deadline = _deadline(_effective_timeout(command.timeout, timeout))
        with self._spans_lock:
            open_spans = list(self._spans.values())
            self._spans.clear()
        for span in open_spans:
            span.end()

        self._drain(deadline, "shutdown", shutdown=True)

        self._initialized = False
        self._tracer_provider = None
        self._meter_provider = None
        self._logger_provider = None
        self._tracer = None
        self._meter = None
        self._otel_logger = None
        self._closed.clear()
        with self._instruments_lock:
            self._instruments.clear()

        logger.info(
            "Telemetry SDK shut down",
            extra={"extra_fields": {"service": self._config.service_name}},
        )

    def _flush(self, command: FlushTelemetry, timeout: Optional[float]) -> None:
        self._require_initialized()
        deadline = _deadline(_effective_timeout(command.timeout, timeout))
        self._drain(deadline, "flush", shutdown=False)

    def _drain(self, deadline: Optional[float], operation: str, shutdown: bool) -> None:
        """Flush every provider, optionally shutting it down, and raise the first failure."""
        providers = [
            (SignalType.TRACES, self._tracer_provider),
            (SignalType.METRICS, self._meter_provider),
            (SignalType.LOGS, self._logger_provider),
        ]
        first_error: Optional[TelemetryFlowError] = None
        for signal, provider in providers:
            if provider is None or signal in self._closed:
                continue
            try:
                remaining = _remaining(deadline, operation)
                timeout_millis = 30_000 if remaining is None else max(1, int(remaining * 1000))
                if provider.force_flush(timeout_millis) is False:
                    raise TelemetryTimeoutError(f"{signal.value} {operation} timed out")
                if shutdown:
                    provider.shutdown()
                    self._closed.add(signal)
            except TelemetryFlowError as e:
                error: TelemetryFlowError = e
            except Exception as e:
                error = TransportError(f"{signal.value} {operation} failed: {e}")
                error.__cause__ = e
            else:
                continue

            logger.error(
                "Provider %s failed",
                operation,
                extra={"extra_fields": {"signal": signal.value, "error": str(error)}},
            )
            if first_error is None:
                first_error = error

        if first_error is not None:
            raise first_error

    def _status(self, query: GetSDKStatus) -> SDKStatus:
        config = self._config
        enabled = [
            signal
            for signal, provider in (
                (SignalType.METRICS, self._meter_provider),
                (SignalType.LOGS, self._logger_provider),
                (SignalType.TRACES, self._tracer_provider),
            )
            if provider is not None
        ]
        with self._spans_lock:
            active_spans = len(self._spans)
        return SDKStatus(
            initialized=self._initialized,
            service_name=config.service_name,
            protocol=getattr(config.protocol, "value", config.protocol),
            endpoint=config.endpoint,
            enabled_signals=enabled,
            active_spans=active_spans,
        )

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError("SDK not initialized")

    def _require_signal(self, signal: SignalType, source: Any) -> Any:
        """Return the tracer, meter or logger of an enabled signal.

        Callers use the returned value rather than re-reading the attribute.
        """
        self._require_initialized()
        if source is None:
            raise SignalDisabledError(f"{signal.value} signal is not enabled")
        return source

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def _instrument(self, kind: str, name: str, unit: str = "") -> Any:
        meter = self._require_signal(SignalType.METRICS, self._meter)
        key = (kind, name)
        with self._instruments_lock:
            cached = self._instruments.get(key)
            if cached is None:
                create = {
                    "counter": meter.create_counter,
                    "gauge": meter.create_gauge,
                    "histogram": meter.create_histogram,
                }[kind]
                instrument = create(name, unit=unit)
                self._instruments[key] = (instrument, unit)
                return instrument

        instrument, created_unit = cached
        if unit and unit != created_unit:
            logger.warning(
                "Instrument unit mismatch",
                extra={
                    "extra_fields": {
                        "instrument": kind,
                        "name": name,
                        "unit": created_unit,
                        "requested": unit,
                    }
                },
            )
        return instrument

    def _record_metric(self, command: RecordMetric) -> None:
        gauge = self._instrument("gauge", command.name, command.unit)
        gauge.set(command.value, attributes=convert_attributes(command.attributes))

    def _record_counter(self, command: RecordCounter) -> None:
        counter = self._instrument("counter", command.name)
        counter.add(command.value, attributes=convert_attributes(command.attributes))

    def _record_gauge(self, command: RecordGauge) -> None:
        gauge = self._instrument("gauge", command.name)
        gauge.set(command.value, attributes=convert_attributes(command.attributes))

    def _record_histogram(self, command: RecordHistogram) -> None:
        histogram = self._instrument("histogram", command.name, command.unit)
        histogram.record(command.value, attributes=convert_attributes(command.attributes))

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def _emit_log(self, command: EmitLog) -> None:
        otel_logger = self._require_signal(SignalType.LOGS, self._otel_logger)
        self._write_log(otel_logger, command)

    def _emit_batch_logs(self, command: EmitBatchLogs) -> None:
        otel_logger = self._require_signal(SignalType.LOGS, self._otel_logger)
        for log in command.logs:
            self._write_log(otel_logger, log)

    def _write_log(self, otel_logger: Any, command: EmitLog) -> None:
        severity = SEVERITY_NUMBERS.get(command.severity.lower(), SeverityNumber.INFO)
        otel_logger.emit(
            timestamp=_nanos(command.timestamp),
            context=trace.set_span_in_context(self._log_span(command)),
            severity_number=severity,
            severity_text=severity.name,
            body=command.message,
            attributes=convert_attributes(command.attributes),
        )

    def _log_span(self, command: EmitLog) -> trace.Span:
        """Span to correlate a log with: registered span, explicit ids, else current."""
        if command.span_id:
            with self._spans_lock:
                span = self._spans.get(command.span_id)
            if span is not None:
                return span

        if command.trace_id and command.span_id:
            try:
                context = SpanContext(
                    trace_id=int(command.trace_id, 16),
                    span_id=int(command.span_id, 16),
                    is_remote=True,
                    trace_flags=TraceFlags(TraceFlags.SAMPLED),
                )
            except ValueError:
                logger.warning(
                    "Ignoring malformed trace context on log",
                    extra={
                        "extra_fields": {
                            "trace_id": command.trace_id,
                            "span_id": command.span_id,
                        }
                    },
                )
            else:
                if context.is_valid:
                    return NonRecordingSpan(context)

        return trace.get_current_span()

    # ------------------------------------------------------------------
    # Traces
    # ------------------------------------------------------------------

    def _registered_span(self, span_id: str) -> trace.Span:
        with self._spans_lock:
            span = self._spans.get(span_id)
        if span is None:
            raise SpanNotFoundError(f"span not found: {span_id}")
        return span

    def _start_span(self, command: StartSpan) -> str:
        tracer = self._require_signal(SignalType.TRACES, self._tracer)

        context = None
        if command.parent_id:
            parent = self._registered_span(command.parent_id)
            context = trace.set_span_in_context(parent)

        span = tracer.start_span(
            command.name,
            context=context,
            kind=SPAN_KINDS.get(command.span_kind.lower(), trace.SpanKind.INTERNAL),
            attributes=convert_attributes(command.attributes),
        )
        span_id = span_id_hex(span)
        with self._spans_lock:
            self._spans[span_id] = span
        return span_id

    def _end_span(self, command: EndSpan) -> None:
        self._require_signal(SignalType.TRACES, self._tracer)
        with self._spans_lock:
            span = self._spans.pop(command.span_id, None)
        if span is None:
            raise SpanNotFoundError(f"span not found: {command.span_id}")

        if command.error is not None:
            span.record_exception(command.error)
            span.set_status(Status(StatusCode.ERROR, str(command.error)))
        span.end()

    def _add_span_event(self, command: AddSpanEvent) -> None:
        self._require_signal(SignalType.TRACES, self._tracer)
        span = self._registered_span(command.span_id)
        span.add_event(
            command.name,
            attributes=convert_attributes(command.attributes),
            timestamp=_nanos(command.timestamp),
        )
