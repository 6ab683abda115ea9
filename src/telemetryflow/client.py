"""TelemetryFlow client - the public facade for emitting telemetry.

The client turns method calls into command values and hands them to a
CommandHandler. It owns the lifecycle state (uninitialized / initialized)
and guards it with a reader/writer lock: emission only needs a read to
check the state, while initialize and shutdown are exclusive.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError

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
from telemetryflow.application.handler import CommandHandler
from telemetryflow.application.queries import GetSDKStatus, SDKStatus
from telemetryflow.domain.config import TelemetryConfig
from telemetryflow.errors import (
    AlreadyInitializedError,
    ConfigurationError,
    InvalidCommandError,
    NotInitializedError,
    TelemetryFlowError,
    TransportError,
)
from telemetryflow.infrastructure.handlers import TelemetryCommandHandler
from telemetryflow.locks import ReadWriteLock
from telemetryflow.observability.logging import get_logger
from telemetryflow.semantic.contract import Severity, SpanKind

logger = get_logger(__name__)

SHUTDOWN_TIMEOUT = 30.0
FLUSH_TIMEOUT = 10.0


class LifecycleState(str, Enum):
    """Client lifecycle: UNINITIALIZED -> INITIALIZED -> UNINITIALIZED."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"


def _now() -> datetime:
    return datetime.now(UTC)


class TelemetryFlowClient:
    """Emit metrics, logs and traces to a TelemetryFlow collector.

    Usage:
        >>> client = TelemetryFlowBuilder().with_auto_configuration().build()
        >>> client.initialize()
        >>> client.increment_counter("orders.created", 1, {"region": "eu"})
        >>> span_id = client.start_span("checkout", kind="server")
        >>> client.end_span(span_id)
        >>> client.shutdown()

    Or as a context manager, which initializes on enter and shuts down on exit:
        >>> with TelemetryFlowBuilder().with_auto_configuration().build() as client:
        >>>     client.log_info("started")
    """

    def __init__(
        self,
        config: TelemetryConfig,
        handler: Optional[CommandHandler] = None,
    ) -> None:
        """Create a client for a configuration.

        Args:
            config: SDK configuration, validated here
            handler: Command handler; the OpenTelemetry-backed handler by default

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        try:
            config.validate()
        except ConfigurationError as e:
            raise ConfigurationError(f"invalid configuration: {e}", errors=e.errors) from e

        if handler is None:
            handler = TelemetryCommandHandler(config)

        self._config = config
        self._handler = handler
        self._state = LifecycleState.UNINITIALIZED
        self._lock = ReadWriteLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, timeout: Optional[float] = None) -> None:
        """Set up exporters and providers for every enabled signal.

        Args:
            timeout: Optional deadline in seconds

        Raises:
            AlreadyInitializedError: If the client is already initialized
            TelemetryFlowError: If the handler fails; the state is unchanged
        """
        with self._lock.write_locked():
            if self._state is LifecycleState.INITIALIZED:
                raise AlreadyInitializedError("client already initialized")

            self._lifecycle(InitializeSDK(config=self._config), timeout, "failed to initialize SDK")
            self._state = LifecycleState.INITIALIZED

        logger.debug(
            "Client initialized",
            extra={"extra_fields": {"service": self._config.service_name}},
        )

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Flush and shut down. A no-op when the client is not initialized.

        On failure the client stays initialized so shutdown can be retried.
        """
        with self._lock.write_locked():
            if self._state is not LifecycleState.INITIALIZED:
                return

            self._lifecycle(ShutdownSDK(timeout=SHUTDOWN_TIMEOUT), timeout, "failed to shutdown SDK")
            self._state = LifecycleState.UNINITIALIZED

        logger.debug(
            "Client shut down",
            extra={"extra_fields": {"service": self._config.service_name}},
        )

    def flush(self, timeout: Optional[float] = None) -> None:
        """Force export of all buffered telemetry."""
        self._require_initialized()
        self._handler.handle(FlushTelemetry(timeout=FLUSH_TIMEOUT), timeout)

    def _lifecycle(self, command: Any, timeout: Optional[float], context: str) -> None:
        try:
            self._handler.handle(command, timeout)
        except TelemetryFlowError as e:
            raise e.with_context(context) from e
        except Exception as e:
            raise TransportError(f"{context}: {e}") from e

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        with self._lock.read_locked():
            return self._state is LifecycleState.INITIALIZED

    @property
    def state(self) -> LifecycleState:
        with self._lock.read_locked():
            return self._state

    @property
    def config(self) -> TelemetryConfig:
        with self._lock.read_locked():
            return self._config

    def status(self) -> SDKStatus:
        """Snapshot of the handler's runtime state."""
        return self._handler.handle(GetSDKStatus())

    def _require_initialized(self) -> None:
        if not self.is_initialized():
            raise NotInitializedError("client not initialized")

    def _dispatch(self, command_type: type, **fields: Any) -> Any:
        self._require_initialized()
        try:
            command = command_type(**fields)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(map(str, error['loc']))}: {error['msg']}" for error in e.errors()
            )
            raise InvalidCommandError(f"invalid {command_type.__name__}: {problems}") from e
        return self._handler.handle(command)

    @property
    def handler(self) -> CommandHandler:
        return self._handler

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def record_metric(
        self,
        name: str,
        value: float,
        unit: str = "",
        attributes: Optional[dict[str, Any]] = None,
    ) -> None:
        """Record a generic metric data point."""
        self._dispatch(
            RecordMetric,
            name=name,
            value=value,
            unit=unit,
            attributes=attributes or {},
            timestamp=_now(),
        )

    def increment_counter(
        self,
        name: str,
        value: int = 1,
        attributes: Optional[dict[str, Any]] = None,
    ) -> None:
        self._dispatch(RecordCounter, name=name, value=value, attributes=attributes or {})

    def record_gauge(
        self,
        name: str,
        value: float,
        attributes: Optional[dict[str, Any]] = None,
    ) -> None:
        self._dispatch(RecordGauge, name=name, value=value, attributes=attributes or {})

    def record_histogram(
        self,
        name: str,
        value: float,
        unit: str = "",
        attributes: Optional[dict[str, Any]] = None,
    ) -> None:
        self._dispatch(
            RecordHistogram, name=name, value=value, unit=unit, attributes=attributes or {}
        )

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def log(
        self,
        message: str,
        severity: str = Severity.INFO.value,
        attributes: Optional[dict[str, Any]] = None,
        trace_id: Optional[str] = None,
        span_id: Optional[str] = None,
    ) -> None:
        """Emit a structured log record.

        Args:
            message: Log body
            severity: debug, info, warn, error or fatal
            attributes: Extra log attributes
            trace_id: Optional 32 hex digit trace id to correlate with
            span_id: Optional span id; a span started through this client
                is correlated even without a trace id
        """
        severity = getattr(severity, "value", severity)
        self._dispatch(
            EmitLog,
            severity=severity,
            message=message,
            attributes=attributes or {},
            timestamp=_now(),
            trace_id=trace_id,
            span_id=span_id,
        )

    def log_info(self, message: str, attributes: Optional[dict[str, Any]] = None) -> None:
        self.log(message, Severity.INFO.value, attributes)

    def log_warn(self, message: str, attributes: Optional[dict[str, Any]] = None) -> None:
        self.log(message, Severity.WARN.value, attributes)

    def log_error(self, message: str, attributes: Optional[dict[str, Any]] = None) -> None:
        self.log(message, Severity.ERROR.value, attributes)

    def log_batch(self, logs: list[EmitLog]) -> None:
        """Emit several prepared log records in order."""
        self._dispatch(EmitBatchLogs, logs=list(logs))

    # ------------------------------------------------------------------
    # Traces
    # ------------------------------------------------------------------

    def start_span(
        self,
        name: str,
        kind: str = SpanKind.INTERNAL.value,
        attributes: Optional[dict[str, Any]] = None,
        parent_id: Optional[str] = None,
    ) -> str:
        """Start a span.

        Returns:
            The span id to pass to end_span / add_span_event / start_span(parent_id=...)
        """
        kind = getattr(kind, "value", kind)
        return self._dispatch(
            StartSpan,
            name=name,
            span_kind=kind,
            attributes=attributes or {},
            parent_id=parent_id,
        )

    def end_span(self, span_id: str, error: Optional[BaseException] = None) -> None:
        """End a span, marking it failed when an error is given."""
        self._dispatch(EndSpan, span_id=span_id, error=error)

    def add_span_event(
        self,
        span_id: str,
        name: str,
        attributes: Optional[dict[str, Any]] = None,
    ) -> None:
        self._dispatch(
            AddSpanEvent,
            span_id=span_id,
            name=name,
            attributes=attributes or {},
            timestamp=_now(),
        )

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> "TelemetryFlowClient":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        return f"TelemetryFlowClient(state={self._state.value}, config={self._config!r})"
