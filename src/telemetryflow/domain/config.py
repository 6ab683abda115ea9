"""TelemetryConfig aggregate and its value objects."""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from telemetryflow.domain.credentials import Credentials
from telemetryflow.errors import ConfigurationError
from telemetryflow.semantic.contract import Protocol, SignalType

DEFAULT_SERVICE_NAMESPACE = "telemetryflow"
DEFAULT_SERVICE_VERSION = "1.0.0"
DEFAULT_ENVIRONMENT = "production"
DEFAULT_DATACENTER = "default"


class RetryPolicy(BaseModel):
    """Retry behaviour handed to the exporters."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(True, description="Whether failed exports are retried")
    max_retries: int = Field(3, description="Maximum retry attempts")
    backoff: float = Field(5.0, description="Base backoff between retries, in seconds")


class BatchSettings(BaseModel):
    """Batch export settings for the span/log processors and metric reader."""

    model_config = ConfigDict(frozen=True)

    timeout: float = Field(10.0, description="Batch export interval, in seconds")
    max_size: int = Field(512, description="Maximum records per export batch")


class GRPCKeepalive(BaseModel):
    """gRPC keepalive settings (aligned with the OpenTelemetry Collector)."""

    model_config = ConfigDict(frozen=True)

    time: float = Field(10.0, description="Ping interval, in seconds")
    timeout: float = Field(5.0, description="Ping ack timeout, in seconds")
    permit_without_stream: bool = Field(True, description="Ping with no active calls")


class CollectorIdentity(BaseModel):
    """Collector identity attached to resources when enrichment is on."""

    model_config = ConfigDict(frozen=True)

    id: str = Field("", description="Unique collector id (generated if empty)")
    name: str = Field("", description="Human-readable collector name")
    description: str = Field("", description="Human-readable collector description")
    hostname: str = Field("", description="Collector hostname (auto-detected if empty)")
    tags: dict[str, str] = Field(default_factory=dict, description="Custom labels")
    enrich_resources: bool = Field(True, description="Add identity to every resource")


class TelemetryConfig:
    """Aggregate root holding every export setting.

    Mutators follow the `with_*` convention: they change this instance and
    return it so calls can be chained. Nothing is copied.

    Example:
        >>> config = (
        >>>     TelemetryConfig(creds, "localhost:4317", "checkout")
        >>>     .with_protocol(Protocol.HTTP)
        >>>     .with_insecure(True)
        >>>     .with_signals(metrics=True, logs=False, traces=True)
        >>> )
        >>> config.validate()
    """

    def __init__(
        self,
        credentials: Optional[Credentials],
        endpoint: str,
        service_name: str,
    ) -> None:
        """Create a configuration with defaults for everything optional.

        Raises:
            ConfigurationError: If credentials are missing or endpoint /
                service name are empty
        """
        if credentials is None:
            raise ConfigurationError("credentials cannot be nil")
        if not endpoint:
            raise ConfigurationError("endpoint cannot be empty")
        if not service_name:
            raise ConfigurationError("service name cannot be empty")

        self._credentials = credentials
        self._endpoint = endpoint
        self._protocol: Union[Protocol, str] = Protocol.GRPC
        self._insecure = False
        self._timeout = 30.0
        self._retry = RetryPolicy()
        self._compression = True

        # v2 API enabled by default for the TelemetryFlow platform
        self._use_v2_api = True
        self._v2_only = False
        self._endpoint_overrides: dict[SignalType, str] = {}

        self._collector_id = ""
        self._collector_name = ""
        self._collector_description = ""
        self._collector_hostname = ""
        self._collector_tags: dict[str, str] = {}
        self._enrich_resources = True

        self._grpc_keepalive = GRPCKeepalive()
        self._grpc_max_recv_msg_size = 4  # MiB
        self._grpc_max_send_msg_size = 4  # MiB

        self._enabled_signals = set(SignalType)

        self._service_name = service_name
        self._service_namespace = DEFAULT_SERVICE_NAMESPACE
        self._service_version = DEFAULT_SERVICE_VERSION
        self._environment = DEFAULT_ENVIRONMENT
        self._datacenter = DEFAULT_DATACENTER
        self._custom_attributes: dict[str, str] = {}

        self._batch = BatchSettings()
        self._rate_limit = 1000  # requests per minute
        # exemplars link metric points to the span they were recorded in
        self._exemplars = True

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def protocol(self) -> Union[Protocol, str]:
        """Configured protocol. Unknown values are kept verbatim and rejected at exporter setup."""
        return self._protocol

    @property
    def insecure(self) -> bool:
        return self._insecure

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    @property
    def compression_enabled(self) -> bool:
        return self._compression

    @property
    def enabled_signals(self) -> frozenset[SignalType]:
        return frozenset(self._enabled_signals)

    @property
    def batch_settings(self) -> BatchSettings:
        return self._batch

    @property
    def rate_limit(self) -> int:
        return self._rate_limit

    @property
    def exemplars_enabled(self) -> bool:
        return self._exemplars

    @property
    def service_name(self) -> str:
        return self._service_name

    @property
    def service_version(self) -> str:
        return self._service_version

    @property
    def service_namespace(self) -> str:
        return self._service_namespace

    @property
    def environment(self) -> str:
        return self._environment

    @property
    def datacenter(self) -> str:
        return self._datacenter

    @property
    def custom_attributes(self) -> dict[str, str]:
        return dict(self._custom_attributes)

    @property
    def collector_id(self) -> str:
        return self._collector_id

    @property
    def collector_identity(self) -> CollectorIdentity:
        return CollectorIdentity(
            id=self._collector_id,
            name=self._collector_name,
            description=self._collector_description,
            hostname=self._collector_hostname,
            tags=dict(self._collector_tags),
            enrich_resources=self._enrich_resources,
        )

    @property
    def use_v2_api(self) -> bool:
        return self._use_v2_api

    @property
    def v2_only(self) -> bool:
        return self._v2_only

    @property
    def traces_endpoint(self) -> str:
        return self.signal_endpoint(SignalType.TRACES)

    @property
    def metrics_endpoint(self) -> str:
        return self.signal_endpoint(SignalType.METRICS)

    @property
    def logs_endpoint(self) -> str:
        return self.signal_endpoint(SignalType.LOGS)

    @property
    def grpc_keepalive(self) -> GRPCKeepalive:
        return self._grpc_keepalive

    @property
    def grpc_max_recv_msg_size(self) -> int:
        """Maximum gRPC receive message size, in MiB."""
        return self._grpc_max_recv_msg_size

    @property
    def grpc_max_send_msg_size(self) -> int:
        """Maximum gRPC send message size, in MiB."""
        return self._grpc_max_send_msg_size

    def endpoint_override(self, signal: SignalType) -> str:
        """Custom path configured for a signal, or "" when none is set."""
        return self._endpoint_overrides.get(SignalType(signal), "")

    def signal_endpoint(self, signal: SignalType) -> str:
        """Endpoint path for a signal: the override, else /v2/<signal> or /v1/<signal>."""
        signal = SignalType(signal)
        override = self._endpoint_overrides.get(signal)
        if override:
            return override
        version = "v2" if self._use_v2_api else "v1"
        return f"/{version}/{signal.value}"

    def is_signal_enabled(self, signal: SignalType) -> bool:
        return signal in self._enabled_signals

    # ------------------------------------------------------------------
    # Chained mutators
    # ------------------------------------------------------------------

    def with_protocol(self, protocol: Union[Protocol, str]) -> "TelemetryConfig":
        try:
            self._protocol = Protocol(protocol)
        except ValueError:
            self._protocol = protocol
        return self

    def with_insecure(self, insecure: bool) -> "TelemetryConfig":
        self._insecure = insecure
        return self

    def with_timeout(self, timeout: float) -> "TelemetryConfig":
        self._timeout = timeout
        return self

    def with_retry(self, enabled: bool, max_retries: int, backoff: float) -> "TelemetryConfig":
        self._retry = RetryPolicy(enabled=enabled, max_retries=max_retries, backoff=backoff)
        return self

    def with_compression(self, enabled: bool) -> "TelemetryConfig":
        self._compression = enabled
        return self

    def with_signals(self, metrics: bool, logs: bool, traces: bool) -> "TelemetryConfig":
        flags = {
            SignalType.METRICS: metrics,
            SignalType.LOGS: logs,
            SignalType.TRACES: traces,
        }
        self._enabled_signals = {signal for signal, enabled in flags.items() if enabled}
        return self

    def with_service_version(self, version: str) -> "TelemetryConfig":
        self._service_version = version
        return self

    def with_service_namespace(self, namespace: str) -> "TelemetryConfig":
        self._service_namespace = namespace
        return self

    def with_environment(self, environment: str) -> "TelemetryConfig":
        self._environment = environment
        return self

    def with_datacenter(self, datacenter: str) -> "TelemetryConfig":
        self._datacenter = datacenter
        return self

    def with_custom_attribute(self, key: str, value: str) -> "TelemetryConfig":
        self._custom_attributes[key] = value
        return self

    def with_batch_settings(self, timeout: float, max_size: int) -> "TelemetryConfig":
        self._batch = BatchSettings(timeout=timeout, max_size=max_size)
        return self

    def with_rate_limit(self, limit: int) -> "TelemetryConfig":
        """Client-side rate limit, in requests per minute."""
        self._rate_limit = limit
        return self

    def with_exemplars(self, enabled: bool) -> "TelemetryConfig":
        self._exemplars = enabled
        return self

    def with_collector_id(self, collector_id: str) -> "TelemetryConfig":
        self._collector_id = collector_id
        return self

    def with_collector_name(self, name: str) -> "TelemetryConfig":
        self._collector_name = name
        return self

    def with_collector_description(self, description: str) -> "TelemetryConfig":
        self._collector_description = description
        return self

    def with_collector_hostname(self, hostname: str) -> "TelemetryConfig":
        self._collector_hostname = hostname
        return self

    def with_collector_tag(self, key: str, value: str) -> "TelemetryConfig":
        self._collector_tags[key] = value
        return self

    def with_collector_tags(self, tags: dict[str, str]) -> "TelemetryConfig":
        self._collector_tags = dict(tags)
        return self

    def with_enrich_resources(self, enabled: bool) -> "TelemetryConfig":
        self._enrich_resources = enabled
        return self

    def with_v2_api(self, enabled: bool) -> "TelemetryConfig":
        self._use_v2_api = enabled
        return self

    def with_v2_only(self, enabled: bool) -> "TelemetryConfig":
        self._v2_only = enabled
        if enabled:
            self._use_v2_api = True
        return self

    def with_traces_endpoint(self, path: str) -> "TelemetryConfig":
        return self._with_endpoint_override(SignalType.TRACES, path)

    def with_metrics_endpoint(self, path: str) -> "TelemetryConfig":
        return self._with_endpoint_override(SignalType.METRICS, path)

    def with_logs_endpoint(self, path: str) -> "TelemetryConfig":
        return self._with_endpoint_override(SignalType.LOGS, path)

    def with_grpc_keepalive(
        self, time: float, timeout: float, permit_without_stream: bool
    ) -> "TelemetryConfig":
        self._grpc_keepalive = GRPCKeepalive(
            time=time, timeout=timeout, permit_without_stream=permit_without_stream
        )
        return self

    def with_grpc_message_sizes(self, recv_size: int, send_size: int) -> "TelemetryConfig":
        """Maximum gRPC receive/send message sizes, in MiB."""
        self._grpc_max_recv_msg_size = recv_size
        self._grpc_max_send_msg_size = send_size
        return self

    def _with_endpoint_override(self, signal: SignalType, path: str) -> "TelemetryConfig":
        if path:
            self._endpoint_overrides[signal] = path
        else:
            self._endpoint_overrides.pop(signal, None)
        return self

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check the configuration invariants.

        Raises:
            ConfigurationError: For the first violated invariant
        """
        if self._credentials is None:
            raise ConfigurationError("credentials cannot be nil")
        if not self._endpoint:
            raise ConfigurationError("endpoint cannot be empty")
        if not self._service_name:
            raise ConfigurationError("service name cannot be empty")
        if self._timeout <= 0:
            raise ConfigurationError("timeout must be positive")
        if self._retry.max_retries < 0:
            raise ConfigurationError("max retries cannot be negative")
        if self._batch.max_size <= 0:
            raise ConfigurationError("batch max size must be positive")
        if self._rate_limit < 0:
            raise ConfigurationError("rate limit cannot be negative")

    def __repr__(self) -> str:
        protocol = getattr(self._protocol, "value", self._protocol)
        return (
            f"TelemetryConfig(endpoint={self._endpoint}, protocol={protocol}, "
            f"service={self._service_name}, env={self._environment})"
        )
