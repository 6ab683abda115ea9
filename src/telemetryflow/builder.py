"""Fluent builder for TelemetryFlow clients.

The builder collects settings (directly or from the environment) without
failing early. Problems such as a missing environment variable are recorded
and reported together when build() is called.

Usage:
    >>> client = (
    >>>     TelemetryFlowBuilder()
    >>>     .with_api_key("tfk_abc", "tfs_xyz")
    >>>     .with_endpoint("localhost:4317")
    >>>     .with_service("checkout", "2.1.0")
    >>>     .with_insecure(True)
    >>>     .build()
    >>> )
"""

from typing import Optional, Union

from telemetryflow.client import TelemetryFlowClient
from telemetryflow.domain.config import (
    DEFAULT_DATACENTER,
    DEFAULT_ENVIRONMENT,
    DEFAULT_SERVICE_NAMESPACE,
    DEFAULT_SERVICE_VERSION,
    BatchSettings,
    GRPCKeepalive,
    RetryPolicy,
    TelemetryConfig,
)
from telemetryflow.domain.credentials import Credentials
from telemetryflow.errors import ConfigurationError, TelemetryFlowError
from telemetryflow.observability.logging import get_logger
from telemetryflow.semantic.contract import Protocol, SignalType
from telemetryflow.settings import TelemetryFlowSettings

logger = get_logger(__name__)


class TelemetryFlowBuilder:
    """Accumulates configuration and builds a TelemetryFlowClient.

    Every `with_*` method returns the builder. Environment loaders read
    TELEMETRYFLOW_* variables at call time.
    """

    def __init__(self) -> None:
        self._errors: list[str] = []

        self._api_key_id = ""
        self._api_key_secret = ""
        self._endpoint = ""
        self._service_name = ""
        self._service_version = DEFAULT_SERVICE_VERSION
        self._service_namespace = DEFAULT_SERVICE_NAMESPACE
        self._environment = DEFAULT_ENVIRONMENT
        self._datacenter = DEFAULT_DATACENTER

        self._protocol: Union[Protocol, str] = Protocol.GRPC
        self._insecure = False
        self._timeout = 30.0
        self._retry = RetryPolicy()
        self._compression = True
        self._signals = {signal: True for signal in SignalType}
        self._batch = BatchSettings()
        self._rate_limit = 1000
        self._exemplars = True
        self._custom_attributes: dict[str, str] = {}

        self._collector_id = ""
        self._collector_name = ""
        self._collector_description = ""
        self._collector_hostname = ""
        self._collector_tags: dict[str, str] = {}
        self._enrich_resources = True

        self._use_v2_api = True
        self._v2_only = False
        self._traces_endpoint = ""
        self._metrics_endpoint = ""
        self._logs_endpoint = ""

        self._grpc_keepalive = GRPCKeepalive()
        self._grpc_max_recv_msg_size = 4
        self._grpc_max_send_msg_size = 4

    # ------------------------------------------------------------------
    # Credentials, endpoint and service
    # ------------------------------------------------------------------

    def with_api_key(self, key_id: str, key_secret: str) -> "TelemetryFlowBuilder":
        self._api_key_id = key_id
        self._api_key_secret = key_secret
        return self

    def with_api_key_from_env(self) -> "TelemetryFlowBuilder":
        """Read TELEMETRYFLOW_API_KEY_ID / TELEMETRYFLOW_API_KEY_SECRET.

        A missing variable is recorded as a builder error.
        """
        settings = TelemetryFlowSettings()
        if settings.api_key_id:
            self._api_key_id = settings.api_key_id
        else:
            self._errors.append("TELEMETRYFLOW_API_KEY_ID environment variable not set")
        if settings.api_key_secret:
            self._api_key_secret = settings.api_key_secret
        else:
            self._errors.append("TELEMETRYFLOW_API_KEY_SECRET environment variable not set")
        return self

    def with_endpoint(self, endpoint: str) -> "TelemetryFlowBuilder":
        self._endpoint = endpoint
        return self

    def with_endpoint_from_env(self) -> "TelemetryFlowBuilder":
        self._endpoint = TelemetryFlowSettings().endpoint
        return self

    def with_service(self, name: str, version: str = "") -> "TelemetryFlowBuilder":
        self._service_name = name
        if version:
            self._service_version = version
        return self

    def with_service_version(self, version: str) -> "TelemetryFlowBuilder":
        self._service_version = version
        return self

    def with_service_from_env(self) -> "TelemetryFlowBuilder":
        settings = TelemetryFlowSettings()
        self._service_name = settings.service_name
        self._service_version = settings.service_version
        return self

    def with_service_namespace(self, namespace: str) -> "TelemetryFlowBuilder":
        self._service_namespace = namespace
        return self

    def with_service_namespace_from_env(self) -> "TelemetryFlowBuilder":
        self._service_namespace = TelemetryFlowSettings().service_namespace
        return self

    def with_environment(self, environment: str) -> "TelemetryFlowBuilder":
        self._environment = environment
        return self

    def with_environment_from_env(self) -> "TelemetryFlowBuilder":
        """Read ENV, falling back to ENVIRONMENT."""
        self._environment = TelemetryFlowSettings().environment
        return self

    def with_datacenter(self, datacenter: str) -> "TelemetryFlowBuilder":
        self._datacenter = datacenter
        return self

    def with_datacenter_from_env(self) -> "TelemetryFlowBuilder":
        self._datacenter = TelemetryFlowSettings().datacenter
        return self

    def with_custom_attribute(self, key: str, value: str) -> "TelemetryFlowBuilder":
        self._custom_attributes[key] = value
        return self

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def with_protocol(self, protocol: Union[Protocol, str]) -> "TelemetryFlowBuilder":
        self._protocol = protocol
        return self

    def with_grpc(self) -> "TelemetryFlowBuilder":
        return self.with_protocol(Protocol.GRPC)

    def with_http(self) -> "TelemetryFlowBuilder":
        return self.with_protocol(Protocol.HTTP)

    def with_insecure(self, insecure: bool) -> "TelemetryFlowBuilder":
        self._insecure = insecure
        return self

    def with_timeout(self, timeout: float) -> "TelemetryFlowBuilder":
        self._timeout = timeout
        return self

    def with_retry(self, enabled: bool, max_retries: int, backoff: float) -> "TelemetryFlowBuilder":
        self._retry = RetryPolicy(enabled=enabled, max_retries=max_retries, backoff=backoff)
        return self

    def with_compression(self, enabled: bool) -> "TelemetryFlowBuilder":
        self._compression = enabled
        return self

    def with_batch_settings(self, timeout: float, max_size: int) -> "TelemetryFlowBuilder":
        self._batch = BatchSettings(timeout=timeout, max_size=max_size)
        return self

    def with_rate_limit(self, limit: int) -> "TelemetryFlowBuilder":
        self._rate_limit = limit
        return self

    def with_exemplars(self, enabled: bool) -> "TelemetryFlowBuilder":
        """Attach exemplars to metric points recorded inside a sampled span."""
        self._exemplars = enabled
        return self

    def with_grpc_keepalive(
        self, time: float, timeout: float, permit_without_stream: bool
    ) -> "TelemetryFlowBuilder":
        self._grpc_keepalive = GRPCKeepalive(
            time=time, timeout=timeout, permit_without_stream=permit_without_stream
        )
        return self

    def with_grpc_message_sizes(self, recv_size: int, send_size: int) -> "TelemetryFlowBuilder":
        self._grpc_max_recv_msg_size = recv_size
        self._grpc_max_send_msg_size = send_size
        return self

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def with_signals(self, metrics: bool, logs: bool, traces: bool) -> "TelemetryFlowBuilder":
        self._signals = {
            SignalType.METRICS: metrics,
            SignalType.LOGS: logs,
            SignalType.TRACES: traces,
        }
        return self

    def with_metrics_only(self) -> "TelemetryFlowBuilder":
        return self.with_signals(metrics=True, logs=False, traces=False)

    def with_logs_only(self) -> "TelemetryFlowBuilder":
        return self.with_signals(metrics=False, logs=True, traces=False)

    def with_traces_only(self) -> "TelemetryFlowBuilder":
        return self.with_signals(metrics=False, logs=False, traces=True)

    # ------------------------------------------------------------------
    # Collector identity
    # ------------------------------------------------------------------

    def with_collector_id(self, collector_id: str) -> "TelemetryFlowBuilder":
        self._collector_id = collector_id
        return self

    def with_collector_id_from_env(self) -> "TelemetryFlowBuilder":
        self._collector_id = TelemetryFlowSettings().collector_id
        return self

    def with_collector_name(self, name: str) -> "TelemetryFlowBuilder":
        self._collector_name = name
        return self

    def with_collector_name_from_env(self) -> "TelemetryFlowBuilder":
        self._collector_name = TelemetryFlowSettings().collector_name
        return self

    def with_collector_description(self, description: str) -> "TelemetryFlowBuilder":
        self._collector_description = description
        return self

    def with_collector_hostname(self, hostname: str) -> "TelemetryFlowBuilder":
        self._collector_hostname = hostname
        return self

    def with_collector_tag(self, key: str, value: str) -> "TelemetryFlowBuilder":
        self._collector_tags[key] = value
        return self

    def with_collector_tags(self, tags: dict[str, str]) -> "TelemetryFlowBuilder":
        self._collector_tags = dict(tags)
        return self

    def with_enrich_resources(self, enabled: bool) -> "TelemetryFlowBuilder":
        self._enrich_resources = enabled
        return self

    # ------------------------------------------------------------------
    # Endpoint paths
    # ------------------------------------------------------------------

    def with_v2_api(self, enabled: bool) -> "TelemetryFlowBuilder":
        self._use_v2_api = enabled
        return self

    def with_v2_only(self, enabled: bool = True) -> "TelemetryFlowBuilder":
        self._v2_only = enabled
        if enabled:
            self._use_v2_api = True
        return self

    def with_traces_endpoint(self, path: str) -> "TelemetryFlowBuilder":
        self._traces_endpoint = path
        return self

    def with_metrics_endpoint(self, path: str) -> "TelemetryFlowBuilder":
        self._metrics_endpoint = path
        return self

    def with_logs_endpoint(self, path: str) -> "TelemetryFlowBuilder":
        self._logs_endpoint = path
        return self

    # ------------------------------------------------------------------
    # Shortcuts
    # ------------------------------------------------------------------

    def with_auto_configuration(self) -> "TelemetryFlowBuilder":
        """Load everything the environment provides."""
        return (
            self.with_api_key_from_env()
            .with_endpoint_from_env()
            .with_service_from_env()
            .with_service_namespace_from_env()
            .with_environment_from_env()
            .with_collector_id_from_env()
            .with_collector_name_from_env()
            .with_datacenter_from_env()
        )

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self) -> TelemetryFlowClient:
        """Validate the accumulated settings and create a client.

        Raises:
            ConfigurationError: If builder errors were recorded or required
                settings are missing; `.errors` lists every problem
            CredentialFormatError: If the API key pair is malformed
        """
        if self._errors:
            raise ConfigurationError(
                f"builder errors: {'; '.join(self._errors)}", errors=self._errors
            )

        missing = []
        if not self._api_key_id or not self._api_key_secret:
            missing.append("API credentials are required")
        if not self._endpoint:
            missing.append("endpoint is required")
        if not self._service_name:
            missing.append("service name is required")
        if missing:
            raise ConfigurationError("; ".join(missing), errors=missing)

        credentials = Credentials(self._api_key_id, self._api_key_secret)
        config = self._config(credentials)
        return TelemetryFlowClient(config)

    def must_build(self) -> TelemetryFlowClient:
        """build(), aborting the process on failure."""
        try:
            return self.build()
        except TelemetryFlowError as e:
            logger.critical(
                "Failed to build TelemetryFlow client",
                extra={"extra_fields": {"error": str(e)}},
            )
            raise SystemExit(f"failed to build TelemetryFlow client: {e}") from e

    def _config(self, credentials: Credentials) -> TelemetryConfig:
        config = (
            TelemetryConfig(credentials, self._endpoint, self._service_name)
            .with_protocol(self._protocol)
            .with_insecure(self._insecure)
            .with_timeout(self._timeout)
            .with_retry(self._retry.enabled, self._retry.max_retries, self._retry.backoff)
            .with_compression(self._compression)
            .with_signals(
                metrics=self._signals[SignalType.METRICS],
                logs=self._signals[SignalType.LOGS],
                traces=self._signals[SignalType.TRACES],
            )
            .with_batch_settings(self._batch.timeout, self._batch.max_size)
            .with_rate_limit(self._rate_limit)
            .with_exemplars(self._exemplars)
            .with_service_version(self._service_version)
            .with_service_namespace(self._service_namespace)
            .with_environment(self._environment)
            .with_datacenter(self._datacenter)
            .with_collector_id(self._collector_id)
            .with_collector_name(self._collector_name)
            .with_collector_description(self._collector_description)
            .with_collector_hostname(self._collector_hostname)
            .with_collector_tags(self._collector_tags)
            .with_enrich_resources(self._enrich_resources)
            .with_v2_api(self._use_v2_api)
            .with_v2_only(self._v2_only)
            .with_traces_endpoint(self._traces_endpoint)
            .with_metrics_endpoint(self._metrics_endpoint)
            .with_logs_endpoint(self._logs_endpoint)
            .with_grpc_keepalive(
                self._grpc_keepalive.time,
                self._grpc_keepalive.timeout,
                self._grpc_keepalive.permit_without_stream,
            )
            .with_grpc_message_sizes(self._grpc_max_recv_msg_size, self._grpc_max_send_msg_size)
        )
        for key, value in self._custom_attributes.items():
            config.with_custom_attribute(key, value)
        return config


# ============================================================================
# Convenience constructors
# ============================================================================


def new_from_env() -> TelemetryFlowClient:
    """Build a client entirely from the environment."""
    return TelemetryFlowBuilder().with_auto_configuration().build()


def must_new_from_env() -> TelemetryFlowClient:
    return TelemetryFlowBuilder().with_auto_configuration().must_build()


def new_simple(
    key_id: str,
    key_secret: str,
    endpoint: str,
    service_name: str,
    service_version: Optional[str] = None,
) -> TelemetryFlowClient:
    """Build a client from the minimum required settings."""
    return _simple_builder(key_id, key_secret, endpoint, service_name, service_version).build()


def must_new_simple(
    key_id: str,
    key_secret: str,
    endpoint: str,
    service_name: str,
    service_version: Optional[str] = None,
) -> TelemetryFlowClient:
    return _simple_builder(
        key_id, key_secret, endpoint, service_name, service_version
    ).must_build()


def _simple_builder(
    key_id: str,
    key_secret: str,
    endpoint: str,
    service_name: str,
    service_version: Optional[str],
) -> TelemetryFlowBuilder:
    return (
        TelemetryFlowBuilder()
        .with_api_key(key_id, key_secret)
        .with_endpoint(endpoint)
        .with_service(service_name, service_version or "")
    )
