"""Exporter factory - turns a TelemetryConfig into per-signal exporter settings.

The factory owns every protocol-relevant decision: which protocol, which
endpoint path generation (v1 / v2 / override), TLS, compression, retry
translation and the authorization header. It then hands a fully resolved
ExporterSettings value to an ExporterTransport, the narrow boundary behind
which the OpenTelemetry OTLP exporters live.
"""

import platform
import socket
import sys
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from opentelemetry.sdk.resources import (
    DEPLOYMENT_ENVIRONMENT,
    SERVICE_NAME,
    SERVICE_VERSION,
    Resource,
)
from pydantic import BaseModel, ConfigDict, Field

from telemetryflow.domain.config import GRPCKeepalive, TelemetryConfig
from telemetryflow.errors import ExportSetupError, TelemetryFlowError, TransportError
from telemetryflow.observability.logging import get_logger
from telemetryflow.semantic.contract import Attributes, Headers, Protocol, SignalType

logger = get_logger(__name__)

V2_PATH_PREFIX = "/v2/"


class RetrySettings(BaseModel):
    """Retry policy translated for the exporters.

    initial_interval = backoff, max_interval = 2 x backoff,
    max_elapsed = max_retries x backoff.
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(..., description="Maximum retry attempts")
    initial_interval: float = Field(..., description="First backoff, in seconds")
    max_interval: float = Field(..., description="Backoff ceiling, in seconds")
    max_elapsed: float = Field(..., description="Total retry budget, in seconds")


class ExporterSettings(BaseModel):
    """Everything a transport needs to build one exporter."""

    model_config = ConfigDict(frozen=True)

    signal: SignalType
    protocol: Protocol
    endpoint: str = Field(..., description="Collector address (host:port or URL)")
    path: str = Field(..., description="Signal endpoint path, e.g. /v2/traces")
    timeout: float = Field(..., description="Per-export timeout, in seconds")
    # excluded from repr so the secret never reaches a log line
    headers: dict[str, str] = Field(default_factory=dict, repr=False)
    insecure: bool = False
    compression: bool = True
    retry: Optional[RetrySettings] = None
    grpc_keepalive: GRPCKeepalive = Field(default_factory=GRPCKeepalive)
    grpc_max_recv_msg_size: int = Field(4, description="MiB")
    grpc_max_send_msg_size: int = Field(4, description="MiB")

    @property
    def export_timeout(self) -> float:
        """Deadline for one export, retries included.

        The OTLP exporters keep retrying until this deadline, so it is capped
        at the retry budget when retry is enabled.
        """
        if self.retry is None or self.retry.max_elapsed <= 0:
            return self.timeout
        return min(self.timeout, self.retry.max_elapsed)

    @property
    def url(self) -> str:
        """Full HTTP URL: https://<endpoint><path>, or http:// when insecure."""
        base = self.endpoint.rstrip("/")
        if "://" not in base:
            scheme = "http" if self.insecure else "https"
            base = f"{scheme}://{base}"
        return f"{base}{self.path}"


class ExporterTransport(ABC):
    """Narrow interface to the library that actually encodes and ships OTLP.

    Implementations receive fully resolved settings and must not make any
    protocol or endpoint decisions of their own.
    """

    @abstractmethod
    def create_trace_exporter(self, settings: ExporterSettings) -> Any:
        """Return a span exporter."""

    @abstractmethod
    def create_metric_exporter(self, settings: ExporterSettings) -> Any:
        """Return a push metric exporter."""

    @abstractmethod
    def create_log_exporter(self, settings: ExporterSettings) -> Any:
        """Return a log record exporter."""


class OTLPExporterFactory:
    """Creates the resource and per-signal OTLP exporters for a configuration.

    Example:
        >>> factory = OTLPExporterFactory(config, OTLPTransport())
        >>> resource = factory.create_resource()
        >>> span_exporter = factory.create_trace_exporter()
    """

    def __init__(self, config: TelemetryConfig, transport: ExporterTransport) -> None:
        self._config = config
        self._transport = transport
        # generated once so every signal reports the same collector id
        self._collector_id = config.collector_id or str(uuid.uuid4())

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    @property
    def collector_id(self) -> str:
        return self._collector_id

    def create_resource(self) -> Resource:
        """Build the resource attached to every exported signal.

        Service identity, environment and custom attributes always; the
        collector identity only when resource enrichment is enabled.
        `Resource.create` merges in the SDK's telemetry.sdk.* attributes.
        """
        config = self._config
        attributes: dict[str, Any] = {
            SERVICE_NAME: config.service_name,
            SERVICE_VERSION: config.service_version,
            Attributes.SERVICE_NAMESPACE: config.service_namespace,
            DEPLOYMENT_ENVIRONMENT: config.environment,
            Attributes.PROCESS_RUNTIME_NAME: platform.python_implementation(),
            Attributes.PROCESS_RUNTIME_VERSION: platform.python_version(),
            Attributes.PROCESS_RUNTIME_DESCRIPTION: sys.version,
        }
        attributes.update(config.custom_attributes)

        identity = config.collector_identity
        if identity.enrich_resources:
            attributes[Attributes.COLLECTOR_ID] = self._collector_id
            if identity.name:
                attributes[Attributes.COLLECTOR_NAME] = identity.name
            if identity.description:
                attributes[Attributes.COLLECTOR_DESCRIPTION] = identity.description
            attributes[Attributes.HOST_NAME] = identity.hostname or socket.gethostname()
            for key, value in identity.tags.items():
                attributes[f"{Attributes.COLLECTOR_TAG_PREFIX}{key}"] = value
            attributes[Attributes.DATACENTER] = config.datacenter

        return Resource.create(attributes)

    def create_trace_exporter(self) -> Any:
        return self._create(SignalType.TRACES, self._transport.create_trace_exporter)

    def create_metric_exporter(self) -> Any:
        return self._create(SignalType.METRICS, self._transport.create_metric_exporter)

    def create_log_exporter(self) -> Any:
        return self._create(SignalType.LOGS, self._transport.create_log_exporter)

    def exporter_settings(self, signal: SignalType) -> ExporterSettings:
        """Resolve the settings for one signal.

        Raises:
            ExportSetupError: If the signal is disabled, the protocol is not
                grpc/http, or the endpoint path breaks v2-only mode
        """
        config = self._config
        signal = SignalType(signal)
        if not config.is_signal_enabled(signal):
            raise ExportSetupError(f"{signal.value} signal is not enabled")

        try:
            protocol = Protocol(config.protocol)
        except ValueError:
            raise ExportSetupError(f"unsupported protocol: {config.protocol}") from None

        return ExporterSettings(
            signal=signal,
            protocol=protocol,
            endpoint=config.endpoint,
            path=self._resolve_path(signal),
            timeout=config.timeout,
            headers=self.auth_headers(),
            insecure=config.insecure,
            compression=config.compression_enabled,
            retry=self._retry_settings(),
            grpc_keepalive=config.grpc_keepalive,
            grpc_max_recv_msg_size=config.grpc_max_recv_msg_size,
            grpc_max_send_msg_size=config.grpc_max_send_msg_size,
        )

    def auth_headers(self) -> dict[str, str]:
        """Headers / metadata sent with every export."""
        headers = {Headers.AUTHORIZATION: self._config.credentials.authorization_header}
        if self._config.collector_id:
            headers[Headers.COLLECTOR_ID] = self._config.collector_id
        return headers

    def _resolve_path(self, signal: SignalType) -> str:
        config = self._config
        path = config.signal_endpoint(signal)
        if not config.v2_only:
            return path

        # v2-only: never fall back to the v1 scheme
        if not config.use_v2_api:
            raise ExportSetupError("v2-only mode requires the v2 API to be enabled")
        if not path.startswith(V2_PATH_PREFIX):
            raise ExportSetupError(
                f"v2-only mode rejects {signal.value} endpoint path {path!r}"
            )
        return path

    def _retry_settings(self) -> Optional[RetrySettings]:
        policy = self._config.retry_policy
        if not policy.enabled:
            return None
        return RetrySettings(
            max_retries=policy.max_retries,
            initial_interval=policy.backoff,
            max_interval=policy.backoff * 2,
            max_elapsed=policy.max_retries * policy.backoff,
        )

    def _create(self, signal: SignalType, create: Callable[[ExporterSettings], Any]) -> Any:
        settings = self.exporter_settings(signal)
        try:
            exporter = create(settings)
        except TelemetryFlowError:
            raise
        except Exception as e:
            logger.error(
                "Exporter creation failed",
                extra={
                    "extra_fields": {
                        "signal": signal.value,
                        "protocol": settings.protocol.value,
                        "error": str(e),
                    }
                },
            )
            raise TransportError(f"failed to create {signal.value} exporter: {e}") from e

        logger.info(
            "Exporter created",
            extra={
                "extra_fields": {
                    "signal": signal.value,
                    "protocol": settings.protocol.value,
                    "endpoint": settings.endpoint,
                    "path": settings.path,
                    "insecure": settings.insecure,
                    "compression": settings.compression,
                    "retry": settings.retry is not None,
                }
            },
        )
        return exporter
