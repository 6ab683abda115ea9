"""Domain types: credentials and the telemetry configuration aggregate."""

from telemetryflow.domain.config import (
    BatchSettings,
    CollectorIdentity,
    GRPCKeepalive,
    RetryPolicy,
    TelemetryConfig,
)
from telemetryflow.domain.credentials import Credentials

__all__ = [
    "BatchSettings",
    "CollectorIdentity",
    "Credentials",
    "GRPCKeepalive",
    "RetryPolicy",
    "TelemetryConfig",
]
