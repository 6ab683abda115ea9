"""Environment configuration using Pydantic Settings."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ENDPOINT = "api.telemetryflow.id:4317"


class TelemetryFlowSettings(BaseSettings):
    """SDK settings read from TELEMETRYFLOW_* environment variables.

    Empty variables count as unset. The API key pair has no default: the
    builder records an error for each missing value instead.
    """

    # Credentials
    api_key_id: str = ""
    api_key_secret: str = ""

    # Collector connection
    endpoint: str = DEFAULT_ENDPOINT

    # Service identity
    service_name: str = "unknown-service"
    service_version: str = "1.0.0"
    service_namespace: str = "telemetryflow"

    # Collector identity
    collector_id: str = ""
    collector_name: str = ""
    datacenter: str = "default"

    # Deployment environment comes from ENV or ENVIRONMENT (no prefix)
    environment: str = Field(
        "production",
        validation_alias=AliasChoices("ENV", "ENVIRONMENT"),
    )

    model_config = SettingsConfigDict(
        env_prefix="TELEMETRYFLOW_",
        case_sensitive=False,
        env_ignore_empty=True,
        extra="ignore",
    )
