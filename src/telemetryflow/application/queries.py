"""Query values and their results."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from telemetryflow.semantic.contract import SignalType


class GetSDKStatus(BaseModel):
    """Ask the handler for a snapshot of its runtime state."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["get_sdk_status"] = "get_sdk_status"


class SDKStatus(BaseModel):
    """Runtime state of the command handler."""

    model_config = ConfigDict(frozen=True)

    initialized: bool = Field(..., description="Whether providers are running")
    service_name: str = Field(..., description="Service reported in the resource")
    protocol: str = Field(..., description="Configured OTLP protocol")
    endpoint: str = Field(..., description="Collector endpoint")
    enabled_signals: list[SignalType] = Field(..., description="Signals with a provider")
    active_spans: int = Field(..., description="Spans started and not yet ended")
