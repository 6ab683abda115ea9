"""Test fixtures for TelemetryFlow SDK tests."""

import pytest
from opentelemetry.sdk.metrics.export import MetricExporter, MetricExportResult
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from telemetryflow.application.commands import ShutdownSDK
from telemetryflow.application.handler import CommandHandler
from telemetryflow.application.queries import GetSDKStatus, SDKStatus
from telemetryflow.domain.config import TelemetryConfig
from telemetryflow.domain.credentials import Credentials
from telemetryflow.infrastructure.exporters import ExporterTransport
from telemetryflow.infrastructure.handlers import TelemetryCommandHandler

# Well-formed test credentials
KEY_ID = "tfk_test_key"
KEY_SECRET = "tfs_test_secret"
ENDPOINT = "localhost:4317"
SERVICE = "checkout"

ENV_VARS = [
    "TELEMETRYFLOW_API_KEY_ID",
    "TELEMETRYFLOW_API_KEY_SECRET",
    "TELEMETRYFLOW_ENDPOINT",
    "TELEMETRYFLOW_SERVICE_NAME",
    "TELEMETRYFLOW_SERVICE_VERSION",
    "TELEMETRYFLOW_SERVICE_NAMESPACE",
    "TELEMETRYFLOW_COLLECTOR_ID",
    "TELEMETRYFLOW_COLLECTOR_NAME",
    "TELEMETRYFLOW_DATACENTER",
    "ENV",
    "ENVIRONMENT",
]


class CollectingMetricExporter(MetricExporter):
    """Push metric exporter that keeps every MetricsData it receives."""

    def __init__(self):
        super().__init__()
        self.exports = []

    def export(self, metrics_data, timeout_millis: float = 10_000, **kwargs):
        self.exports.append(metrics_data)
        return MetricExportResult.SUCCESS

    def force_flush(self, timeout_millis: float = 10_000) -> bool:
        return True

    def shutdown(self, timeout_millis: float = 30_000, **kwargs) -> None:
        pass

    def points(self, name):
        """Data points of the named metric from the most recent export."""
        for metrics_data in reversed(self.exports):
            for resource_metrics in metrics_data.resource_metrics:
                for scope_metrics in resource_metrics.scope_metrics:
                    for metric in scope_metrics.metrics:
                        if metric.name == name:
                            return list(metric.data.data_points)
        return []


class CollectingLogExporter:
    """Log exporter that keeps every exported record.

    The batch processor only calls export / force_flush / shutdown and
    ignores the export result.
    """

    def __init__(self):
        self.records = []
        self.shut_down = False

    def export(self, batch):
        self.records.extend(batch)

    def force_flush(self, timeout_millis: int = 30_000) -> bool:
        return True

    def shutdown(self):
        self.shut_down = True

    def bodies(self):
        return [getattr(item, "log_record", item).body for item in self.records]

    def log_records(self):
        return [getattr(item, "log_record", item) for item in self.records]


class RecordingTransport(ExporterTransport):
    """Transport that records the settings it was given and returns in-memory exporters."""

    def __init__(self):
        self.settings = {}
        self.span_exporter = InMemorySpanExporter()
        self.metric_exporter = CollectingMetricExporter()
        self.log_exporter = CollectingLogExporter()

    def create_trace_exporter(self, settings):
        self.settings[settings.signal] = settings
        return self.span_exporter

    def create_metric_exporter(self, settings):
        self.settings[settings.signal] = settings
        return self.metric_exporter

    def create_log_exporter(self, settings):
        self.settings[settings.signal] = settings
        return self.log_exporter


class FailingTransport(RecordingTransport):
    """Transport whose metric exporter construction blows up."""

    def create_metric_exporter(self, settings):
        raise RuntimeError("collector unreachable")


class RecordingCommandHandler(CommandHandler):
    """Command handler that records every command and timeout it receives."""

    def __init__(self, result=None, error=None):
        self.commands = []
        self.timeouts = []
        self.result = result
        self.error = error

    def handle(self, command, timeout=None):
        self.commands.append(command)
        self.timeouts.append(timeout)
        if command.kind == "get_sdk_status":
            return SDKStatus(
                initialized=False,
                service_name=SERVICE,
                protocol="grpc",
                endpoint=ENDPOINT,
                enabled_signals=[],
                active_spans=0,
            )
        if self.error is not None:
            raise self.error
        return self.result

    def kinds(self):
        return [command.kind for command in self.commands]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Tests never see TelemetryFlow variables from the developer's shell."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def credentials():
    return Credentials(KEY_ID, KEY_SECRET)


@pytest.fixture
def config(credentials):
    """Configuration pointed at a local insecure collector."""
    return TelemetryConfig(credentials, ENDPOINT, SERVICE).with_insecure(True)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def handler(config, transport):
    """Command handler wired to in-memory exporters. Shut down after the test."""
    handler = TelemetryCommandHandler(config, transport)
    yield handler
    if handler.handle(GetSDKStatus()).initialized:
        handler.handle(ShutdownSDK())


@pytest.fixture
def recording_handler():
    return RecordingCommandHandler()
