"""Library instrumentation bound to a TelemetryFlow client.

Wires the OpenTelemetry contrib instrumentors (FastAPI, httpx, gRPC and
DB-API) to the client's private providers instead of the OpenTelemetry
globals, so the resulting spans are exported with the client's resource and
credentials. Requires the `instrumentation` extra.

Usage:
    >>> client.initialize()
    >>> instrument_fastapi(app, client, excluded_urls="/healthz")
    >>> instrument_httpx_client(http, client)
    >>> server = grpc.server(executor, interceptors=[grpc_server_interceptor(client)])
    >>> connection = instrument_db_connection(sqlite3.connect(path), client, "sqlite")
"""

from typing import Any, Optional

import grpc
from opentelemetry.instrumentation.dbapi import instrument_connection
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.grpc import client_interceptor, server_interceptor
from opentelemetry.instrumentation.grpc.grpcext import intercept_channel
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.metrics import NoOpMeterProvider

from telemetryflow.client import TelemetryFlowClient
from telemetryflow.errors import NotInitializedError, SignalDisabledError
from telemetryflow.observability.logging import get_logger

logger = get_logger(__name__)


def _providers(client: TelemetryFlowClient) -> tuple[Any, Any]:
    """Tracer and meter provider of an initialized client.

    Raises:
        NotInitializedError: If the client is not initialized
        SignalDisabledError: If traces are disabled
    """
    if not client.is_initialized():
        raise NotInitializedError("client not initialized")

    tracer_provider = getattr(client.handler, "tracer_provider", None)
    if tracer_provider is None:
        raise SignalDisabledError("instrumentation requires the traces signal")
    meter_provider = getattr(client.handler, "meter_provider", None) or NoOpMeterProvider()
    return tracer_provider, meter_provider


def instrument_fastapi(
    app: Any,
    client: TelemetryFlowClient,
    excluded_urls: Optional[str] = None,
) -> None:
    """Trace every request handled by a FastAPI app.

    Args:
        app: The FastAPI application
        client: Initialized client whose providers receive the spans
        excluded_urls: Comma separated URL patterns left untraced
    """
    tracer_provider, meter_provider = _providers(client)
    FastAPIInstrumentor.instrument_app(
        app,
        tracer_provider=tracer_provider,
        meter_provider=meter_provider,
        excluded_urls=excluded_urls,
    )
    logger.info(
        "FastAPI instrumented",
        extra={"extra_fields": {"service": client.config.service_name}},
    )


def instrument_httpx_client(http_client: Any, client: TelemetryFlowClient) -> None:
    """Trace every request sent through one httpx client."""
    tracer_provider, _ = _providers(client)
    HTTPXClientInstrumentor.instrument_client(http_client, tracer_provider=tracer_provider)


def grpc_server_interceptor(client: TelemetryFlowClient) -> grpc.ServerInterceptor:
    """Server interceptor that traces every incoming gRPC call."""
    tracer_provider, _ = _providers(client)
    return server_interceptor(tracer_provider=tracer_provider)


def instrument_grpc_channel(channel: grpc.Channel, client: TelemetryFlowClient) -> grpc.Channel:
    """Return a channel that traces every outgoing gRPC call."""
    tracer_provider, _ = _providers(client)
    return intercept_channel(channel, client_interceptor(tracer_provider=tracer_provider))


def instrument_db_connection(
    connection: Any,
    client: TelemetryFlowClient,
    database_system: str,
    name: str = "telemetryflow",
) -> Any:
    """Wrap a DB-API connection so every executed statement is traced.

    Args:
        connection: Open DB-API 2.0 connection
        client: Initialized client whose providers receive the spans
        database_system: Value of the db.system attribute, e.g. "postgresql"
        name: Instrumenting module name

    Returns:
        A proxy for the connection; use it in place of the original
    """
    tracer_provider, _ = _providers(client)
    return instrument_connection(
        name,
        connection,
        database_system,
        tracer_provider=tracer_provider,
    )
