"""Exception taxonomy for the TelemetryFlow SDK.

Every error raised by the SDK derives from TelemetryFlowError so callers can
catch the whole family with a single except clause. A few also subclass the
closest builtin (ValueError, LookupError, TimeoutError) so generic handlers
keep working.
"""

import copy
from typing import Optional


class TelemetryFlowError(Exception):
    """Base class for all SDK errors."""

    def with_context(self, context: str) -> "TelemetryFlowError":
        """Return a copy of this error whose message is prefixed with context.

        The copy keeps the concrete type and any extra state, so
        `except NotInitializedError` still matches after wrapping.

        Example:
            >>> err = ExportSetupError("unsupported protocol: udp")
            >>> str(err.with_context("failed to initialize SDK"))
            'failed to initialize SDK: unsupported protocol: udp'
        """
        wrapped = copy.copy(self)
        wrapped.args = (f"{context}: {self}",)
        return wrapped


class ConfigurationError(TelemetryFlowError):
    """A required setting is missing or invalid.

    Attributes:
        errors: Every individual problem found. The builder reports all
            missing prerequisites at once, so this can hold more than one.
    """

    def __init__(self, message: str, errors: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.errors = list(errors) if errors else [message]


class CredentialFormatError(TelemetryFlowError, ValueError):
    """API key id or secret is empty or lacks its required prefix."""


class NotInitializedError(TelemetryFlowError):
    """Operation requires an initialized client."""


class AlreadyInitializedError(TelemetryFlowError):
    """Initialize was called on a client that is already initialized."""


class ExportSetupError(TelemetryFlowError):
    """Exporter could not be set up (unsupported protocol, disabled signal, bad endpoint scheme)."""


class SignalDisabledError(TelemetryFlowError):
    """Telemetry was emitted for a signal that is not enabled."""


class SpanNotFoundError(TelemetryFlowError, LookupError):
    """No active span is registered under the given id."""


class TransportError(TelemetryFlowError):
    """Exporter construction, flush or shutdown failed in the transport layer."""


class TelemetryTimeoutError(TelemetryFlowError, TimeoutError):
    """An operation did not finish within its deadline."""


class InvalidCommandError(TelemetryFlowError, ValueError):
    """Arguments to an emission method do not form a valid command."""
