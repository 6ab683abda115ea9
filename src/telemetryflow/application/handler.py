"""Command handler interface.

The client builds command values and hands them to a CommandHandler. The
default implementation lives in telemetryflow.infrastructure.handlers; tests
and alternative backends can supply their own.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Union

from telemetryflow.application.commands import Command
from telemetryflow.application.queries import GetSDKStatus


class CommandHandler(ABC):
    """Interprets commands and queries.

    Handlers should:
    - Execute each command synchronously
    - Raise TelemetryFlowError subclasses on failure
    - Honor the timeout for lifecycle commands

    Handlers should NOT:
    - Track the client's lifecycle state
    - Retry failed operations on their own
    """

    @abstractmethod
    def handle(
        self,
        command: Union[Command, GetSDKStatus],
        timeout: Optional[float] = None,
    ) -> Any:
        """Execute a command or answer a query.

        Args:
            command: Any command variant, or a GetSDKStatus query
            timeout: Caller deadline in seconds for lifecycle commands

        Returns:
            The span id for StartSpan, an SDKStatus for GetSDKStatus,
            otherwise None
        """
        pass
