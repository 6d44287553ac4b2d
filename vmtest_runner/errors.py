"""Errors raised while running tests against virtual machines."""

from collections.abc import Sequence


class RunnerError(Exception):
    """Base class for all runner errors."""


class ConfigurationError(RunnerError):
    """Raised for malformed parameters or unsupported script types."""


class ProvisioningError(RunnerError):
    """Raised when machines cannot be provisioned. Fatal for the run."""


class ReadinessTimeoutError(RunnerError, TimeoutError):
    """Raised when machines do not become reachable before the deadline."""

    def __init__(self, timeout: float, unready: Sequence[str]) -> None:
        self.timeout = timeout
        self.unready = tuple(unready)
        super().__init__(
            f"Machines not reachable within {timeout} seconds: {', '.join(self.unready)}"
        )


class PrivilegeEscalationWarning(RunnerError):
    """Raised when the privileged account cannot be enabled on a machine."""


class RemoteCommandError(RunnerError):
    """Raised when a remote or local command exits with a non-zero code."""


class RemoteExecutionTimeout(RunnerError, TimeoutError):
    """Raised when a script exceeds its execution timeout."""


class TransferError(RunnerError):
    """Raised when a file cannot be uploaded or downloaded."""


class PlatformError(RunnerError):
    """Raised when a platform API or tool call fails."""
