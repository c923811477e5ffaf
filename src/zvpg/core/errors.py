"""Exception hierarchy for zvpg operations."""

from typing import Any, List, Optional


class ZvpgError(Exception):
    """Base class for all zvpg errors."""

    pass


class NotFoundError(ZvpgError):
    """Raised when a snapshot, branch or dataset does not exist."""

    pass


class AlreadyExistsError(ZvpgError):
    """Raised when the target of a create operation already exists."""

    pass


class HasDependentsError(ZvpgError):
    """Raised when a node cannot be deleted because other nodes depend on it."""

    def __init__(self, message: str, dependents: List[str]):
        super().__init__(message)
        self.dependents = list(dependents)


class SourceMissingError(ZvpgError):
    """Raised when the source of a snapshot or clone does not exist."""

    pass


class NoSnapshotsError(ZvpgError):
    """Raised when a branch is created from "latest" and no snapshot exists."""

    pass


class PortError(ZvpgError):
    """Base class for port allocation failures."""

    pass


class PortUnavailableError(PortError):
    """Raised when a requested port is already in use."""

    def __init__(self, port: int, message: Optional[str] = None):
        super().__init__(message or f"Port {port} is already in use")
        self.port = port


PortInUseError = PortUnavailableError


class PortOutOfRangeError(PortError):
    """Raised when a requested port lies outside the configured range."""

    def __init__(self, port: int, start: int, end: int):
        super().__init__(f"Port {port} is outside the allowed range {start}-{end}")
        self.port = port
        self.start = start
        self.end = end


class NoPortsAvailableError(PortError):
    """Raised when every port in the range is in use."""

    def __init__(self, start: int, end: int):
        super().__init__(f"No available ports in range {start}-{end}")
        self.start = start
        self.end = end


class AlreadyRunningError(ZvpgError):
    """Raised when starting an instance for a branch that already has a live one."""

    pass


class InstanceStatusUnknownError(ZvpgError):
    """Raised when the runtime cannot tell whether a recorded instance is alive."""

    pass


class StartupTimeoutError(ZvpgError):
    """Raised when an instance does not become ready within the retry ceiling."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class BackendError(ZvpgError):
    """Wraps a failure reported by an external tool, keeping its output verbatim."""

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        stderr: Optional[str] = None,
    ):
        super().__init__(message)
        self.command = list(command) if command else []
        self.stderr = stderr or ""


class BackendUnavailableError(BackendError):
    """Raised when the backend tool cannot be reached at all."""

    pass


class PortBindError(BackendError):
    """Raised by a runtime when the port was taken between probe and bind."""

    def __init__(self, port: int, message: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.port = port


class DeleteFailedError(BackendError):
    """Raised when the backend refuses to destroy a branch."""

    pass


class PartialFailureError(ZvpgError):
    """The primary effect of an operation succeeded but a secondary step failed.

    ``result`` carries whatever the primary step produced (for example the
    created branch) so callers can report the state that was reached.
    """

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.result = result
