"""
ConfSync Exceptions.

Failure taxonomy shared by the watcher, the store adapters and the
sync orchestrator.
Requires Python 3.11+.
"""


class ConfSyncError(Exception):
    """Base class for all ConfSync errors."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class StoreUnavailable(ConfSyncError):
    """The shared config store could not be reached."""


class LocalIOFailure(ConfSyncError):
    """The local configuration file could not be read, parsed or written."""

    def __init__(self, message: str, path: object = None, *, cause: Exception | None = None) -> None:
        super().__init__(message, cause=cause)
        self.path = path


class WatchSetupFailure(ConfSyncError):
    """The OS watch for a configuration directory could not be established."""

    def __init__(self, message: str, path: object = None, *, cause: Exception | None = None) -> None:
        super().__init__(message, cause=cause)
        self.path = path
