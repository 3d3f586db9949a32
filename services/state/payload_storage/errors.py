"""Error kinds raised by the payload storage service."""

from __future__ import annotations


class StorageError(Exception):
    """Base exception for every payload storage failure."""


class ConfigurationError(StorageError):
    """Required settings are missing or invalid."""


class BackendConnectionError(StorageError):
    """Repository server could not be reached or addressed."""


class VersionMismatchError(BackendConnectionError):
    """Repository server reported an unsupported major version."""


class AccessError(BackendConnectionError):
    """Repository server refused the read-access probe."""


class NotFoundError(StorageError):
    """Requested object or payload does not exist."""


class AlreadyExistsError(StorageError):
    """Object being created already exists in the repository."""


class DuplicateError(AlreadyExistsError):
    """Payload being created is already present in the object manifest."""


class IdentifierMismatchError(StorageError):
    """Repository assigned a different identifier than the one requested."""

    def __init__(self, *, requested: str, assigned: str) -> None:
        super().__init__(
            f"repository assigned '{assigned}' but '{requested}' was requested"
        )
        self.requested = requested
        self.assigned = assigned


class BackendError(StorageError):
    """Repository or transport failure during a backend operation."""


class ExclusiveHandleInterruptedError(StorageError):
    """Wait for the exclusive repository handle was cancelled."""


class InvalidArgumentError(StorageError, ValueError):
    """Caller passed a missing or empty identifier or stream."""
