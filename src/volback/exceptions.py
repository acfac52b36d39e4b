"""Custom exception hierarchy for volback.

This module defines the errors raised while backing up container volumes,
uploading archives to remote storage and pruning old backups.

All exceptions inherit from VolbackError so callers can catch every
tool-specific failure with a single handler.
"""

from typing import Any, List, Optional


class VolbackError(Exception):
    """Base exception for all volback errors.

    Attributes:
        message: Human-readable error message
        **kwargs: Additional context stored as attributes
    """

    def __init__(self, message: str, **kwargs: Any) -> None:
        """Initialize exception with message and optional context.

        Args:
            message: Human-readable error description
            **kwargs: Additional context (e.g., container, remote_path, status)
        """
        super().__init__(message)
        self.message = message

        for key, value in kwargs.items():
            setattr(self, key, value)

    def __str__(self) -> str:
        """Return string representation of the error."""
        return self.message


class AuthenticationError(VolbackError):
    """Raised when the OAuth refresh-token grant fails.

    Fatal for any operation that needs the storage client.

    Common scenarios:
    - Revoked or mistyped refresh token
    - Wrong client id / client secret pair
    - Token endpoint unreachable
    """

    pass


class ConfigurationError(VolbackError):
    """Raised when configuration is invalid or missing.

    Common scenarios:
    - Malformed CONTAINERS JSON
    - Missing storage credentials
    - Negative retention counts
    - depends_on naming a container that is not configured
    """

    pass


class DependencyCycleError(ConfigurationError):
    """Raised when container dependencies form a cycle.

    Attributes:
        cycle: Container names along the cycle, first name repeated at the end
    """

    def __init__(self, message: str, cycle: Optional[List[str]] = None, **kwargs: Any) -> None:
        super().__init__(message, cycle=cycle or [], **kwargs)


class NetworkError(VolbackError):
    """Raised when a request never produced an HTTP response.

    Attributes:
        retryable: Whether the caller may reasonably try again
    """

    def __init__(self, message: str, retryable: bool = True, **kwargs: Any) -> None:
        super().__init__(message, retryable=retryable, **kwargs)


class StorageError(VolbackError):
    """Raised when a storage backend operation fails.

    Common scenarios:
    - Local target directory not writable
    - Upload session offset mismatch
    - Remote path not found on delete
    """

    pass


class RemoteError(StorageError):
    """Raised for any non-success HTTP response from the remote store.

    The status code and raw body are kept for diagnostics. The client
    never retries; the caller decides what to do.

    Attributes:
        status: HTTP status code
        body: Response body text
    """

    def __init__(self, message: str, status: int = 0, body: str = "", **kwargs: Any) -> None:
        super().__init__(message, status=status, body=body, **kwargs)


class UploadSessionAborted(VolbackError):
    """Raised when any step of a chunked upload session fails.

    Bytes already appended on the remote side are left orphaned; the
    whole transfer has to be restarted.

    Attributes:
        session_id: Remote session id, None if the start call itself failed
        offset: Cursor offset reached before the failure
    """

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        offset: int = 0,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, session_id=session_id, offset=offset, **kwargs)


class BackupNameError(VolbackError):
    """Raised when a filename does not carry a backup timestamp.

    Attributes:
        filename: The offending filename
    """

    def __init__(self, message: str, filename: str = "", **kwargs: Any) -> None:
        super().__init__(message, filename=filename, **kwargs)


class ArchiveError(VolbackError):
    """Raised when the archival tool fails or produces no archive."""

    pass


class ContainerError(VolbackError):
    """Raised when inspecting, stopping or starting a container fails.

    Attributes:
        container: Container name
    """

    def __init__(self, message: str, container: str = "", **kwargs: Any) -> None:
        super().__init__(message, container=container, **kwargs)
