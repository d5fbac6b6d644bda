"""Error taxonomy for environment synchronization."""

from typing import Optional


class SyncError(Exception):
    """Base exception for all synchronization errors."""

    pass


class InvalidRequest(SyncError):
    """A sync request was rejected before any operation was created."""

    pass


class ConnectivityError(SyncError):
    """Source or target installation cannot be reached at all.

    Fatal: aborts the whole sync operation.
    """

    pass


class AuthenticationError(SyncError):
    """A credential was rejected by the remote agent or shell."""

    pass


class ComponentError(SyncError):
    """One artifact, table or media bundle failed mid-migration."""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        item: Optional[str] = None,
    ):
        """Initialize component error.

        Args:
            message: Error message
            component: Component kind (extension, theme, table, media)
            item: Name of the failing item
        """
        super().__init__(message)
        self.component = component
        self.item = item


class ArtifactNotFoundError(ComponentError):
    """Requested artifact does not exist on the installation."""

    pass


class ConflictUnresolved(SyncError):
    """Operation is held until every conflict has a resolution."""

    def __init__(self, message: str, pending: int = 0):
        super().__init__(message)
        self.pending = pending


class OperationNotFound(SyncError):
    """No sync operation exists with the given identifier."""

    pass


class InvalidTransition(SyncError):
    """A sync operation was asked to make an illegal status change."""

    pass
