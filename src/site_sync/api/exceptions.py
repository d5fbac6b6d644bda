"""Remote agent API exceptions."""

from typing import Optional

from ..exceptions import (
    AuthenticationError,
    ComponentError,
    ConnectivityError,
    SyncError,
)


class AgentAPIError(SyncError):
    """Base exception for remote agent API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        """Initialize agent API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response_data: Response data from the agent
        """
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class AgentAuthenticationError(AgentAPIError, AuthenticationError):
    """Credential rejected by the remote agent."""

    pass


class AgentPermissionError(AgentAuthenticationError):
    """Credential accepted but not allowed to run sync operations."""

    pass


class AgentConnectionError(AgentAPIError, ConnectivityError):
    """Remote agent could not be reached."""

    pass


class AgentNotFoundError(AgentAPIError, ComponentError):
    """Requested resource does not exist on the remote installation."""

    pass


class AgentRequestError(AgentAPIError, ComponentError):
    """Request was rejected as malformed."""

    pass


class AgentServerError(AgentAPIError, ComponentError):
    """Remote agent failed while handling the request."""

    pass
