"""Remote agent and registry clients."""

from .client import AgentClient, APIResponse
from .exceptions import (
    AgentAPIError,
    AgentAuthenticationError,
    AgentConnectionError,
    AgentNotFoundError,
    AgentPermissionError,
    AgentRequestError,
    AgentServerError,
)
from .registry import RegistryClient

__all__ = [
    'AgentClient',
    'APIResponse',
    'AgentAPIError',
    'AgentAuthenticationError',
    'AgentConnectionError',
    'AgentNotFoundError',
    'AgentPermissionError',
    'AgentRequestError',
    'AgentServerError',
    'RegistryClient',
]
