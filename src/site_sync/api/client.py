"""Remote agent API client implementation."""

import asyncio
import json
from typing import Any, Dict, Optional

import aiohttp
import requests
from loguru import logger
from pydantic import BaseModel

from .. import __version__
from ..config.config import EnvironmentConfig, TransportConfig
from .exceptions import (
    AgentAPIError,
    AgentAuthenticationError,
    AgentConnectionError,
    AgentNotFoundError,
    AgentPermissionError,
    AgentRequestError,
    AgentServerError,
)

USER_AGENT = f'site-sync/{__version__}'


class APIResponse(BaseModel):
    """Standard API response wrapper."""

    status_code: int
    data: Any
    headers: Dict[str, str]
    success: bool


def _raise_for_status(
    status_code: int, error_data: Optional[dict], fallback_text: str = ''
) -> None:
    """Map an HTTP error status onto the exception taxonomy."""
    if status_code < 400:
        return

    message = None
    if isinstance(error_data, dict):
        message = error_data.get('message')
    if not message:
        message = f'HTTP {status_code}' + (f': {fallback_text}' if fallback_text else '')

    if status_code == 401:
        raise AgentAuthenticationError(
            f'Authentication failed: {message}', status_code, error_data
        )
    if status_code == 403:
        raise AgentPermissionError(
            f'Permission denied: {message}', status_code, error_data
        )
    if status_code == 404:
        raise AgentNotFoundError(
            f'Resource not found: {message}', status_code, error_data
        )
    if status_code == 400:
        raise AgentRequestError(f'Bad request: {message}', status_code, error_data)

    raise AgentServerError(
        f'API request failed: {message}', status_code=status_code, response_data=error_data
    )


class AgentClient:
    """Client for the remote agent HTTP surface of one installation."""

    def __init__(
        self,
        environment: EnvironmentConfig,
        transport_config: Optional[TransportConfig] = None,
    ):
        """Initialize agent client.

        Args:
            environment: Installation the agent runs on
            transport_config: Timeouts and TLS settings
        """
        if not environment.url:
            raise AgentConnectionError('Environment has no base URL')
        if not environment.username or not environment.app_token:
            raise AgentAuthenticationError('No application credentials provided')

        self.environment = environment
        self.transport_config = transport_config or TransportConfig()
        self.base_url = environment.agent_url
        self.auth = (environment.username, environment.app_token)

        self.session = requests.Session()
        self.session.auth = self.auth
        self.session.verify = self.transport_config.verify_ssl
        self.session.headers.update(
            {'Content-Type': 'application/json', 'User-Agent': USER_AGENT}
        )

        logger.debug(f'Initialized agent client for {self.base_url}')

    def _build_url(self, endpoint: str) -> str:
        """Build full agent URL from endpoint.

        Args:
            endpoint: Endpoint name or path

        Returns:
            Full URL
        """
        return self.base_url + '/' + endpoint.lstrip('/')

    def _handle_response(self, response: requests.Response) -> APIResponse:
        """Handle API response and convert to standard format.

        Args:
            response: Raw HTTP response

        Returns:
            Standardized API response

        Raises:
            AgentAPIError: For various API errors
        """
        headers = dict(response.headers)

        if response.status_code >= 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = None
            _raise_for_status(response.status_code, error_data, response.text)

        try:
            data = response.json() if response.content else None
        except ValueError:
            raise AgentServerError(
                'Invalid JSON response received', status_code=response.status_code
            )

        return APIResponse(
            status_code=response.status_code,
            data=data,
            headers=headers,
            success=200 <= response.status_code < 300,
        )

    def _request(self, method: str, endpoint: str, **kwargs) -> APIResponse:
        url = self._build_url(endpoint)
        kwargs.setdefault('timeout', self.transport_config.control_timeout)

        try:
            response = self.session.request(method, url, **kwargs)
        except requests.Timeout as e:
            logger.error(f'Timeout during {method} {url}: {e}')
            raise AgentServerError(f'Request timed out: {e}')
        except requests.RequestException as e:
            logger.error(f'Network error during {method} {url}: {e}')
            raise AgentConnectionError(f'Network error: {e}')

        return self._handle_response(response)

    def get(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None, **kwargs
    ) -> APIResponse:
        """Make GET request.

        Args:
            endpoint: Agent endpoint
            params: Query parameters
            **kwargs: Additional request arguments

        Returns:
            API response
        """
        return self._request('GET', endpoint, params=params, **kwargs)

    def post(
        self, endpoint: str, data: Optional[Dict[str, Any]] = None, **kwargs
    ) -> APIResponse:
        """Make POST request.

        Args:
            endpoint: Agent endpoint
            data: Request body data
            **kwargs: Additional request arguments

        Returns:
            API response
        """
        return self._request('POST', endpoint, json=data, **kwargs)

    async def _make_request_async(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> APIResponse:
        """Make asynchronous API request.

        Args:
            method: HTTP method
            endpoint: Agent endpoint
            data: Request body data
            timeout: Total timeout in seconds

        Returns:
            API response
        """
        url = self._build_url(endpoint)
        client_timeout = aiohttp.ClientTimeout(
            total=timeout or self.transport_config.control_timeout
        )

        async with aiohttp.ClientSession(
            headers={'User-Agent': USER_AGENT},
            auth=aiohttp.BasicAuth(*self.auth),
            timeout=client_timeout,
        ) as session:
            try:
                async with session.request(
                    method=method,
                    url=url,
                    json=data,
                    ssl=None if self.transport_config.verify_ssl else False,
                ) as response:
                    response_headers = dict(response.headers)
                    response_text = await response.text()

                    try:
                        response_data = (
                            json.loads(response_text) if response_text else None
                        )
                    except ValueError:
                        response_data = None
                        if response.status < 400:
                            raise AgentServerError(
                                'Invalid JSON response received',
                                status_code=response.status,
                            )

                    _raise_for_status(response.status, response_data, response_text)

                    return APIResponse(
                        status_code=response.status,
                        data=response_data,
                        headers=response_headers,
                        success=200 <= response.status < 300,
                    )

            except asyncio.TimeoutError:
                logger.error(f'Timeout during {method} {url}')
                raise AgentServerError(f'Request to {endpoint} timed out')
            except aiohttp.ClientError as e:
                logger.error(f'Network error during {method} {url}: {e}')
                raise AgentConnectionError(f'Network error: {e}')

    async def get_async(self, endpoint: str, **kwargs) -> APIResponse:
        """Make asynchronous GET request."""
        return await self._make_request_async('GET', endpoint, **kwargs)

    async def post_async(
        self, endpoint: str, data: Optional[Dict[str, Any]] = None, **kwargs
    ) -> APIResponse:
        """Make asynchronous POST request."""
        return await self._make_request_async('POST', endpoint, data=data, **kwargs)

    def test_connection(self) -> bool:
        """Test connection to the remote agent.

        Returns:
            True if the agent answered with valid credentials, False otherwise
        """
        try:
            response = self.get('status')
            return response.success
        except AgentAPIError as e:
            logger.error(f'Connection test for {self.base_url} failed: {e}')
            return False

    def get_status(self) -> Optional[Dict[str, Any]]:
        """Get the agent status document.

        Returns:
            Status document or None if unavailable
        """
        try:
            response = self.get('status')
            if response.success and isinstance(response.data, dict):
                return response.data
        except AgentAPIError as e:
            logger.warning(f'Could not retrieve agent status: {e}')

        return None

    def close(self):
        """Close the client session."""
        self.session.close()
        logger.debug('Agent client session closed')

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
