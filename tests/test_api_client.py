"""Tests for the remote agent API client and registry client."""

import pytest
from unittest.mock import Mock, patch
import requests

from site_sync.api.client import AgentClient, APIResponse
from site_sync.api.exceptions import (
    AgentAPIError,
    AgentAuthenticationError,
    AgentConnectionError,
    AgentNotFoundError,
    AgentPermissionError,
    AgentRequestError,
    AgentServerError,
)
from site_sync.api.registry import RegistryClient
from site_sync.config.config import EnvironmentConfig
from site_sync.exceptions import ComponentError, ConnectivityError


def _response(status_code=200, data=None, text=None):
    response = Mock()
    response.status_code = status_code
    response.headers = {'Content-Type': 'application/json'}
    if data is None and text is None:
        response.content = b''
        response.text = ''
        response.json.side_effect = ValueError('No JSON')
    elif data is None:
        response.content = text.encode()
        response.text = text
        response.json.side_effect = ValueError('No JSON')
    else:
        response.content = b'{}'
        response.text = '{}'
        response.json.return_value = data
    return response


class TestAPIResponse:
    """Test API response model."""

    def test_api_response_creation(self):
        """Test API response creation."""
        response = APIResponse(
            status_code=200,
            data={'version': '0.1.0'},
            headers={'Content-Type': 'application/json'},
            success=True,
        )

        assert response.status_code == 200
        assert response.data == {'version': '0.1.0'}
        assert response.success is True


class TestAgentClient:
    """Test the agent client."""

    def setup_method(self):
        """Set up test fixtures."""
        self.environment = EnvironmentConfig(
            url='site.test/', username='admin', app_token='secret'
        )

    def test_client_initialization(self):
        """Test client initialization."""
        client = AgentClient(self.environment)

        assert client.base_url == 'https://site.test/wp-json/wp-sync-manager/v1'
        assert client.session.auth == ('admin', 'secret')
        assert client.session.headers['User-Agent'].startswith('site-sync/')

    def test_client_initialization_no_url(self):
        """Test a client needs a base URL."""
        with pytest.raises(AgentConnectionError):
            AgentClient(EnvironmentConfig(username='admin', app_token='secret'))

    def test_client_initialization_no_auth(self):
        """Test a client needs credentials."""
        with pytest.raises(AgentAuthenticationError):
            AgentClient(EnvironmentConfig(url='https://site.test'))

    def test_build_url(self):
        """Test URL building."""
        client = AgentClient(self.environment)

        assert client._build_url('status') == (
            'https://site.test/wp-json/wp-sync-manager/v1/status'
        )
        assert client._build_url('/status') == (
            'https://site.test/wp-json/wp-sync-manager/v1/status'
        )

    @patch('requests.Session.request')
    def test_successful_request(self, mock_request):
        """Test successful API request."""
        mock_request.return_value = _response(200, {'version': '0.1.0'})
        client = AgentClient(self.environment)

        response = client.get('status')

        assert response.success is True
        assert response.data == {'version': '0.1.0'}
        method, url = mock_request.call_args.args
        assert method == 'GET'
        assert url.endswith('/status')
        assert mock_request.call_args.kwargs['timeout'] == 30

    @patch('requests.Session.request')
    def test_post_sends_json(self, mock_request):
        """Test POST bodies are sent as JSON."""
        mock_request.return_value = _response(200, {'success': True})
        client = AgentClient(self.environment)

        client.post('execute', {'action': 'ping'})

        assert mock_request.call_args.kwargs['json'] == {'action': 'ping'}

    @pytest.mark.parametrize(
        'status_code,expected',
        [
            (401, AgentAuthenticationError),
            (403, AgentPermissionError),
            (404, AgentNotFoundError),
            (400, AgentRequestError),
            (500, AgentServerError),
        ],
    )
    @patch('requests.Session.request')
    def test_error_statuses(self, mock_request, status_code, expected):
        """Test HTTP errors map onto the exception taxonomy."""
        mock_request.return_value = _response(status_code, {'message': 'nope'})
        client = AgentClient(self.environment)

        with pytest.raises(expected) as exc_info:
            client.get('status')

        assert exc_info.value.status_code == status_code
        assert 'nope' in str(exc_info.value)

    @patch('requests.Session.request')
    def test_error_without_json_body(self, mock_request):
        """Test an error page without JSON still maps by status."""
        mock_request.return_value = _response(502, text='Bad Gateway')
        client = AgentClient(self.environment)

        with pytest.raises(AgentServerError) as exc_info:
            client.get('status')

        assert 'Bad Gateway' in str(exc_info.value)

    @patch('requests.Session.request')
    def test_invalid_json_response(self, mock_request):
        """Test a success status with a non-JSON body."""
        mock_request.return_value = _response(200, text='<html>')
        client = AgentClient(self.environment)

        with pytest.raises(AgentServerError):
            client.get('status')

    @patch('requests.Session.request')
    def test_timeout(self, mock_request):
        """Test timeouts surface as server errors."""
        mock_request.side_effect = requests.Timeout('slow')
        client = AgentClient(self.environment)

        with pytest.raises(AgentServerError):
            client.get('status')

    @patch('requests.Session.request')
    def test_network_error(self, mock_request):
        """Test network failures surface as connectivity errors."""
        mock_request.side_effect = requests.ConnectionError('refused')
        client = AgentClient(self.environment)

        with pytest.raises(AgentConnectionError) as exc_info:
            client.get('status')

        assert isinstance(exc_info.value, ConnectivityError)

    def test_exception_hierarchy(self):
        """Test boundary errors also belong to the engine taxonomy."""
        assert issubclass(AgentConnectionError, AgentAPIError)
        assert issubclass(AgentConnectionError, ConnectivityError)
        assert issubclass(AgentNotFoundError, ComponentError)

    @patch('requests.Session.request')
    def test_test_connection(self, mock_request):
        """Test connection probing."""
        client = AgentClient(self.environment)

        mock_request.return_value = _response(200, {'version': '0.1.0'})
        assert client.test_connection() is True

        mock_request.return_value = _response(401, {'message': 'bad token'})
        assert client.test_connection() is False

    @patch('requests.Session.request')
    def test_get_status(self, mock_request):
        """Test the status document helper."""
        client = AgentClient(self.environment)

        mock_request.return_value = _response(200, {'version': '0.1.0'})
        assert client.get_status() == {'version': '0.1.0'}

        mock_request.return_value = _response(500, {'message': 'boom'})
        assert client.get_status() is None

    def test_context_manager(self):
        """Test the session is closed on exit."""
        with patch('requests.Session.close') as mock_close:
            with AgentClient(self.environment) as client:
                assert isinstance(client, AgentClient)

        mock_close.assert_called_once()


class TestRegistryClient:
    """Test registry lookups."""

    def setup_method(self):
        """Set up test fixtures."""
        self.registry = RegistryClient('https://registry.test/')

    @patch('site_sync.api.registry.requests.get')
    def test_get_info(self, mock_get):
        """Test an extension lookup."""
        mock_get.return_value = _response(
            200, {'slug': 'seo', 'download_link': 'https://registry.test/seo.zip'}
        )

        info = self.registry.get_info('extension', 'seo')

        assert info['slug'] == 'seo'
        url = mock_get.call_args.args[0]
        assert url == 'https://registry.test/plugins/info/1.2/'
        assert mock_get.call_args.kwargs['params'] == {
            'action': 'plugin_information',
            'request[slug]': 'seo',
        }

    @patch('site_sync.api.registry.requests.get')
    def test_theme_lookup_url(self, mock_get):
        """Test themes use their own section."""
        mock_get.return_value = _response(200, {'slug': 'dark'})

        self.registry.get_info('theme', 'dark')

        assert mock_get.call_args.args[0] == 'https://registry.test/themes/info/1.2/'

    @patch('site_sync.api.registry.requests.get')
    def test_unknown_slug(self, mock_get):
        """Test an error document means not in the registry."""
        mock_get.return_value = _response(200, {'error': 'Plugin not found.'})

        assert self.registry.get_info('extension', 'custom-forms') is None
        assert self.registry.is_available('extension', 'custom-forms') is False
        assert self.registry.download_link('extension', 'custom-forms') is None

    @patch('site_sync.api.registry.requests.get')
    def test_is_available(self, mock_get):
        """Test availability requires a download link."""
        mock_get.return_value = _response(
            200, {'slug': 'seo', 'download_link': 'https://registry.test/seo.zip'}
        )

        assert self.registry.is_available('extension', 'seo') is True
        assert self.registry.download_link('extension', 'seo') == (
            'https://registry.test/seo.zip'
        )

    @patch('site_sync.api.registry.requests.get')
    def test_unreachable(self, mock_get):
        """Test an unreachable registry."""
        mock_get.side_effect = requests.ConnectionError('down')

        with pytest.raises(ConnectivityError):
            self.registry.get_info('extension', 'seo')
        assert self.registry.is_available('extension', 'seo') is False

    def test_unsupported_kind(self):
        """Test only extensions and themes are looked up."""
        with pytest.raises(ValueError):
            self.registry.get_info('table', 'wp_posts')
