"""Remote agent protocol: endpoints and control actions for one installation."""

import inspect
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from loguru import logger

from .. import __version__
from ..exceptions import ArtifactNotFoundError, InvalidRequest
from ..models.payload import TransferPayload
from .installation import ARTIFACT_KINDS, Installation


def error_status(error: Exception) -> int:
    """HTTP status code reported for an exception raised by the agent."""
    if isinstance(error, ArtifactNotFoundError):
        return 404
    if isinstance(error, (InvalidRequest, ValueError, KeyError)):
        return 400
    return 500


class RemoteAgent:
    """Serves the operations a transport asks of this installation.

    ``handle`` is the whole protocol: the HTTP server and the shell
    ``call`` command both dispatch into it.
    """

    def __init__(self, installation: Installation, registry_url: Optional[str] = None):
        self.installation = installation
        self.registry_url = registry_url or installation.config.registry_url
        self.last_sync: Optional[datetime] = None
        self.logger = logger.bind(component='RemoteAgent')

        self._endpoints: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            'status': self._status,
            'execute': self._execute,
            'send-extension': lambda body: self._send_artifact('extension', body),
            'receive-extension': lambda body: self._receive_artifact('extension', body),
            'send-theme': lambda body: self._send_artifact('theme', body),
            'receive-theme': lambda body: self._receive_artifact('theme', body),
            'send-table': self._send_table,
            'receive-table': self._receive_table,
            'apply-rows': self._apply_rows,
            'send-media': self._send_media,
            'receive-media': self._receive_media,
            'send-tree': self._send_tree,
            'receive-tree': self._receive_tree,
        }
        self._actions: Dict[str, Callable[..., Dict[str, Any]]] = {
            'status': lambda: self._status({}),
            'locate': self._locate,
            'artifact_state': self._artifact_state,
            'activate': self._activate,
            'install_from_registry': self._install_from_registry,
            'get_settings': self._get_settings,
            'put_settings': self._put_settings,
            'table_exists': self._table_exists,
        }

    @property
    def endpoints(self):
        return sorted(self._endpoints)

    def handle(self, endpoint: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Dispatch one request.

        Raises:
            InvalidRequest: Unknown endpoint or malformed body
            ArtifactNotFoundError: Requested resource does not exist
            ComponentError: The installation failed to carry out the request
        """
        handler = self._endpoints.get(endpoint)
        if handler is None:
            raise InvalidRequest(f'Unknown endpoint: {endpoint}')
        if body is not None and not isinstance(body, dict):
            raise InvalidRequest('Request body must be a JSON object')

        self.logger.debug(f'Handling {endpoint}')
        return handler(body or {})

    def execute(self, action: str, args: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run one control action."""
        func = self._actions.get(action)
        if func is None:
            raise InvalidRequest(f'Unknown action: {action}')
        args = args or {}
        try:
            inspect.signature(func).bind(**args)
        except TypeError as e:
            raise InvalidRequest(f'Invalid arguments for {action}: {e}')
        return func(**args)

    def _touch(self) -> None:
        self.last_sync = datetime.now()

    @staticmethod
    def _payload(body: Dict[str, Any]) -> TransferPayload:
        try:
            return TransferPayload.from_wire(body)
        except ValueError as e:
            raise InvalidRequest(str(e))

    @staticmethod
    def _require(body: Dict[str, Any], key: str) -> Any:
        value = body.get(key)
        if not value:
            raise InvalidRequest(f'Missing required field: {key}')
        return value

    # Endpoints

    def _status(self, body):
        return {
            'state': 'idle',
            'version': __version__,
            'last_sync': self.last_sync.isoformat() if self.last_sync else None,
            'root': str(self.installation.root),
        }

    def _execute(self, body):
        return self.execute(self._require(body, 'action'), body.get('args') or {})

    def _send_artifact(self, kind, body):
        payload = self.installation.export_artifact(kind, self._require(body, 'name'))
        return payload.to_wire()

    def _receive_artifact(self, kind, body):
        payload = self._payload(body)
        if payload.kind != kind:
            raise InvalidRequest(f'Expected a {kind} payload, got {payload.kind}')
        files = self.installation.import_artifact(payload)
        self._touch()
        return {'success': True, 'files': len(files)}

    def _send_table(self, body):
        name = self._require(body, 'name')
        mode = body.get('mode', 'export')
        if mode == 'snapshot':
            snapshot = self.installation.snapshot_table(name)
            return TransferPayload(kind='table', name=name, metadata=snapshot).to_wire()
        if mode != 'export':
            raise InvalidRequest(f'Unknown table mode: {mode}')
        return self.installation.export_table(name).to_wire()

    def _receive_table(self, body):
        payload = self._payload(body)
        count = self.installation.import_statements(payload.name, payload.statements)
        self._touch()
        return {'success': True, 'statements': count}

    def _apply_rows(self, body):
        payload = self._payload(body)
        metadata = payload.metadata
        counts = self.installation.apply_rows(
            payload.name,
            metadata.get('primary_key') or [],
            upsert=metadata.get('upsert'),
            delete=metadata.get('delete'),
        )
        self._touch()
        return {'success': True, **counts}

    def _send_media(self, body):
        return self.installation.export_media().to_wire()

    def _receive_media(self, body):
        counts = self.installation.import_media(self._payload(body))
        self._touch()
        return {'success': True, **counts}

    def _send_tree(self, body):
        return self.installation.export_tree(self._require(body, 'path')).to_wire()

    def _receive_tree(self, body):
        files = self.installation.import_tree(self._payload(body))
        self._touch()
        return {'success': True, 'files': len(files)}

    # Actions

    @staticmethod
    def _check_kind(kind):
        if kind not in ARTIFACT_KINDS and kind != 'media':
            raise InvalidRequest(f'Unsupported kind: {kind}')

    def _locate(self, kind, name=''):
        self._check_kind(kind)
        if kind == 'media':
            path = self.installation.media_root
        else:
            path = self.installation.artifact_dir(kind, name)
        return {'path': str(path.resolve()), 'exists': path.is_dir()}

    def _artifact_state(self, kind, name):
        return self.installation.artifact_state(kind, name)

    def _activate(self, kind, name):
        self.installation.activate(kind, name)
        return {'success': True}

    def _install_from_registry(self, kind, name):
        files = self.installation.install_from_registry(kind, name, self.registry_url)
        self._touch()
        return {'success': True, 'files': len(files)}

    def _get_settings(self, prefix):
        return {'settings': self.installation.get_settings(prefix)}

    def _put_settings(self, settings):
        if not isinstance(settings, dict):
            raise InvalidRequest('settings must be an object')
        return {'success': True, 'written': self.installation.put_settings(settings)}

    def _table_exists(self, name):
        return {'exists': self.installation.table_exists(name)}
