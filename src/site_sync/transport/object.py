"""Object transport: one authenticated HTTP request per operation."""

from functools import partial
from pathlib import Path
from typing import Any, Dict, Optional

from ..api.client import AgentClient
from ..api.exceptions import AgentServerError
from ..config.config import EnvironmentConfig, TransportConfig
from ..exceptions import ComponentError
from ..models.payload import TransferPayload
from ..utils.archive import format_bytes, pack_directory, unpack_archive
from .base import RemoteCommand, TransferReport, TransportStrategy, TreeDirection


class ObjectTransport(TransportStrategy):
    """Ships archives and statement streams to the remote agent over HTTP."""

    name = 'object'

    def __init__(
        self,
        environment: EnvironmentConfig,
        transport_config: Optional[TransportConfig] = None,
        client: Optional[AgentClient] = None,
    ):
        super().__init__(environment, transport_config)
        self.client = client or AgentClient(environment, self.transport_config)

    async def check(self) -> Dict[str, Any]:
        response = await self.client.get_async('status')
        return response.data or {}

    async def execute(self, command: RemoteCommand) -> Dict[str, Any]:
        response = await self.client.post_async(
            'execute', {'action': command.action, 'args': command.args}
        )
        return response.data or {}

    async def send_object(self, payload: TransferPayload, endpoint: str) -> Dict[str, Any]:
        self.logger.debug(
            f'Sending {payload.kind} {payload.name} to {endpoint} '
            f'({format_bytes(payload.size)})'
        )
        body = await self._run_blocking(payload.to_wire)
        response = await self.client.post_async(
            endpoint, body, timeout=self.transport_config.bulk_timeout
        )
        return response.data or {}

    async def fetch_object(
        self, endpoint: str, request: Optional[Dict[str, Any]] = None
    ) -> TransferPayload:
        response = await self.client.post_async(
            endpoint, request or {}, timeout=self.transport_config.bulk_timeout
        )
        try:
            return await self._run_blocking(TransferPayload.from_wire, response.data)
        except ValueError as e:
            raise AgentServerError(f'Invalid payload from {endpoint}: {e}')

    async def sync_tree(
        self, local_path: Path, remote_path: str, direction: TreeDirection
    ) -> TransferReport:
        local_path = Path(local_path)

        if direction == TreeDirection.UPLOAD:
            try:
                archive = await self._run_blocking(pack_directory, local_path)
            except FileNotFoundError as e:
                raise ComponentError(str(e))
            await self.send_object(
                TransferPayload(
                    kind='tree',
                    name=remote_path,
                    archive=archive,
                    metadata={'path': remote_path},
                ),
                'receive-tree',
            )
        else:
            payload = await self.fetch_object('send-tree', {'path': remote_path})
            if payload.archive is None:
                raise ComponentError(f'No archive received for {remote_path}')
            await self._run_blocking(
                partial(unpack_archive, payload.archive, local_path, clean=True)
            )

        return await self._report(local_path, remote_path, direction)

    async def pull_artifact(self, kind: str, name: str, staging_dir: Path) -> Path:
        payload = await self.fetch_object(f'send-{kind}', {'name': name})
        if payload.archive is None:
            raise ComponentError(f'No archive received for {kind} {name}', kind, name)

        local_dir = Path(staging_dir) / name
        await self._run_blocking(
            partial(unpack_archive, payload.archive, local_dir, clean=True)
        )
        return local_dir

    async def push_artifact(self, kind: str, name: str, local_dir: Path) -> None:
        try:
            archive = await self._run_blocking(pack_directory, Path(local_dir))
        except FileNotFoundError as e:
            raise ComponentError(str(e), kind, name)
        await self.send_object(
            TransferPayload(kind=kind, name=name, archive=archive), f'receive-{kind}'
        )

    async def close(self) -> None:
        self.client.close()
