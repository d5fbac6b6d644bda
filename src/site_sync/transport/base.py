"""Transport strategy interface."""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, Field

from ..config.config import EnvironmentConfig, TransportConfig
from ..exceptions import ArtifactNotFoundError
from ..models.payload import TransferPayload


class TreeDirection(str, Enum):
    """Direction of a tree sync, seen from the control host."""

    UPLOAD = 'upload'
    DOWNLOAD = 'download'


class RemoteCommand(BaseModel):
    """A control action run by the remote agent."""

    action: str = Field(..., description='Agent action name')
    args: Dict[str, Any] = Field(default_factory=dict, description='Action arguments')


class TransferReport(BaseModel):
    """Outcome of one tree sync."""

    transport: str = Field(..., description='Transport that moved the tree')
    direction: TreeDirection = Field(..., description='Upload or download')
    local_path: str = Field(..., description='Local directory')
    remote_path: str = Field(..., description='Remote directory')
    files: int = Field(default=0, description='Files present after the sync')
    bytes: int = Field(default=0, description='Total size of those files')


def tree_stats(path: Path) -> Tuple[int, int]:
    """Number of files below ``path`` and their total size."""
    files = [p for p in Path(path).rglob('*') if p.is_file()]
    return len(files), sum(p.stat().st_size for p in files)


class TransportStrategy(ABC):
    """Moves commands, trees and payloads between the control host and one installation."""

    name = 'abstract'

    def __init__(
        self,
        environment: EnvironmentConfig,
        transport_config: Optional[TransportConfig] = None,
    ):
        """Initialize transport.

        Args:
            environment: Installation this transport talks to
            transport_config: Timeouts and TLS settings
        """
        self.environment = environment
        self.transport_config = transport_config or TransportConfig()
        self.logger = logger.bind(component=f'{self.__class__.__name__}')

    async def _run_blocking(self, func, *args):
        """Run a blocking call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    async def _report(
        self, local_path: Path, remote_path: str, direction: TreeDirection
    ) -> TransferReport:
        files, size = await self._run_blocking(tree_stats, local_path)
        return TransferReport(
            transport=self.name,
            direction=direction,
            local_path=str(local_path),
            remote_path=remote_path,
            files=files,
            bytes=size,
        )

    @abstractmethod
    async def check(self) -> Dict[str, Any]:
        """Confirm the remote agent answers; returns its status document."""
        pass

    @abstractmethod
    async def execute(self, command: RemoteCommand) -> Dict[str, Any]:
        """Run a control action on the installation."""
        pass

    @abstractmethod
    async def sync_tree(
        self, local_path: Path, remote_path: str, direction: TreeDirection
    ) -> TransferReport:
        """Make one side's directory mirror the other's, deleting extra files."""
        pass

    @abstractmethod
    async def send_object(
        self, payload: TransferPayload, endpoint: str
    ) -> Dict[str, Any]:
        """Deliver a payload to an agent endpoint."""
        pass

    @abstractmethod
    async def fetch_object(
        self, endpoint: str, request: Optional[Dict[str, Any]] = None
    ) -> TransferPayload:
        """Ask an agent endpoint for a payload."""
        pass

    async def close(self) -> None:
        """Release sessions held by the transport."""
        pass

    async def pull_artifact(self, kind: str, name: str, staging_dir: Path) -> Path:
        """Copy an installed extension or theme into ``staging_dir/name``.

        Raises:
            ArtifactNotFoundError: If the installation does not have it
        """
        location = await self.execute(
            RemoteCommand(action='locate', args={'kind': kind, 'name': name})
        )
        if not location.get('exists'):
            raise ArtifactNotFoundError(
                f'{kind.title()} {name} is not installed on {self.environment.label}',
                component=kind,
                item=name,
            )

        local_dir = Path(staging_dir) / name
        await self.sync_tree(local_dir, location['path'], TreeDirection.DOWNLOAD)
        return local_dir

    async def push_artifact(self, kind: str, name: str, local_dir: Path) -> None:
        """Install the contents of ``local_dir`` as the named extension or theme."""
        location = await self.execute(
            RemoteCommand(action='locate', args={'kind': kind, 'name': name})
        )
        await self.sync_tree(Path(local_dir), location['path'], TreeDirection.UPLOAD)

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} {self.environment.label}>'
