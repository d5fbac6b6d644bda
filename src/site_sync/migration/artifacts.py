"""Extension and theme migration."""

import asyncio
import shutil
import tempfile
from functools import partial
from pathlib import Path

from ..exceptions import ArtifactNotFoundError
from ..models.operation import ComponentKind, Direction, ItemResult
from ..transport.base import RemoteCommand, TransportStrategy
from .base import ComponentMigrator


class ArtifactMigrator(ComponentMigrator):
    """Installs an artifact on the receiver, then mirrors activation and settings.

    Registry artifacts are installed by the receiver itself; custom ones are
    relayed through a local staging directory that is removed afterwards.
    """

    async def transfer(
        self,
        name: str,
        sender: TransportStrategy,
        receiver: TransportStrategy,
        direction: Direction,
    ) -> ItemResult:
        kind = self.kind.value
        args = {'kind': kind, 'name': name}

        state = await sender.execute(RemoteCommand(action='artifact_state', args=args))
        if not state.get('installed'):
            raise ArtifactNotFoundError(
                f'{kind.title()} {name} is not installed on {sender.environment.label}',
                component=kind,
                item=name,
            )

        loop = asyncio.get_running_loop()
        in_registry = await loop.run_in_executor(
            None, self.context.registry.is_available, kind, name
        )

        if in_registry:
            await receiver.execute(RemoteCommand(action='install_from_registry', args=args))
            method = 'installed from registry'
        else:
            await self._relay(name, sender, receiver)
            method = 'transferred'

        activated = False
        if state.get('active'):
            await receiver.execute(RemoteCommand(action='activate', args=args))
            activated = True

        settings = (
            await sender.execute(RemoteCommand(action='get_settings', args={'prefix': name}))
        ).get('settings') or {}
        if settings:
            await receiver.execute(
                RemoteCommand(action='put_settings', args={'settings': settings})
            )

        message = f'{kind.title()} {name} {method}'
        if activated:
            message += ' and activated'
        message += f', {len(settings)} settings copied'

        return self.create_result(
            name,
            True,
            message,
            receiver,
            sender,
            details={
                'registry': in_registry,
                'activated': activated,
                'settings_copied': sorted(settings),
            },
        )

    async def _relay(
        self, name: str, sender: TransportStrategy, receiver: TransportStrategy
    ) -> None:
        staging = tempfile.mkdtemp(
            prefix=f'site-sync-{self.kind.value}-', dir=self.context.sync_config.temp_dir
        )
        try:
            local_dir = await sender.pull_artifact(self.kind.value, name, Path(staging))
            await receiver.push_artifact(self.kind.value, name, local_dir)
        finally:
            await asyncio.get_running_loop().run_in_executor(
                None, partial(shutil.rmtree, staging, ignore_errors=True)
            )


class ExtensionMigrator(ArtifactMigrator):
    kind = ComponentKind.EXTENSION


class ThemeMigrator(ArtifactMigrator):
    kind = ComponentKind.THEME
