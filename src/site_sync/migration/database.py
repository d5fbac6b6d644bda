"""Database table migration."""

from ..models.operation import ComponentKind, Direction, ItemResult
from ..transport.base import RemoteCommand, TransportStrategy
from .base import ComponentMigrator
from .conflicts import ConflictDetector


class DatabaseMigrator(ComponentMigrator):
    """Moves tables as statement streams.

    A push onto a table that already exists on the target is not applied
    directly: both sides are compared and any differences are queued as
    conflicts on the migration context for the operator to resolve.
    """

    kind = ComponentKind.TABLE

    def __init__(self, context, detector: ConflictDetector = None):
        super().__init__(context)
        self.detector = detector or ConflictDetector()

    async def transfer(
        self,
        name: str,
        sender: TransportStrategy,
        receiver: TransportStrategy,
        direction: Direction,
    ) -> ItemResult:
        if direction == Direction.PUSH:
            exists = await receiver.execute(
                RemoteCommand(action='table_exists', args={'name': name})
            )
            if exists.get('exists'):
                return await self._compare(name, sender, receiver)

        return await self._copy(name, sender, receiver)

    async def _copy(
        self, name: str, sender: TransportStrategy, receiver: TransportStrategy
    ) -> ItemResult:
        payload = await sender.fetch_object('send-table', {'name': name, 'mode': 'export'})
        response = await receiver.send_object(payload, 'receive-table')

        rows = payload.metadata.get('row_count', 0)
        return self.create_result(
            name,
            True,
            f'Table {name} copied ({rows} rows)',
            receiver,
            sender,
            details={'statements': response.get('statements', len(payload.statements))},
        )

    async def _compare(
        self, name: str, sender: TransportStrategy, receiver: TransportStrategy
    ) -> ItemResult:
        request = {'name': name, 'mode': 'snapshot'}
        source_snapshot = (await sender.fetch_object('send-table', request)).metadata
        target_snapshot = (await receiver.fetch_object('send-table', request)).metadata

        conflicts = self.detector.detect(name, source_snapshot, target_snapshot)
        if not conflicts:
            return self.create_result(
                name, True, f'Table {name} already in sync', receiver, sender
            )

        self.context.conflicts.extend(conflicts)
        return self.create_result(
            name,
            True,
            f'Table {name}: {len(conflicts)} conflicts awaiting resolution',
            receiver,
            sender,
            details={'deferred': True, 'conflicts': [c.id for c in conflicts]},
        )
