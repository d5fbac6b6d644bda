"""Media library migration."""

from ..models.operation import ComponentKind, Direction, ItemResult
from ..transport.base import TransportStrategy
from .base import ComponentMigrator


class MediaMigrator(ComponentMigrator):
    """Moves all media files plus their records as one payload."""

    kind = ComponentKind.MEDIA

    async def transfer(
        self,
        name: str,
        sender: TransportStrategy,
        receiver: TransportStrategy,
        direction: Direction,
    ) -> ItemResult:
        payload = await sender.fetch_object('send-media', {})
        response = await receiver.send_object(payload, 'receive-media')

        records = len(payload.metadata.get('records', []))
        inserted = response.get('records_inserted', 0)
        message = (
            f'Media library transferred: {response.get("files", 0)} files, '
            f'{inserted} of {records} records new'
        )
        missing = payload.metadata.get('missing_files') or []
        if missing:
            message += f', {len(missing)} files missing on sender'

        return self.create_result(
            name, True, message, receiver, sender, details=dict(response)
        )
