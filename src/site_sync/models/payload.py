"""Transfer payload moved between installations."""

import base64
import binascii
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TransferPayload(BaseModel):
    """The unit moved by a transport.

    Holds an opaque binary archive (extensions, themes, media) or a textual
    statement stream (database tables), plus auxiliary structured metadata.
    """

    kind: str = Field(..., description='Component kind')
    name: str = Field(default='', description='Component name')
    archive: Optional[bytes] = Field(default=None, description='Binary archive')
    statements: List[str] = Field(
        default_factory=list, description='Statement stream'
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description='Auxiliary structured data'
    )

    @property
    def size(self) -> int:
        """Approximate payload size in bytes."""
        size = len(self.archive) if self.archive else 0
        return size + sum(len(s) for s in self.statements)

    def to_wire(self) -> Dict[str, Any]:
        """Encode as a JSON-safe message body."""
        return {
            'kind': self.kind,
            'name': self.name,
            'file_data': base64.b64encode(self.archive).decode('ascii')
            if self.archive is not None
            else None,
            'statements': list(self.statements),
            'metadata': self.metadata,
        }

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> 'TransferPayload':
        """Decode a message body produced by :meth:`to_wire`.

        Raises:
            ValueError: If the body is malformed
        """
        if not isinstance(data, dict) or 'kind' not in data:
            raise ValueError('Invalid transfer payload received')

        archive = None
        file_data = data.get('file_data')
        if file_data is not None:
            try:
                archive = base64.b64decode(file_data, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError(f'Failed to decode archive data: {e}')

        return cls(
            kind=data['kind'],
            name=data.get('name') or '',
            archive=archive,
            statements=data.get('statements') or [],
            metadata=data.get('metadata') or {},
        )
