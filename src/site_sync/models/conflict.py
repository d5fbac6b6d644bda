"""Database conflict models."""

from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, Field


class ConflictKind(str, Enum):
    """Kinds of row groups that need an operator decision."""

    NEW_ROW_GROUP = 'new_row_group'
    UPDATED_ROW_GROUP = 'updated_row_group'


class Resolution(str, Enum):
    """Operator choice for one conflict."""

    UNSET = 'unset'
    PUSH = 'push'
    PULL = 'pull'
    SKIP = 'skip'


class ConflictState(str, Enum):
    """Conflict resolution state of an operation."""

    AWAITING_RESOLUTION = 'awaiting_resolution'
    RESOLVED = 'resolved'


class Conflict(BaseModel):
    """A detected divergence between source and target rows of one table."""

    id: str = Field(..., description='Conflict identifier, unique per operation')
    kind: ConflictKind = Field(..., description='Row group kind')
    table: str = Field(..., description='Table name')
    count: int = Field(..., description='Number of affected rows')
    description: str = Field(default='', description='Human description')
    resolution: Resolution = Field(default=Resolution.UNSET)

    primary_key: List[str] = Field(
        default_factory=list, description='Columns identifying a row'
    )
    source_rows: List[Dict[str, Any]] = Field(
        default_factory=list, description='Affected rows as found on the source'
    )
    target_rows: List[Dict[str, Any]] = Field(
        default_factory=list, description='Affected rows as found on the target'
    )

    class Config:
        """Pydantic configuration."""

        validate_assignment = True

    @property
    def is_resolved(self) -> bool:
        return self.resolution != Resolution.UNSET

    def public_view(self) -> Dict[str, Any]:
        """Conflict without row payloads, for display."""
        return {
            'id': self.id,
            'kind': self.kind.value,
            'table': self.table,
            'count': self.count,
            'description': self.description,
            'resolution': self.resolution.value,
        }
