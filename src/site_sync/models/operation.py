"""Sync operation state models."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, validator

from ..exceptions import InvalidTransition
from .conflict import Conflict, ConflictState


class Direction(str, Enum):
    """Operation direction."""

    PUSH = 'push'
    PULL = 'pull'


class OperationStatus(str, Enum):
    """Sync operation status enumeration."""

    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'


class ComponentKind(str, Enum):
    """Migratable component kinds, in execution order."""

    EXTENSION = 'extension'
    THEME = 'theme'
    TABLE = 'table'
    MEDIA = 'media'


class Outcome(str, Enum):
    """Summary outcome of a terminal operation."""

    SUCCEEDED = 'succeeded'
    PARTIAL = 'partial'
    FAILED = 'failed'


def _dedupe(names: List[str]) -> List[str]:
    seen = set()
    result = []
    for name in names:
        if name not in seen:
            seen.add(name)
            result.append(name)
    return result


class ComponentSelection(BaseModel):
    """Names selected for migration, per component kind."""

    extensions: List[str] = Field(default_factory=list, description='Extensions')
    themes: List[str] = Field(default_factory=list, description='Themes')
    tables: List[str] = Field(default_factory=list, description='Database tables')
    media: bool = Field(default=False, description='Migrate the media library')

    @validator('extensions', 'themes', 'tables')
    def validate_names(cls, v):
        """Drop blanks and duplicates while keeping selection order."""
        return _dedupe([name for name in v if name])

    def names_for(self, kind: ComponentKind) -> List[str]:
        """Selected item names for a component kind."""
        if kind == ComponentKind.EXTENSION:
            return list(self.extensions)
        if kind == ComponentKind.THEME:
            return list(self.themes)
        if kind == ComponentKind.TABLE:
            return list(self.tables)
        return ['media'] if self.media else []

    def is_empty(self) -> bool:
        """Whether nothing at all is selected."""
        return not (self.extensions or self.themes or self.tables or self.media)


class ItemResult(BaseModel):
    """Result of migrating one item."""

    kind: ComponentKind = Field(..., description='Component kind')
    name: str = Field(..., description='Item name')
    success: bool = Field(..., description='Migration was successful')
    message: str = Field(default='', description='Human readable message')
    transport_used: Optional[str] = Field(
        default=None, description='Transport strategy that moved the item'
    )
    skipped: bool = Field(default=False, description='Item was intentionally skipped')
    details: Dict[str, Any] = Field(default_factory=dict, description='Extra data')


class StatusView(BaseModel):
    """What a polling client sees."""

    status: OperationStatus
    progress: int
    message: str
    awaiting_resolution: bool = False


class SyncOperation(BaseModel):
    """One end-to-end migration run."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    source_url: str = Field(default='', description='Source base URL')
    target_url: str = Field(default='', description='Target base URL')
    direction: Direction = Field(..., description='Operation direction')
    selection: ComponentSelection = Field(default_factory=ComponentSelection)

    status: OperationStatus = Field(default=OperationStatus.PENDING)
    progress: int = Field(default=0, description='Progress percentage 0-100')
    message: str = Field(default='Queued', description='Latest status message')
    error_message: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.now)
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)

    conflict_state: Optional[ConflictState] = Field(default=None)
    conflicts: List[Conflict] = Field(default_factory=list)
    results: List[ItemResult] = Field(default_factory=list)
    outcome: Optional[Outcome] = Field(default=None)

    class Config:
        """Pydantic configuration."""

        json_encoders = {datetime: lambda v: v.isoformat() if v else None}
        validate_assignment = True

    @property
    def is_terminal(self) -> bool:
        """Whether the operation reached completed or failed."""
        return self.status in (OperationStatus.COMPLETED, OperationStatus.FAILED)

    def _ensure_mutable(self) -> None:
        if self.is_terminal:
            raise InvalidTransition(
                f'Operation {self.id} is {self.status.value} and cannot change'
            )

    def mark_running(self) -> None:
        """pending -> running."""
        if self.status != OperationStatus.PENDING:
            raise InvalidTransition(
                f'Cannot start operation {self.id} from {self.status.value}'
            )
        self.status = OperationStatus.RUNNING
        self.started_at = datetime.now()
        self.message = 'Running'

    def advance(self, progress: int, message: Optional[str] = None) -> None:
        """Move progress forward; never backwards."""
        self._ensure_mutable()
        self.progress = max(self.progress, min(100, int(progress)))
        if message:
            self.message = message

    def record(self, result: ItemResult) -> None:
        """Append one per-item result."""
        self._ensure_mutable()
        self.results.append(result)

    def mark_completed(self, message: str) -> None:
        """running -> completed."""
        self._ensure_mutable()
        if self.status != OperationStatus.RUNNING:
            raise InvalidTransition(
                f'Cannot complete operation {self.id} from {self.status.value}'
            )
        self.outcome = self.summarize_outcome()
        self.progress = 100
        self.message = message
        self.status = OperationStatus.COMPLETED
        self.completed_at = datetime.now()

    def mark_failed(self, error_message: str) -> None:
        """Any non-terminal status -> failed. Happens at most once."""
        self._ensure_mutable()
        self.outcome = Outcome.FAILED
        self.error_message = error_message
        self.message = error_message
        self.status = OperationStatus.FAILED
        self.completed_at = datetime.now()

    def summarize_outcome(self) -> Outcome:
        """Distinguish fully and partially succeeded operations."""
        if self.status == OperationStatus.FAILED:
            return Outcome.FAILED
        if any(not r.success for r in self.results):
            return Outcome.PARTIAL
        return Outcome.SUCCEEDED

    def status_view(self) -> StatusView:
        """Status, progress and message for polling clients."""
        return StatusView(
            status=self.status,
            progress=self.progress,
            message=self.error_message if self.error_message else self.message,
            awaiting_resolution=self.conflict_state
            == ConflictState.AWAITING_RESOLUTION,
        )

    def results_by_kind(self) -> Dict[str, Dict[str, int]]:
        """Counts of results grouped by component kind."""
        summary: Dict[str, Dict[str, int]] = {}
        for result in self.results:
            counts = summary.setdefault(
                result.kind.value,
                {'total': 0, 'successful': 0, 'failed': 0, 'skipped': 0},
            )
            counts['total'] += 1
            if result.skipped:
                counts['skipped'] += 1
            elif result.success:
                counts['successful'] += 1
            else:
                counts['failed'] += 1
        return summary
