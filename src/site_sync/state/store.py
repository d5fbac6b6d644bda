"""Persistence of sync operation records."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List

from loguru import logger
from pydantic import ValidationError

from ..exceptions import OperationNotFound
from ..models.operation import SyncOperation


class OperationStore(ABC):
    """Durable home of SyncOperation records."""

    @abstractmethod
    def save(self, operation: SyncOperation) -> None:
        """Create or replace a record."""
        pass

    @abstractmethod
    def get(self, operation_id: str) -> SyncOperation:
        """Load a record.

        Raises:
            OperationNotFound: If no record exists
        """
        pass

    @abstractmethod
    def list(self) -> List[SyncOperation]:
        """All records, oldest first."""
        pass

    def exists(self, operation_id: str) -> bool:
        try:
            self.get(operation_id)
        except OperationNotFound:
            return False
        return True


class InMemoryOperationStore(OperationStore):
    """Keeps copies of records in a dict."""

    def __init__(self):
        self._records: Dict[str, SyncOperation] = {}

    def save(self, operation: SyncOperation) -> None:
        self._records[operation.id] = operation.copy(deep=True)

    def get(self, operation_id: str) -> SyncOperation:
        if operation_id not in self._records:
            raise OperationNotFound(f'Sync operation not found: {operation_id}')
        return self._records[operation_id].copy(deep=True)

    def list(self) -> List[SyncOperation]:
        return sorted(
            (op.copy(deep=True) for op in self._records.values()),
            key=lambda op: op.created_at,
        )


class JsonFileOperationStore(OperationStore):
    """One JSON document per operation in a directory."""

    def __init__(self, directory: str):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.logger = logger.bind(component='OperationStore')

    def _path(self, operation_id: str) -> Path:
        if not operation_id or not operation_id.isalnum():
            raise OperationNotFound(f'Invalid operation identifier: {operation_id!r}')
        return self.directory / f'{operation_id}.json'

    def save(self, operation: SyncOperation) -> None:
        path = self._path(operation.id)
        tmp = path.with_suffix('.tmp')
        tmp.write_text(operation.json(), encoding='utf-8')
        tmp.replace(path)

    def get(self, operation_id: str) -> SyncOperation:
        path = self._path(operation_id)
        if not path.exists():
            raise OperationNotFound(f'Sync operation not found: {operation_id}')
        return SyncOperation.parse_raw(path.read_text(encoding='utf-8'))

    def list(self) -> List[SyncOperation]:
        operations = []
        for path in self.directory.glob('*.json'):
            try:
                operations.append(
                    SyncOperation.parse_raw(path.read_text(encoding='utf-8'))
                )
            except (ValidationError, ValueError) as e:
                self.logger.warning(f'Ignoring unreadable record {path.name}: {e}')
        return sorted(operations, key=lambda op: op.created_at)
