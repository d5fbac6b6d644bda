"""Operation record persistence."""

from .store import InMemoryOperationStore, JsonFileOperationStore, OperationStore

__all__ = ['InMemoryOperationStore', 'JsonFileOperationStore', 'OperationStore']
