"""Data models for sync operations."""

from .conflict import Conflict, ConflictKind, ConflictState, Resolution
from .operation import (
    ComponentKind,
    ComponentSelection,
    Direction,
    ItemResult,
    OperationStatus,
    Outcome,
    StatusView,
    SyncOperation,
)
from .payload import TransferPayload

__all__ = [
    'Conflict',
    'ConflictKind',
    'ConflictState',
    'Resolution',
    'ComponentKind',
    'ComponentSelection',
    'Direction',
    'ItemResult',
    'OperationStatus',
    'Outcome',
    'StatusView',
    'SyncOperation',
    'TransferPayload',
]
