"""Progress events published by the orchestrator."""

from datetime import datetime
from typing import Callable, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from ..models.operation import OperationStatus, SyncOperation

Subscriber = Callable[['ProgressEvent'], None]


class ProgressEvent(BaseModel):
    """Snapshot of an operation after one state change."""

    operation_id: str = Field(..., description='Operation identifier')
    status: OperationStatus = Field(..., description='Operation status')
    progress: int = Field(..., description='Progress percentage')
    message: str = Field(default='', description='Status message')
    awaiting_resolution: bool = Field(default=False)
    timestamp: datetime = Field(default_factory=datetime.now)

    @classmethod
    def from_operation(cls, operation: SyncOperation) -> 'ProgressEvent':
        view = operation.status_view()
        return cls(
            operation_id=operation.id,
            status=view.status,
            progress=view.progress,
            message=view.message,
            awaiting_resolution=view.awaiting_resolution,
        )


class EventBus:
    """Fan-out of progress events to in-process subscribers."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self.logger = logger.bind(component='EventBus')

    def subscribe(self, callback: Subscriber, operation_id: Optional[str] = None):
        """Register a callback; returns a function that unregisters it.

        Args:
            callback: Called with every matching event
            operation_id: Only deliver events of this operation
        """
        if operation_id is not None:
            original = callback

            def callback(event: ProgressEvent) -> None:
                if event.operation_id == operation_id:
                    original(event)

        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: ProgressEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                # A broken subscriber must not stall the operation
                self.logger.error(f'Progress subscriber failed: {e}')
