"""Sync engine - main entry point for sync operations driven by a config file."""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

from loguru import logger

from ..config.config import Config
from ..exceptions import ComponentError, ConnectivityError
from ..models.conflict import Conflict, Resolution
from ..models.operation import (
    ComponentSelection,
    Direction,
    OperationStatus,
    StatusView,
    SyncOperation,
)
from ..state.store import JsonFileOperationStore, OperationStore
from ..transport.selector import TransportSelector
from .events import EventBus
from .orchestrator import SyncOrchestrator

ConflictHandler = Callable[[List[Conflict]], Awaitable[Optional[Dict[str, Resolution]]]]


class SyncEngine:
    """Coordinates a whole sync run for the configured source and target."""

    def __init__(self, config: Config, store: Optional[OperationStore] = None):
        """Initialize sync engine.

        Args:
            config: Sync configuration
            store: Operation store; defaults to JSON files under ``sync.state_dir``
        """
        self.config = config
        self.logger = logger.bind(component='SyncEngine')
        self.events = EventBus()
        self.store = store or JsonFileOperationStore(config.sync.state_dir)
        self.orchestrator = SyncOrchestrator(
            transport_config=config.transport,
            sync_config=config.sync,
            store=self.store,
            events=self.events,
        )

    async def test_connectivity(self) -> Dict[str, str]:
        """Select a transport for both installations and ping their agents.

        Returns:
            Transport name per role

        Raises:
            ConnectivityError: If either installation cannot be reached
            AuthenticationError: If a credential is rejected
        """
        self.logger.info('Testing connectivity to source and target')
        selector = TransportSelector(self.config.transport)
        chosen = {}
        try:
            for role, environment in (
                ('source', self.config.source),
                ('target', self.config.target),
            ):
                transport = await selector.select(environment)
                try:
                    await transport.check()
                except ComponentError as e:
                    raise ConnectivityError(
                        f'Cannot reach {role} installation {environment.label}: {e}'
                    )
                chosen[role] = transport.name
        finally:
            await selector.close()

        self.logger.info('Connectivity tests passed')
        return chosen

    async def sync(
        self,
        direction: Direction,
        selection: ComponentSelection,
        on_conflicts: Optional[ConflictHandler] = None,
    ) -> SyncOperation:
        """Run one operation to a terminal status.

        Args:
            direction: push or pull
            selection: Components to migrate
            on_conflicts: Called with pending conflicts; returns resolutions,
                or None to cancel the database push

        Returns:
            The operation as last seen. It may still be running if the
            polling timeout elapsed first.
        """
        operation_id = await self.orchestrator.start_sync(
            self.config.source, self.config.target, direction, selection
        )

        try:
            await asyncio.wait_for(
                self._drive(operation_id, on_conflicts),
                timeout=self.config.sync.poll_timeout,
            )
        except asyncio.TimeoutError:
            # The operation keeps running; only this caller stops waiting
            self.logger.warning(
                f'Gave up waiting for operation {operation_id} after '
                f'{self.config.sync.poll_timeout} seconds'
            )

        return self.orchestrator.get_operation(operation_id)

    async def _drive(
        self, operation_id: str, on_conflicts: Optional[ConflictHandler]
    ) -> None:
        while True:
            status: StatusView = await self.orchestrator.wait(
                operation_id, until_suspended=True
            )
            if status.status in (OperationStatus.COMPLETED, OperationStatus.FAILED):
                return
            if not status.awaiting_resolution:
                continue

            conflicts = self.orchestrator.get_conflicts(operation_id)
            resolutions = await on_conflicts(conflicts) if on_conflicts else None
            if resolutions is None:
                self.logger.warning('No resolutions supplied; cancelling database push')
                await self.orchestrator.cancel_conflicts(operation_id)
            else:
                await self.orchestrator.submit_conflict_resolutions(
                    operation_id, resolutions
                )

    def get_status(self, operation_id: str) -> StatusView:
        return self.orchestrator.get_status(operation_id)

    def list_operations(self) -> List[SyncOperation]:
        return self.store.list()
