"""Sync orchestrator: sequences migrators for one operation at a time."""

import asyncio
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from loguru import logger

from ..api.registry import RegistryClient
from ..config.config import EnvironmentConfig, SyncConfig, TransportConfig
from ..exceptions import (
    AuthenticationError,
    ComponentError,
    ConflictUnresolved,
    ConnectivityError,
    InvalidRequest,
    InvalidTransition,
)
from ..models.conflict import Conflict, ConflictState, Resolution
from ..models.operation import (
    ComponentKind,
    ComponentSelection,
    Direction,
    ItemResult,
    Outcome,
    StatusView,
    SyncOperation,
)
from ..state.store import InMemoryOperationStore, OperationStore
from ..transport.base import TransportStrategy
from ..transport.selector import TransportSelector
from .artifacts import ExtensionMigrator, ThemeMigrator
from .base import ComponentMigrator, MigrationContext
from .conflicts import ConflictResolver
from .database import DatabaseMigrator
from .events import EventBus, ProgressEvent
from .media import MediaMigrator
from .progress import EXECUTION_ORDER, FINALIZATION, VALIDATION, ProgressPlan

MIGRATORS = {
    ComponentKind.EXTENSION: ExtensionMigrator,
    ComponentKind.THEME: ThemeMigrator,
    ComponentKind.TABLE: DatabaseMigrator,
    ComponentKind.MEDIA: MediaMigrator,
}

APPLY = 'apply'
CANCEL = 'cancel'


class _Runtime:
    """In-process handles of one running operation."""

    def __init__(self):
        self.task: Optional[asyncio.Task] = None
        self.suspended = asyncio.Event()
        self.resume = asyncio.Event()
        self.decision: Optional[str] = None


class SyncOrchestrator:
    """Runs sync operations in the background and answers status queries.

    Each operation is one asyncio task; its migrators run strictly in
    order. Distinct operations may run side by side.
    """

    def __init__(
        self,
        transport_config: Optional[TransportConfig] = None,
        sync_config: Optional[SyncConfig] = None,
        store: Optional[OperationStore] = None,
        events: Optional[EventBus] = None,
        registry: Optional[RegistryClient] = None,
        selector_factory: Optional[Callable[[TransportConfig], TransportSelector]] = None,
    ):
        """Initialize orchestrator.

        Args:
            transport_config: Transport timeouts and registry location
            sync_config: Staging and state settings
            store: Where operation records are persisted
            events: Bus receiving a ProgressEvent for every state change
            registry: Public registry client
            selector_factory: Builds one TransportSelector per operation
        """
        self.transport_config = transport_config or TransportConfig()
        self.sync_config = sync_config or SyncConfig()
        self.store = store or InMemoryOperationStore()
        self.events = events or EventBus()
        self.registry = registry or RegistryClient(
            self.transport_config.registry_url, self.transport_config.control_timeout
        )
        self.selector_factory = selector_factory or TransportSelector
        self.plan = ProgressPlan()
        self.logger = logger.bind(component='SyncOrchestrator')

        self._operations: Dict[str, SyncOperation] = {}
        self._runtimes: Dict[str, _Runtime] = {}

    # Inbound API

    async def start_sync(
        self,
        source: EnvironmentConfig,
        target: EnvironmentConfig,
        direction: Union[Direction, str],
        selection: Optional[ComponentSelection] = None,
    ) -> str:
        """Create an operation and run it in the background.

        Returns:
            Operation identifier

        Raises:
            InvalidRequest: Both base URLs are empty or direction is unknown;
                no operation is created
        """
        if not source.url and not target.url:
            raise InvalidRequest('Source and target base URLs are both empty')
        try:
            direction = Direction(direction)
        except ValueError:
            raise InvalidRequest(f'Direction must be push or pull, got {direction!r}')

        operation = SyncOperation(
            source_url=source.url,
            target_url=target.url,
            direction=direction,
            selection=selection or ComponentSelection(),
        )
        self._operations[operation.id] = operation
        self._save(operation)
        self._publish(operation)

        runtime = _Runtime()
        self._runtimes[operation.id] = runtime
        runtime.task = asyncio.create_task(self._run(operation, source, target))

        self.logger.info(
            f'Started {direction.value} operation {operation.id}: '
            f'{source.label} -> {target.label}'
        )
        return operation.id

    def get_operation(self, operation_id: str) -> SyncOperation:
        """Copy of the current operation record."""
        if operation_id in self._operations:
            return self._operations[operation_id].copy(deep=True)
        return self.store.get(operation_id)

    def get_status(self, operation_id: str) -> StatusView:
        """Status, progress and message of an operation.

        Raises:
            OperationNotFound: Unknown identifier
        """
        return self.get_operation(operation_id).status_view()

    def get_conflicts(self, operation_id: str) -> List[Conflict]:
        return self.get_operation(operation_id).conflicts

    async def submit_conflict_resolutions(
        self, operation_id: str, resolutions: Mapping[str, Union[Resolution, str]]
    ) -> None:
        """Record operator choices; resume once every conflict has one.

        Raises:
            ConflictUnresolved: Some conflicts still have no resolution; the
                ones supplied are kept
            InvalidRequest: Unknown conflict identifier or resolution value
            InvalidTransition: Operation is not awaiting resolution
        """
        operation, runtime = self._awaiting(operation_id)
        by_id = {c.id: c for c in operation.conflicts}

        parsed = {}
        for conflict_id, value in resolutions.items():
            if conflict_id not in by_id:
                raise InvalidRequest(f'Unknown conflict: {conflict_id}')
            try:
                parsed[conflict_id] = Resolution(value)
            except ValueError:
                raise InvalidRequest(f'Invalid resolution for {conflict_id}: {value!r}')

        for conflict_id, resolution in parsed.items():
            by_id[conflict_id].resolution = resolution
        self._save(operation)

        pending = [c for c in operation.conflicts if not c.is_resolved]
        if pending:
            raise ConflictUnresolved(
                f'{len(pending)} conflicts still need a resolution', pending=len(pending)
            )

        runtime.decision = APPLY
        runtime.suspended.clear()
        runtime.resume.set()

    async def cancel_conflicts(self, operation_id: str) -> None:
        """Discard the pending database push; the rest of the operation continues."""
        _, runtime = self._awaiting(operation_id)
        runtime.decision = CANCEL
        runtime.suspended.clear()
        runtime.resume.set()

    async def wait(self, operation_id: str, until_suspended: bool = False) -> StatusView:
        """Wait for the operation to finish, or to pause for conflict resolution."""
        runtime = self._runtimes.get(operation_id)
        if runtime is None or runtime.task is None:
            return self.get_status(operation_id)

        if not until_suspended:
            await asyncio.shield(runtime.task)
            return self.get_status(operation_id)

        waiter = asyncio.ensure_future(runtime.suspended.wait())
        try:
            await asyncio.wait(
                {runtime.task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
        return self.get_status(operation_id)

    # Execution

    async def _run(
        self, operation: SyncOperation, source: EnvironmentConfig, target: EnvironmentConfig
    ) -> None:
        selector = self.selector_factory(self.transport_config)
        runtime = self._runtimes[operation.id]

        try:
            operation.mark_running()
            self._update(operation, 0, 'Validating installations')

            source_transport = await selector.select(source)
            target_transport = await selector.select(target)
            await self._validate(source, source_transport)
            await self._validate(target, target_transport)
            self._update(operation, self.plan.checkpoint(VALIDATION), 'Installations reachable')

            context = MigrationContext(
                operation_id=operation.id,
                source=source,
                target=target,
                source_transport=source_transport,
                target_transport=target_transport,
                registry=self.registry,
                sync_config=self.sync_config,
            )

            for kind in EXECUTION_ORDER:
                await self._run_phase(operation, kind, context)
                if kind == ComponentKind.TABLE and context.conflicts:
                    await self._resolve_conflicts(operation, runtime, context)

            self._update(operation, self.plan.base(FINALIZATION), 'Finalizing')
            operation.mark_completed(self._completion_message(operation))
            self.logger.info(f'Operation {operation.id}: {operation.message}')

        except (ConnectivityError, AuthenticationError) as e:
            self.logger.error(f'Operation {operation.id} failed: {e}')
            self._fail(operation, str(e))
        except Exception as e:
            self.logger.exception(f'Operation {operation.id} failed unexpectedly')
            self._fail(operation, f'Unexpected error: {e}')
        finally:
            await selector.close()
            self._save(operation)
            self._publish(operation)
            # Release anyone waiting for a suspension that will not come
            runtime.suspended.set()
            self._operations.pop(operation.id, None)
            self._runtimes.pop(operation.id, None)

    async def _validate(
        self, environment: EnvironmentConfig, transport: TransportStrategy
    ) -> None:
        try:
            await transport.check()
        except ComponentError as e:
            raise ConnectivityError(
                f'Remote agent on {environment.label} is not responding: {e}'
            )

    async def _run_phase(
        self, operation: SyncOperation, kind: ComponentKind, context: MigrationContext
    ) -> None:
        names = operation.selection.names_for(kind)
        if not names:
            self._update(
                operation, self.plan.checkpoint(kind), f'No {kind.value} items selected'
            )
            return

        migrator: ComponentMigrator = MIGRATORS[kind](context)
        total = len(names)

        for index, name in enumerate(names):
            self._update(
                operation,
                operation.progress,
                f'Migrating {kind.value} {name} ({index + 1}/{total})',
            )
            if operation.direction == Direction.PUSH:
                result = await migrator.push(name)
            else:
                result = await migrator.pull(name)

            if not result.details.get('deferred'):
                operation.record(result)
            self._update(
                operation, self.plan.after_item(kind, index, total), result.message
            )

        summary = self._summarize_results_by_kind(operation, kind)
        self.logger.info(
            f'Completed {kind.value} phase: {summary["successful"]} successful, '
            f'{summary["failed"]} failed, {summary["skipped"]} skipped'
        )

    async def _resolve_conflicts(
        self, operation: SyncOperation, runtime: _Runtime, context: MigrationContext
    ) -> None:
        operation.conflicts = list(context.conflicts)
        operation.conflict_state = ConflictState.AWAITING_RESOLUTION
        self._update(
            operation,
            operation.progress,
            f'Awaiting resolution of {len(operation.conflicts)} conflicts',
        )

        runtime.resume.clear()
        runtime.suspended.set()
        await runtime.resume.wait()

        if runtime.decision == CANCEL:
            for table in dict.fromkeys(c.table for c in operation.conflicts):
                operation.record(
                    ItemResult(
                        kind=ComponentKind.TABLE,
                        name=table,
                        success=True,
                        skipped=True,
                        message=f'Database push of {table} cancelled',
                    )
                )
            operation.conflict_state = ConflictState.RESOLVED
            self._update(operation, operation.progress, 'Database push cancelled')
            return

        resolver = ConflictResolver(context.source_transport, context.target_transport)
        for result in await resolver.apply(operation.conflicts):
            operation.record(result)
        operation.conflict_state = ConflictState.RESOLVED
        self._update(operation, operation.progress, 'Conflicts resolved')

    # Helpers

    def _awaiting(self, operation_id: str):
        operation = self._operations.get(operation_id)
        if operation is None:
            # Raises OperationNotFound for identifiers never recorded
            self.store.get(operation_id)
            raise InvalidTransition(f'Operation {operation_id} is no longer running')
        if operation.conflict_state != ConflictState.AWAITING_RESOLUTION:
            raise InvalidTransition(
                f'Operation {operation_id} is not awaiting conflict resolution'
            )
        runtime = self._runtimes[operation_id]
        if runtime.resume.is_set():
            raise InvalidTransition(f'Operation {operation_id} already resumed')
        return operation, runtime

    def _update(self, operation: SyncOperation, progress: int, message: str) -> None:
        operation.advance(progress, message)
        self._save(operation)
        self._publish(operation)

    def _fail(self, operation: SyncOperation, message: str) -> None:
        if operation.is_terminal:
            return
        operation.mark_failed(message)

    def _save(self, operation: SyncOperation) -> None:
        self.store.save(operation)

    def _publish(self, operation: SyncOperation) -> None:
        self.events.publish(ProgressEvent.from_operation(operation))

    @staticmethod
    def _summarize_results_by_kind(
        operation: SyncOperation, kind: ComponentKind
    ) -> Dict[str, Any]:
        return operation.results_by_kind().get(
            kind.value, {'total': 0, 'successful': 0, 'failed': 0, 'skipped': 0}
        )

    @staticmethod
    def _completion_message(operation: SyncOperation) -> str:
        outcome = operation.summarize_outcome()
        if outcome == Outcome.SUCCEEDED:
            return 'Sync completed successfully'
        failed = sum(1 for r in operation.results if not r.success)
        return f'Sync completed with {failed} failed items'
