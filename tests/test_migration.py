"""Tests for progress allocation, conflict handling and migrator plumbing."""

from unittest.mock import AsyncMock, Mock

import pytest

from site_sync.migration.conflicts import ConflictDetector, ConflictResolver
from site_sync.migration.events import EventBus, ProgressEvent
from site_sync.migration.progress import (
    EXECUTION_ORDER,
    FINALIZATION,
    PHASE_SHARES,
    VALIDATION,
    ProgressPlan,
)
from site_sync.models.conflict import ConflictKind, Resolution
from site_sync.models.operation import ComponentKind, OperationStatus, SyncOperation
from site_sync.exceptions import ConnectivityError


class TestProgressPlan:
    """Test phase checkpoints."""

    def setup_method(self):
        """Set up test fixtures."""
        self.plan = ProgressPlan()

    def test_checkpoints(self):
        """Test cumulative checkpoints in execution order."""
        assert self.plan.checkpoint(VALIDATION) == 10
        assert self.plan.checkpoint(ComponentKind.EXTENSION) == 40
        assert self.plan.checkpoint(ComponentKind.THEME) == 55
        assert self.plan.checkpoint(ComponentKind.TABLE) == 70
        assert self.plan.checkpoint(ComponentKind.MEDIA) == 80
        assert self.plan.base(FINALIZATION) == 80
        assert self.plan.checkpoint(FINALIZATION) == 100

    @pytest.mark.parametrize('kind', EXECUTION_ORDER)
    @pytest.mark.parametrize('total', [1, 2, 3, 7, 50])
    def test_phase_ends_at_checkpoint_for_any_item_count(self, kind, total):
        """Test the last item of a phase lands on its checkpoint regardless of count."""
        values = [self.plan.after_item(kind, i, total) for i in range(total)]

        assert values[-1] == self.plan.checkpoint(kind)
        assert values == sorted(values)
        assert values[0] >= self.plan.base(kind)

    def test_empty_phase(self):
        """Test a phase with no items jumps to its checkpoint."""
        assert self.plan.after_item(ComponentKind.THEME, 0, 0) == 55

    def test_shares_sum_within_bounds(self):
        """Test configured shares leave room for finalization."""
        assert sum(PHASE_SHARES.values()) <= 100
        with pytest.raises(ValueError):
            ProgressPlan({VALIDATION: 60, ComponentKind.EXTENSION.value: 60})


class TestConflictDetector:
    """Test table comparison."""

    def setup_method(self):
        """Set up test fixtures."""
        self.detector = ConflictDetector()

    def test_identical_tables(self):
        """Test identical snapshots produce no conflicts."""
        snapshot = {'primary_key': ['id'], 'rows': [{'id': 1, 'title': 'a'}]}

        assert self.detector.detect('posts', snapshot, dict(snapshot)) == []

    def test_new_and_updated_groups(self):
        """Test new rows and differing rows form one group each."""
        source = {
            'primary_key': ['id'],
            'rows': [
                {'id': 1, 'title': 'same'},
                {'id': 2, 'title': 'source'},
                {'id': 3, 'title': 'new'},
                {'id': 4, 'title': 'newer'},
            ],
        }
        target = {
            'primary_key': ['id'],
            'rows': [
                {'id': 1, 'title': 'same'},
                {'id': 2, 'title': 'target'},
                {'id': 5, 'title': 'only on target'},
            ],
        }

        conflicts = self.detector.detect('posts', source, target)

        assert [c.kind for c in conflicts] == [
            ConflictKind.NEW_ROW_GROUP,
            ConflictKind.UPDATED_ROW_GROUP,
        ]
        new_group, updated_group = conflicts
        assert new_group.count == 2
        assert [r['id'] for r in new_group.source_rows] == [3, 4]
        assert updated_group.count == 1
        assert updated_group.source_rows == [{'id': 2, 'title': 'source'}]
        assert updated_group.target_rows == [{'id': 2, 'title': 'target'}]
        assert all(c.resolution == Resolution.UNSET for c in conflicts)

    def test_composite_primary_key(self):
        """Test rows are matched on every primary key column."""
        source = {
            'primary_key': ['post_id', 'meta_key'],
            'rows': [{'post_id': 1, 'meta_key': 'a', 'meta_value': 'x'}],
        }
        target = {
            'primary_key': ['post_id', 'meta_key'],
            'rows': [{'post_id': 1, 'meta_key': 'b', 'meta_value': 'x'}],
        }

        conflicts = self.detector.detect('wp_postmeta', source, target)

        assert [c.kind for c in conflicts] == [ConflictKind.NEW_ROW_GROUP]


class TestConflictResolver:
    """Test resolution application."""

    def setup_method(self):
        """Set up test fixtures."""
        self.source = Mock()
        self.source.name = 'shell'
        self.source.send_object = AsyncMock(return_value={'success': True})
        self.target = Mock()
        self.target.name = 'object'
        self.target.send_object = AsyncMock(return_value={'success': True})
        self.resolver = ConflictResolver(self.source, self.target)

        source = {'primary_key': ['id'], 'rows': [{'id': 1, 't': 's'}, {'id': 2, 't': 'n'}]}
        target = {'primary_key': ['id'], 'rows': [{'id': 1, 't': 't'}]}
        conflicts = ConflictDetector().detect('posts', source, target)
        self.new_group = next(c for c in conflicts if c.kind == ConflictKind.NEW_ROW_GROUP)
        self.updated_group = next(
            c for c in conflicts if c.kind == ConflictKind.UPDATED_ROW_GROUP
        )

    @pytest.mark.asyncio
    async def test_push_writes_source_rows_to_target(self):
        """Test push upserts the source rows on the target."""
        self.updated_group.resolution = Resolution.PUSH

        result = await self.resolver.apply_one(self.updated_group)

        assert result.success is True
        assert result.transport_used == 'object'
        payload, endpoint = self.target.send_object.await_args.args
        assert endpoint == 'apply-rows'
        assert payload.metadata['upsert'] == [{'id': 1, 't': 's'}]
        self.source.send_object.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pull_restores_target_rows_on_source(self):
        """Test pull of an updated group copies target rows to the source."""
        self.updated_group.resolution = Resolution.PULL

        await self.resolver.apply_one(self.updated_group)

        payload, _ = self.source.send_object.await_args.args
        assert payload.metadata['upsert'] == [{'id': 1, 't': 't'}]
        assert payload.metadata['delete'] == []

    @pytest.mark.asyncio
    async def test_pull_discards_new_rows_on_source(self):
        """Test pull of a new group deletes the rows from the source."""
        self.new_group.resolution = Resolution.PULL

        await self.resolver.apply_one(self.new_group)

        payload, _ = self.source.send_object.await_args.args
        assert payload.metadata['delete'] == [{'id': 2, 't': 'n'}]

    @pytest.mark.asyncio
    async def test_skip_touches_nothing(self):
        """Test skip records a skipped result."""
        self.new_group.resolution = Resolution.SKIP

        result = await self.resolver.apply_one(self.new_group)

        assert result.skipped is True
        self.source.send_object.assert_not_awaited()
        self.target.send_object.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unset_rejected(self):
        """Test a conflict without a resolution cannot be applied."""
        with pytest.raises(ValueError):
            await self.resolver.apply_one(self.new_group)

    @pytest.mark.asyncio
    async def test_failures_are_recorded_per_conflict(self):
        """Test one failed write does not stop the next conflict."""
        self.new_group.resolution = Resolution.PUSH
        self.updated_group.resolution = Resolution.PULL
        self.target.send_object.side_effect = RuntimeError('disk full')

        results = await self.resolver.apply([self.new_group, self.updated_group])

        assert [r.success for r in results] == [False, True]
        assert 'disk full' in results[0].message

    @pytest.mark.asyncio
    async def test_connectivity_errors_propagate(self):
        """Test losing an installation aborts resolution."""
        self.new_group.resolution = Resolution.PUSH
        self.target.send_object.side_effect = ConnectivityError('gone')

        with pytest.raises(ConnectivityError):
            await self.resolver.apply([self.new_group])


class TestEventBus:
    """Test progress event fan-out."""

    def test_subscribe_filter_and_unsubscribe(self):
        """Test filtered delivery and unsubscription."""
        bus = EventBus()
        first = SyncOperation(direction='push')
        second = SyncOperation(direction='pull')
        everything, filtered = [], []

        unsubscribe = bus.subscribe(everything.append)
        bus.subscribe(filtered.append, operation_id=first.id)

        bus.publish(ProgressEvent.from_operation(first))
        bus.publish(ProgressEvent.from_operation(second))
        unsubscribe()
        bus.publish(ProgressEvent.from_operation(first))

        assert [e.operation_id for e in everything] == [first.id, second.id]
        assert [e.operation_id for e in filtered] == [first.id, first.id]
        assert everything[0].status == OperationStatus.PENDING

    def test_failing_subscriber_does_not_block_others(self):
        """Test a raising subscriber is isolated."""
        bus = EventBus()
        received = []
        bus.subscribe(Mock(side_effect=RuntimeError('broken')))
        bus.subscribe(received.append)

        bus.publish(ProgressEvent.from_operation(SyncOperation(direction='push')))

        assert len(received) == 1
