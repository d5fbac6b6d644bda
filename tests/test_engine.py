"""Tests for the sync engine."""

import pytest

from conftest import create_posts_table, read_rows
from site_sync.config.config import Config, SyncConfig
from site_sync.exceptions import ConnectivityError
from site_sync.migration.engine import SyncEngine
from site_sync.models.conflict import Resolution
from site_sync.models.operation import ComponentSelection, Direction, OperationStatus
from site_sync.state.store import InMemoryOperationStore


@pytest.fixture
def engine(sites, registry, selector_factory, tmp_path):
    config = Config(
        source=sites.source_env,
        target=sites.target_env,
        sync=SyncConfig(temp_dir=str(tmp_path / 'staging'), poll_timeout=30),
    )
    engine = SyncEngine(config, store=InMemoryOperationStore())
    engine.orchestrator.registry = registry
    engine.orchestrator.selector_factory = selector_factory
    return engine


class TestSyncEngine:
    """Test the config-driven sync entry point."""

    @pytest.mark.asyncio
    async def test_sync_with_conflict_handler(self, engine, sites):
        """Test conflicts are handed to the callback and its choices applied."""
        create_posts_table(sites.source, [{'id': 1, 'title': 'New', 'body': ''}])
        create_posts_table(sites.target, [])
        seen = []

        async def on_conflicts(conflicts):
            seen.extend(c.id for c in conflicts)
            return {c.id: Resolution.PUSH for c in conflicts}

        operation = await engine.sync(
            Direction.PUSH, ComponentSelection(tables=['posts']), on_conflicts
        )

        assert operation.status == OperationStatus.COMPLETED
        assert seen == ['posts:new_row_group']
        assert read_rows(sites.target, 'posts') == [{'id': 1, 'title': 'New', 'body': ''}]
        assert engine.get_status(operation.id).progress == 100
        assert [op.id for op in engine.list_operations()] == [operation.id]

    @pytest.mark.asyncio
    async def test_sync_without_handler_cancels_database_push(self, engine, sites):
        """Test that no conflict handler means the database push is cancelled."""
        create_posts_table(sites.source, [{'id': 1, 'title': 'New', 'body': ''}])
        create_posts_table(sites.target, [])

        operation = await engine.sync(
            Direction.PUSH, ComponentSelection(tables=['posts'])
        )

        assert operation.status == OperationStatus.COMPLETED
        assert operation.results[0].skipped is True
        assert read_rows(sites.target, 'posts') == []

    @pytest.mark.asyncio
    async def test_connectivity(self, engine, sites, monkeypatch):
        """Test connectivity check reports the chosen transports."""
        monkeypatch.setattr(
            'site_sync.migration.engine.TransportSelector',
            engine.orchestrator.selector_factory,
        )

        assert await engine.test_connectivity() == {'source': 'object', 'target': 'object'}

        sites.offline.add(sites.target_env.url)
        with pytest.raises(ConnectivityError):
            await engine.test_connectivity()
