"""Shared fixtures: SQLite-backed installations and in-process remote agents."""

import json
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table, Text

from site_sync.agent.installation import Installation
from site_sync.agent.service import RemoteAgent, error_status
from site_sync.api.client import APIResponse, _raise_for_status
from site_sync.api.exceptions import AgentConnectionError
from site_sync.api.registry import RegistryClient
from site_sync.config.agent import AgentConfig, AgentCredential
from site_sync.config.config import EnvironmentConfig, SyncConfig
from site_sync.migration.orchestrator import SyncOrchestrator
from site_sync.state.store import InMemoryOperationStore
from site_sync.transport.object import ObjectTransport
from site_sync.transport.selector import TransportSelector

REGISTRY_URL = 'https://registry.test'


def create_site_schema(engine) -> None:
    """Settings, media record and media metadata tables of a fresh site."""
    metadata = MetaData()
    Table(
        'wp_options',
        metadata,
        Column('option_id', Integer, primary_key=True),
        Column('option_name', String(191), nullable=False, unique=True),
        Column('option_value', Text),
    )
    Table(
        'wp_posts',
        metadata,
        Column('ID', Integer, primary_key=True),
        Column('post_type', String(20)),
        Column('post_title', Text),
    )
    Table(
        'wp_postmeta',
        metadata,
        Column('meta_id', Integer, primary_key=True),
        Column('post_id', Integer),
        Column('meta_key', String(255)),
        Column('meta_value', Text),
    )
    metadata.create_all(engine)


def create_posts_table(installation: Installation, rows) -> None:
    """A ``posts`` content table holding ``rows``."""
    metadata = MetaData()
    posts = Table(
        'posts',
        metadata,
        Column('id', Integer, primary_key=True),
        Column('title', String(200)),
        Column('body', Text),
    )
    metadata.create_all(installation.engine)
    if rows:
        with installation.engine.begin() as conn:
            conn.execute(posts.insert(), list(rows))


def read_rows(installation: Installation, table: str):
    """Rows of a table ordered by primary key."""
    snapshot = installation.snapshot_table(table)
    key = snapshot['primary_key']
    return sorted(snapshot['rows'], key=lambda row: [row[col] for col in key])


def write_artifact(installation: Installation, kind: str, name: str, files) -> Path:
    """Create an extension or theme directory from ``{relative path: text}``."""
    directory = installation.artifact_dir(kind, name)
    for relative, content in files.items():
        path = directory / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return directory


def add_attachment(
    installation: Installation, record_id: int, meta_id: int, relative: str, content=b''
) -> None:
    """One media record, its attached-file metadata and the file itself."""
    records = installation.reflect('wp_posts')
    meta = installation.reflect('wp_postmeta')
    with installation.engine.begin() as conn:
        conn.execute(
            records.insert().values(
                ID=record_id, post_type='attachment', post_title=relative
            )
        )
        conn.execute(
            meta.insert().values(
                meta_id=meta_id,
                post_id=record_id,
                meta_key='_wp_attached_file',
                meta_value=relative,
            )
        )
    if content is not None:
        path = installation.media_root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)


class LocalAgentClient:
    """Stands in for AgentClient by dispatching into an in-process RemoteAgent.

    Bodies and responses pass through JSON so payloads look exactly as they
    would on the wire; agent errors become the HTTP error they map to.
    """

    def __init__(self, agent: RemoteAgent):
        self.agent = agent
        self.offline = False
        self.calls = []
        self.closed = False

    async def _call(self, endpoint, data):
        self.calls.append(endpoint)
        if self.offline:
            raise AgentConnectionError('Network error: Connection refused')

        body = json.loads(json.dumps(data)) if data is not None else {}
        try:
            result = self.agent.handle(endpoint, body)
        except Exception as e:
            _raise_for_status(error_status(e), {'message': str(e)})
            raise
        return APIResponse(
            status_code=200,
            data=json.loads(json.dumps(result)),
            headers={'Content-Type': 'application/json'},
            success=True,
        )

    async def get_async(self, endpoint, **kwargs):
        return await self._call(endpoint, None)

    async def post_async(self, endpoint, data=None, **kwargs):
        return await self._call(endpoint, data)

    def close(self):
        self.closed = True


@pytest.fixture
def make_installation(tmp_path):
    """Factory building an installation rooted in ``tmp_path/<name>``."""

    def factory(name: str) -> Installation:
        root = tmp_path / name
        root.mkdir()
        config = AgentConfig(
            root_path=str(root),
            database_url=f'sqlite:///{tmp_path / (name + ".db")}',
            credentials=[
                AgentCredential(username='admin', token='secret'),
                AgentCredential(username='editor', token='editor-token', is_admin=False),
            ],
            registry_url=REGISTRY_URL,
        )
        installation = Installation(config)
        create_site_schema(installation.engine)
        return installation

    return factory


@pytest.fixture
def sites(make_installation):
    """Source and target installations with their agents and descriptors."""
    source = make_installation('source')
    target = make_installation('target')
    source_env = EnvironmentConfig(
        url='https://source.test', username='admin', app_token='secret'
    )
    target_env = EnvironmentConfig(
        url='https://target.test', username='admin', app_token='secret'
    )
    return SimpleNamespace(
        source=source,
        target=target,
        source_env=source_env,
        target_env=target_env,
        agents={
            source_env.url: RemoteAgent(source),
            target_env.url: RemoteAgent(target),
        },
        offline=set(),
        clients=[],
    )


@pytest.fixture
def selector_factory(sites):
    """Builds per-operation selectors whose object transports reach the local agents."""

    def object_factory(environment, transport_config=None):
        client = LocalAgentClient(sites.agents[environment.url])
        client.offline = environment.url in sites.offline
        sites.clients.append(client)
        return ObjectTransport(environment, transport_config, client=client)

    def factory(transport_config):
        return TransportSelector(transport_config, object_factory=object_factory)

    return factory


@pytest.fixture
def registry():
    """Registry that knows no artifacts unless a test says otherwise."""
    client = MagicMock(spec=RegistryClient)
    client.is_available.return_value = False
    return client


@pytest.fixture
def sync_config(tmp_path):
    return SyncConfig(
        temp_dir=str(tmp_path / 'staging'), state_dir=str(tmp_path / 'state')
    )


@pytest.fixture
def orchestrator(sync_config, registry, selector_factory):
    return SyncOrchestrator(
        sync_config=sync_config,
        store=InMemoryOperationStore(),
        registry=registry,
        selector_factory=selector_factory,
    )
