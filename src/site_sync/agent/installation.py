"""Filesystem and database access to one local installation."""

import base64
import datetime
import decimal
import json
import shutil
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import requests
from loguru import logger
from sqlalchemy import MetaData, Table, create_engine, inspect, literal_column, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError
from sqlalchemy.schema import CreateTable

from ..api.registry import RegistryClient
from ..config.agent import AgentConfig
from ..exceptions import ArtifactNotFoundError, ComponentError, InvalidRequest
from ..models.payload import TransferPayload
from ..utils.archive import pack_directory, pack_files, unpack_archive

ARTIFACT_KINDS = ('extension', 'theme')


def to_json_value(value: Any) -> Any:
    """Convert a database value into something JSON can carry."""
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {'__bytes__': base64.b64encode(bytes(value)).decode('ascii')}
    return value


def _python_type(column) -> Optional[type]:
    try:
        return column.type.python_type
    except NotImplementedError:
        return None


def from_json_value(column, value: Any) -> Any:
    """Inverse of :func:`to_json_value` for one column."""
    if value is None:
        return None
    if isinstance(value, dict) and '__bytes__' in value:
        return base64.b64decode(value['__bytes__'])

    python_type = _python_type(column)
    if isinstance(value, str):
        if python_type is datetime.datetime:
            return datetime.datetime.fromisoformat(value)
        if python_type is datetime.date:
            return datetime.date.fromisoformat(value)
        if python_type is datetime.time:
            return datetime.time.fromisoformat(value)
        if python_type is decimal.Decimal:
            return decimal.Decimal(value)
    return value


def binary_literal(dialect, value) -> str:
    """Hex literal for a binary value in the given SQL dialect."""
    data = bytes(value).hex()
    if dialect.name == 'postgresql':
        return f"'\\x{data}'::bytea"
    if dialect.name == 'mssql':
        return f'0x{data}'
    return f"X'{data}'"


def _literal_row(dialect, row: Dict[str, Any]) -> Dict[str, Any]:
    # Binary values have no generic literal rendering
    return {
        key: literal_column(binary_literal(dialect, value))
        if isinstance(value, (bytes, bytearray, memoryview))
        else value
        for key, value in row.items()
    }


class Installation:
    """One installation: its root directory and its site database."""

    def __init__(self, config: AgentConfig, engine: Optional[Engine] = None):
        self.config = config
        self.root = Path(config.root_path)
        self.engine = engine or create_engine(config.database_url)
        self.logger = logger.bind(component='Installation')

    # Paths

    def _artifact_base(self, kind: str) -> Path:
        layout = self.config.layout
        if kind == 'extension':
            return self.root / layout.extensions_dir
        if kind == 'theme':
            return self.root / layout.themes_dir
        raise InvalidRequest(f'Unsupported artifact kind: {kind}')

    def artifact_dir(self, kind: str, name: str) -> Path:
        """Directory holding one extension or theme."""
        if not name or '/' in name or '\\' in name or name in ('.', '..'):
            raise InvalidRequest(f'Invalid artifact name: {name!r}')
        return self._artifact_base(kind) / name

    @property
    def media_root(self) -> Path:
        return self.root / self.config.layout.media_dir

    def resolve_path(self, path: str) -> Path:
        """Resolve an absolute or root-relative path, refusing to leave the root."""
        root = self.root.resolve()
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = root / candidate
        candidate = candidate.resolve()
        if candidate != root and root not in candidate.parents:
            raise InvalidRequest(f'Path is outside the installation root: {path}')
        return candidate

    # Artifacts

    def has_artifact(self, kind: str, name: str) -> bool:
        return self.artifact_dir(kind, name).is_dir()

    def export_artifact(self, kind: str, name: str) -> TransferPayload:
        """Archive one extension or theme directory."""
        directory = self.artifact_dir(kind, name)
        if not directory.is_dir():
            raise ArtifactNotFoundError(
                f'{kind.title()} {name} is not installed', component=kind, item=name
            )

        archive = pack_directory(directory)
        self.logger.info(f'Exported {kind} {name} ({len(archive)} bytes)')
        return TransferPayload(kind=kind, name=name, archive=archive)

    def import_artifact(self, payload: TransferPayload) -> List[str]:
        """Replace one extension or theme directory with the payload's archive."""
        if payload.archive is None:
            raise InvalidRequest(f'No archive received for {payload.kind} {payload.name}')

        directory = self.artifact_dir(payload.kind, payload.name)
        files = unpack_archive(payload.archive, directory, clean=True)
        self.logger.info(f'Imported {payload.kind} {payload.name} ({len(files)} files)')
        return files

    def install_from_registry(self, kind: str, name: str, registry_url: str) -> List[str]:
        """Download an artifact from the public registry and unpack it."""
        registry = RegistryClient(registry_url)
        link = registry.download_link(kind, name)
        if not link:
            raise ArtifactNotFoundError(
                f'{kind.title()} {name} is not available in the registry',
                component=kind,
                item=name,
            )

        try:
            response = requests.get(link, timeout=registry.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ComponentError(
                f'Failed to download {kind} {name}: {e}', component=kind, item=name
            )

        directory = self.artifact_dir(kind, name)
        if directory.exists():
            shutil.rmtree(directory)

        # Registry archives carry the artifact directory as their top-level entry
        files = unpack_archive(response.content, self._artifact_base(kind))
        self.logger.info(f'Installed {kind} {name} from registry ({len(files)} files)')
        return files

    # Settings

    def _settings_table(self) -> Table:
        return self.reflect(self.config.settings.table)

    def get_option(self, key: str) -> Optional[str]:
        table = self._settings_table()
        cfg = self.config.settings
        with self.engine.connect() as conn:
            return conn.execute(
                select(table.c[cfg.value_column]).where(table.c[cfg.key_column] == key)
            ).scalar()

    def _set_option(self, conn: Connection, table: Table, key: str, value: Any) -> None:
        cfg = self.config.settings
        key_col = table.c[cfg.key_column]
        exists = conn.execute(select(key_col).where(key_col == key)).first()
        if exists:
            conn.execute(
                table.update().where(key_col == key).values({cfg.value_column: value})
            )
        else:
            conn.execute(
                table.insert().values({cfg.key_column: key, cfg.value_column: value})
            )

    def get_settings(self, prefix: str) -> Dict[str, Any]:
        """Settings whose keys start with ``prefix``."""
        if not prefix:
            raise InvalidRequest('A settings prefix is required')

        table = self._settings_table()
        cfg = self.config.settings
        key_col = table.c[cfg.key_column]
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(key_col, table.c[cfg.value_column]).where(
                    key_col.startswith(prefix, autoescape=True)
                )
            ).all()
        return {row[0]: row[1] for row in rows}

    def put_settings(self, settings: Dict[str, Any]) -> int:
        """Create or overwrite settings."""
        table = self._settings_table()
        with self.engine.begin() as conn:
            for key, value in settings.items():
                self._set_option(conn, table, key, value)
        return len(settings)

    # Activation

    def active_extensions(self) -> List[str]:
        raw = self.get_option(self.config.settings.active_extensions_key)
        if not raw:
            return []
        try:
            value = json.loads(raw)
        except ValueError:
            self.logger.warning('Active extensions setting is not a JSON list')
            return []
        return [str(v) for v in value] if isinstance(value, list) else []

    def is_active(self, kind: str, name: str) -> bool:
        if kind == 'extension':
            return name in self.active_extensions()
        if kind == 'theme':
            return self.get_option(self.config.settings.active_theme_key) == name
        raise InvalidRequest(f'Unsupported artifact kind: {kind}')

    def activate(self, kind: str, name: str) -> None:
        """Mark an installed artifact active."""
        if not self.has_artifact(kind, name):
            raise ArtifactNotFoundError(
                f'Cannot activate {kind} {name}: not installed', component=kind, item=name
            )

        cfg = self.config.settings
        if kind == 'extension':
            active = self.active_extensions()
            if name in active:
                return
            active.append(name)
            self.put_settings({cfg.active_extensions_key: json.dumps(active)})
        else:
            self.put_settings({cfg.active_theme_key: name})
        self.logger.info(f'Activated {kind} {name}')

    def artifact_state(self, kind: str, name: str) -> Dict[str, bool]:
        installed = self.has_artifact(kind, name)
        return {'installed': installed, 'active': installed and self.is_active(kind, name)}

    # Tables

    def table_exists(self, name: str) -> bool:
        return inspect(self.engine).has_table(name)

    def reflect(self, name: str) -> Table:
        try:
            return Table(name, MetaData(), autoload_with=self.engine)
        except NoSuchTableError:
            raise ArtifactNotFoundError(
                f'Table {name} does not exist', component='table', item=name
            )

    @staticmethod
    def primary_key(table: Table) -> List[str]:
        """Primary key columns; all columns when the table has none."""
        columns = [c.name for c in table.primary_key.columns]
        return columns or [c.name for c in table.columns]

    def _rows(self, table: Table) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            result = conn.execute(select(table))
            return [dict(row._mapping) for row in result]

    def export_table(self, name: str, drop_existing: bool = True) -> TransferPayload:
        """Structure statement plus one insert statement per current row.

        Rows are read in one pass without pagination, so a table written to
        during the export may produce an inconsistent stream.
        """
        table = self.reflect(name)
        dialect = self.engine.dialect
        rows = self._rows(table)

        statements = []
        if drop_existing:
            quoted = dialect.identifier_preparer.quote(name)
            statements.append(f'DROP TABLE IF EXISTS {quoted}')
        statements.append(str(CreateTable(table).compile(dialect=dialect)).strip())

        for row in rows:
            statement = table.insert().values(**_literal_row(dialect, row))
            statements.append(
                str(
                    statement.compile(
                        dialect=dialect, compile_kwargs={'literal_binds': True}
                    )
                )
            )

        self.logger.info(f'Exported table {name}: {len(rows)} rows')
        return TransferPayload(
            kind='table',
            name=name,
            statements=statements,
            metadata={'primary_key': self.primary_key(table), 'row_count': len(rows)},
        )

    def snapshot_table(self, name: str) -> Dict[str, Any]:
        """Primary key and JSON-safe rows of a table, for comparison."""
        table = self.reflect(name)
        rows = [
            {key: to_json_value(value) for key, value in row.items()}
            for row in self._rows(table)
        ]
        return {'primary_key': self.primary_key(table), 'rows': rows}

    def import_statements(self, name: str, statements: Iterable[str]) -> int:
        """Execute a statement stream in one transaction.

        Raises:
            ComponentError: If any statement fails; nothing is applied
        """
        count = 0
        try:
            with self.engine.begin() as conn:
                conn = conn.execution_options(no_parameters=True)
                for statement in statements:
                    conn.exec_driver_sql(statement)
                    count += 1
        except SQLAlchemyError as e:
            raise ComponentError(
                f'Import of table {name} failed at statement {count + 1}: {e}',
                component='table',
                item=name,
            )

        self.logger.info(f'Imported table {name}: {count} statements')
        return count

    def apply_rows(
        self,
        name: str,
        primary_key: List[str],
        upsert: Optional[List[Dict[str, Any]]] = None,
        delete: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, int]:
        """Insert or overwrite rows and delete rows, matched by primary key."""
        table = self.reflect(name)
        counts = {'inserted': 0, 'updated': 0, 'deleted': 0}

        def where(row):
            return [
                table.c[col] == from_json_value(table.c[col], row[col])
                for col in primary_key
            ]

        try:
            with self.engine.begin() as conn:
                for row in upsert or []:
                    values = {
                        col: from_json_value(table.c[col], value)
                        for col, value in row.items()
                        if col in table.c
                    }
                    exists = conn.execute(select(table).where(*where(row))).first()
                    if exists:
                        conn.execute(table.update().where(*where(row)).values(values))
                        counts['updated'] += 1
                    else:
                        conn.execute(table.insert().values(values))
                        counts['inserted'] += 1

                for row in delete or []:
                    result = conn.execute(table.delete().where(*where(row)))
                    counts['deleted'] += result.rowcount or 0
        except (SQLAlchemyError, KeyError) as e:
            raise ComponentError(
                f'Applying rows to {name} failed: {e}', component='table', item=name
            )

        self.logger.info(f'Applied rows to {name}: {counts}')
        return counts

    # Media

    def export_media(self) -> TransferPayload:
        """Archive every media file plus its record and metadata rows."""
        media = self.config.media
        records_table = self.reflect(media.records_table)
        meta_table = self.reflect(media.meta_table)

        with self.engine.connect() as conn:
            records = [
                dict(row._mapping)
                for row in conn.execute(
                    select(records_table).where(
                        records_table.c[media.type_column] == media.type_value
                    )
                )
            ]
            ids = [r[media.record_id_column] for r in records]
            meta = []
            if ids:
                meta = [
                    dict(row._mapping)
                    for row in conn.execute(
                        select(meta_table).where(
                            meta_table.c[media.meta_record_column].in_(ids)
                        )
                    )
                ]

        files: Dict[str, Path] = {}
        missing = []
        for row in meta:
            if row[media.meta_key_column] != media.path_meta_key:
                continue
            relative = str(row[media.meta_value_column] or '').lstrip('/')
            if not relative:
                continue
            path = self.media_root / relative
            if path.is_file():
                files[relative] = path
            else:
                missing.append(relative)

        if missing:
            self.logger.warning(f'{len(missing)} media files referenced but missing')

        self.logger.info(f'Exported media: {len(records)} records, {len(files)} files')
        return TransferPayload(
            kind='media',
            name='media',
            archive=pack_files(files),
            metadata={
                'records': [
                    {k: to_json_value(v) for k, v in r.items()} for r in records
                ],
                'meta': [{k: to_json_value(v) for k, v in m.items()} for m in meta],
                'missing_files': missing,
            },
        )

    def _insert_missing(
        self, conn: Connection, table: Table, id_column: str, rows: List[Dict[str, Any]]
    ) -> int:
        inserted = 0
        key = table.c[id_column]
        for row in rows:
            row_id = from_json_value(key, row[id_column])
            if conn.execute(select(key).where(key == row_id)).first():
                continue
            conn.execute(
                table.insert().values(
                    {
                        col: from_json_value(table.c[col], value)
                        for col, value in row.items()
                        if col in table.c
                    }
                )
            )
            inserted += 1
        return inserted

    def import_media(self, payload: TransferPayload) -> Dict[str, int]:
        """Unpack media files and insert records missing by primary identifier.

        Applying the same payload again leaves the database unchanged.
        """
        media = self.config.media
        files = []
        if payload.archive:
            files = unpack_archive(payload.archive, self.media_root)

        records_table = self.reflect(media.records_table)
        meta_table = self.reflect(media.meta_table)
        try:
            with self.engine.begin() as conn:
                records = self._insert_missing(
                    conn,
                    records_table,
                    media.record_id_column,
                    payload.metadata.get('records', []),
                )
                meta = self._insert_missing(
                    conn, meta_table, media.meta_id_column, payload.metadata.get('meta', [])
                )
        except (SQLAlchemyError, KeyError) as e:
            raise ComponentError(f'Media import failed: {e}', component='media', item='media')

        counts = {'files': len(files), 'records_inserted': records, 'meta_inserted': meta}
        self.logger.info(f'Imported media: {counts}')
        return counts

    # Trees

    def export_tree(self, path: str) -> TransferPayload:
        directory = self.resolve_path(path)
        if not directory.is_dir():
            raise ArtifactNotFoundError(f'Directory not found: {path}', item=path)
        return TransferPayload(
            kind='tree', name=path, archive=pack_directory(directory), metadata={'path': path}
        )

    def import_tree(self, payload: TransferPayload) -> List[str]:
        """Make a directory mirror the payload archive, deleting extra files."""
        path = payload.metadata.get('path') or payload.name
        if payload.archive is None or not path:
            raise InvalidRequest('Tree payload needs a path and an archive')
        return unpack_archive(payload.archive, self.resolve_path(path), clean=True)
