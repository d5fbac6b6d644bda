"""Conflict detection and resolution for database pushes."""

import json
from typing import Any, Dict, List

from loguru import logger

from ..exceptions import AuthenticationError, ConnectivityError
from ..models.conflict import Conflict, ConflictKind, Resolution
from ..models.operation import ComponentKind, ItemResult
from ..models.payload import TransferPayload
from ..transport.base import TransportStrategy


def _row_key(row: Dict[str, Any], primary_key: List[str]) -> str:
    return json.dumps([row.get(col) for col in primary_key], sort_keys=True, default=str)


class ConflictDetector:
    """Compares table snapshots of the push source and the target.

    Detection is deliberately coarse: rows only on the source form one
    group, rows on both sides that differ form another. Rows that exist
    only on the target are not reported.
    """

    def __init__(self):
        self.logger = logger.bind(component='ConflictDetector')

    def detect(
        self,
        table: str,
        source_snapshot: Dict[str, Any],
        target_snapshot: Dict[str, Any],
    ) -> List[Conflict]:
        """Conflicts for one table; empty when both sides match.

        Args:
            table: Table name
            source_snapshot: ``{'primary_key': [...], 'rows': [...]}`` of the source
            target_snapshot: Same shape, taken on the target
        """
        primary_key = source_snapshot.get('primary_key') or target_snapshot.get(
            'primary_key'
        ) or []

        target_rows = {
            _row_key(row, primary_key): row for row in target_snapshot.get('rows', [])
        }

        new_rows = []
        updated_source, updated_target = [], []
        for row in source_snapshot.get('rows', []):
            key = _row_key(row, primary_key)
            other = target_rows.get(key)
            if other is None:
                new_rows.append(row)
            elif other != row:
                updated_source.append(row)
                updated_target.append(other)

        conflicts = []
        if new_rows:
            conflicts.append(
                Conflict(
                    id=f'{table}:{ConflictKind.NEW_ROW_GROUP.value}',
                    kind=ConflictKind.NEW_ROW_GROUP,
                    table=table,
                    count=len(new_rows),
                    description=f'{len(new_rows)} rows exist only on the source in {table}',
                    primary_key=primary_key,
                    source_rows=new_rows,
                )
            )
        if updated_source:
            conflicts.append(
                Conflict(
                    id=f'{table}:{ConflictKind.UPDATED_ROW_GROUP.value}',
                    kind=ConflictKind.UPDATED_ROW_GROUP,
                    table=table,
                    count=len(updated_source),
                    description=(
                        f'{len(updated_source)} rows differ between source and '
                        f'target in {table}'
                    ),
                    primary_key=primary_key,
                    source_rows=updated_source,
                    target_rows=updated_target,
                )
            )

        self.logger.info(f'Table {table}: {len(conflicts)} conflict groups')
        return conflicts


class ConflictResolver:
    """Applies operator resolutions, in list order."""

    def __init__(self, source: TransportStrategy, target: TransportStrategy):
        self.source = source
        self.target = target
        self.logger = logger.bind(component='ConflictResolver')

    async def _apply_rows(
        self,
        transport: TransportStrategy,
        conflict: Conflict,
        upsert: List[Dict[str, Any]] = None,
        delete: List[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload = TransferPayload(
            kind='rows',
            name=conflict.table,
            metadata={
                'primary_key': conflict.primary_key,
                'upsert': upsert or [],
                'delete': delete or [],
            },
        )
        return await transport.send_object(payload, 'apply-rows')

    async def apply_one(self, conflict: Conflict) -> ItemResult:
        """Apply a single resolved conflict."""
        name = f'{conflict.table} ({conflict.kind.value})'
        resolution = conflict.resolution

        if resolution == Resolution.UNSET:
            raise ValueError(f'Conflict {conflict.id} has no resolution')

        if resolution == Resolution.SKIP:
            return ItemResult(
                kind=ComponentKind.TABLE,
                name=name,
                success=True,
                skipped=True,
                message=f'Skipped {conflict.count} rows in {conflict.table}',
            )

        if resolution == Resolution.PUSH:
            transport = self.target
            response = await self._apply_rows(
                transport, conflict, upsert=conflict.source_rows
            )
            message = f'Pushed {conflict.count} rows to target {conflict.table}'
        elif conflict.kind == ConflictKind.UPDATED_ROW_GROUP:
            transport = self.source
            response = await self._apply_rows(
                transport, conflict, upsert=conflict.target_rows
            )
            message = f'Restored {conflict.count} rows from target into source {conflict.table}'
        else:
            transport = self.source
            response = await self._apply_rows(
                transport, conflict, delete=conflict.source_rows
            )
            message = f'Discarded {conflict.count} source-only rows in {conflict.table}'

        return ItemResult(
            kind=ComponentKind.TABLE,
            name=name,
            success=True,
            message=message,
            transport_used=transport.name,
            details={'resolution': resolution.value, 'applied': response},
        )

    async def apply(self, conflicts: List[Conflict]) -> List[ItemResult]:
        """Apply every conflict; one failure does not stop the rest."""
        results = []
        for conflict in conflicts:
            try:
                results.append(await self.apply_one(conflict))
            except (ConnectivityError, AuthenticationError):
                raise
            except Exception as e:
                self.logger.error(f'Failed to apply conflict {conflict.id}: {e}')
                results.append(
                    ItemResult(
                        kind=ComponentKind.TABLE,
                        name=f'{conflict.table} ({conflict.kind.value})',
                        success=False,
                        message=str(e),
                        details={'resolution': conflict.resolution.value},
                    )
                )
        return results
