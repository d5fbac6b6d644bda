"""Sync orchestration and component migrators."""

from .artifacts import ArtifactMigrator, ExtensionMigrator, ThemeMigrator
from .base import ComponentMigrator, MigrationContext
from .conflicts import ConflictDetector, ConflictResolver
from .database import DatabaseMigrator
from .engine import SyncEngine
from .events import EventBus, ProgressEvent
from .media import MediaMigrator
from .orchestrator import SyncOrchestrator
from .progress import EXECUTION_ORDER, PHASE_SHARES, ProgressPlan

__all__ = [
    'ArtifactMigrator',
    'ComponentMigrator',
    'ConflictDetector',
    'ConflictResolver',
    'DatabaseMigrator',
    'EXECUTION_ORDER',
    'EventBus',
    'ExtensionMigrator',
    'MediaMigrator',
    'MigrationContext',
    'PHASE_SHARES',
    'ProgressEvent',
    'ProgressPlan',
    'SyncEngine',
    'SyncOrchestrator',
    'ThemeMigrator',
]
