"""Component migrator interface and shared context."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, Field

from ..api.registry import RegistryClient
from ..config.config import EnvironmentConfig, SyncConfig
from ..exceptions import AuthenticationError, ConnectivityError
from ..models.conflict import Conflict
from ..models.operation import ComponentKind, Direction, ItemResult
from ..transport.base import TransportStrategy


class MigrationContext(BaseModel):
    """Everything a migrator needs for one sync operation."""

    operation_id: str = Field(..., description='Operation identifier')
    source: EnvironmentConfig = Field(..., description='Source installation')
    target: EnvironmentConfig = Field(..., description='Target installation')
    source_transport: TransportStrategy = Field(
        ..., description='Transport bound to the source'
    )
    target_transport: TransportStrategy = Field(
        ..., description='Transport bound to the target'
    )
    registry: RegistryClient = Field(..., description='Public registry client')
    sync_config: SyncConfig = Field(default_factory=SyncConfig)

    # Filled by the database migrator, consumed by the orchestrator
    conflicts: List[Conflict] = Field(
        default_factory=list, description='Conflicts awaiting resolution'
    )

    class Config:
        """Pydantic configuration."""

        arbitrary_types_allowed = True

    def endpoints(
        self, direction: Direction
    ) -> Tuple[TransportStrategy, TransportStrategy]:
        """(sender, receiver) transports for a direction."""
        if direction == Direction.PUSH:
            return self.source_transport, self.target_transport
        return self.target_transport, self.source_transport


class ComponentMigrator(ABC):
    """Abstract base class for per-kind migrators."""

    kind: ComponentKind

    def __init__(self, context: MigrationContext):
        """Initialize migrator.

        Args:
            context: Migration context with transports and settings
        """
        self.context = context
        self.logger = logger.bind(component=self.__class__.__name__)

    async def push(self, name: str) -> ItemResult:
        """Move one item from source to target."""
        return await self.migrate(name, Direction.PUSH)

    async def pull(self, name: str) -> ItemResult:
        """Move one item from target back to source."""
        return await self.migrate(name, Direction.PULL)

    async def migrate(self, name: str, direction: Direction) -> ItemResult:
        """Run one item, turning non-fatal failures into a failed result.

        Raises:
            ConnectivityError: An installation cannot be reached at all
            AuthenticationError: A credential was rejected
        """
        sender, receiver = self.context.endpoints(direction)
        self.logger.info(f'{direction.value.title()} {self.kind.value} {name}')

        try:
            return await self.transfer(name, sender, receiver, direction)
        except (ConnectivityError, AuthenticationError):
            raise
        except Exception as e:
            self.logger.error(f'Failed to migrate {self.kind.value} {name}: {e}')
            return self.create_result(name, False, str(e), receiver, sender)

    @abstractmethod
    async def transfer(
        self,
        name: str,
        sender: TransportStrategy,
        receiver: TransportStrategy,
        direction: Direction,
    ) -> ItemResult:
        """Move one item from ``sender`` to ``receiver``."""
        pass

    def create_result(
        self,
        name: str,
        success: bool,
        message: str,
        receiver: Optional[TransportStrategy] = None,
        sender: Optional[TransportStrategy] = None,
        details: Optional[Dict[str, Any]] = None,
        skipped: bool = False,
    ) -> ItemResult:
        """Create a per-item result."""
        details = dict(details or {})
        if sender is not None:
            details.setdefault('sender_transport', sender.name)
        return ItemResult(
            kind=self.kind,
            name=name,
            success=success,
            message=message,
            transport_used=receiver.name if receiver is not None else None,
            skipped=skipped,
            details=details,
        )
