"""Per-operation transport selection."""

from typing import Dict, List, Optional

from loguru import logger

from ..config.config import EnvironmentConfig, TransportConfig
from ..exceptions import ConnectivityError
from .base import TransportStrategy
from .object import ObjectTransport
from .shell import ShellTransport


class TransportSelector:
    """Chooses a transport per environment and keeps that choice.

    Shell access is probed first; when no shell credential is configured or
    the probe fails, the object transport is used instead. One selector
    lives for exactly one sync operation, so the decision is never revisited
    mid-operation.
    """

    def __init__(
        self,
        transport_config: Optional[TransportConfig] = None,
        shell_factory=ShellTransport,
        object_factory=ObjectTransport,
    ):
        self.transport_config = transport_config or TransportConfig()
        self.shell_factory = shell_factory
        self.object_factory = object_factory
        self._selected: Dict[str, TransportStrategy] = {}
        self.logger = logger.bind(component='TransportSelector')

    @staticmethod
    def _key(environment: EnvironmentConfig) -> str:
        shell = environment.shell
        return f'{environment.url}|{shell.host if shell else ""}|{shell.port if shell else ""}'

    async def select(self, environment: EnvironmentConfig) -> TransportStrategy:
        """Transport bound to ``environment`` for this operation.

        Raises:
            ConnectivityError: If neither transport can be used
        """
        key = self._key(environment)
        if key in self._selected:
            return self._selected[key]

        if environment.shell is not None and await self.shell_factory.is_available(
            environment.shell, timeout=self.transport_config.control_timeout
        ):
            transport = self.shell_factory(environment, self.transport_config)
        elif environment.url:
            if environment.shell is not None:
                self.logger.warning(
                    f'Shell access to {environment.label} unavailable, '
                    'falling back to object transport'
                )
            transport = self.object_factory(environment, self.transport_config)
        else:
            raise ConnectivityError(
                f'No usable transport for {environment.label}: shell access failed '
                'and no base URL is configured'
            )

        self.logger.info(f'Selected {transport.name} transport for {environment.label}')
        self._selected[key] = transport
        return transport

    @property
    def selected(self) -> List[TransportStrategy]:
        return list(self._selected.values())

    async def close(self) -> None:
        """Close every transport handed out."""
        for transport in self._selected.values():
            await transport.close()
        self._selected.clear()
