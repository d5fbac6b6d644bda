"""Configuration models."""

from .config import (
    Config,
    DatabaseCredential,
    EnvironmentConfig,
    LoggingConfig,
    ShellCredential,
    SyncConfig,
    TransportConfig,
)
from .agent import AgentConfig, AgentCredential

__all__ = [
    'Config',
    'DatabaseCredential',
    'EnvironmentConfig',
    'LoggingConfig',
    'ShellCredential',
    'SyncConfig',
    'TransportConfig',
    'AgentConfig',
    'AgentCredential',
]
