"""Transport strategies moving data between the control host and installations."""

from .base import RemoteCommand, TransferReport, TransportStrategy, TreeDirection
from .object import ObjectTransport
from .selector import TransportSelector
from .shell import ShellTransport

__all__ = [
    'ObjectTransport',
    'RemoteCommand',
    'ShellTransport',
    'TransferReport',
    'TransportSelector',
    'TransportStrategy',
    'TreeDirection',
]
