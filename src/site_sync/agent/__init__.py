"""Remote agent running on each installation."""

from .installation import Installation
from .server import create_app, run_server
from .service import RemoteAgent, error_status

__all__ = ['Installation', 'RemoteAgent', 'create_app', 'error_status', 'run_server']
