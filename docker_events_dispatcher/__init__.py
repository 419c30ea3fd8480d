"""Docker Events Dispatcher - runs hook executables for every docker daemon event"""

__version__ = "1.0.0"

from .dispatch import DispatchLoop, RetryPolicy
from .hooks import HookRunner
from .transport import ConnectionConfig, StreamingClient, open_connection

__all__ = [
    "DispatchLoop",
    "RetryPolicy",
    "HookRunner",
    "ConnectionConfig",
    "StreamingClient",
    "open_connection",
]
