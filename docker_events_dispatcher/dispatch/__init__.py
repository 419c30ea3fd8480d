"""
Docker Events Dispatcher Dispatch Package
==========================================
The reconnecting dispatch loop and cooperative shutdown handling.
"""

from .loop import (
    QUICK_RETRY_SECONDS,
    DecodedEvent,
    DispatchLoop,
    LoopState,
    RetryPolicy,
    RetryState,
    decode_event,
)
from .signals import SHUTDOWN_SIGNALS, ShutdownController, signal_name

__all__ = [
    'QUICK_RETRY_SECONDS',
    'DecodedEvent',
    'DispatchLoop',
    'LoopState',
    'RetryPolicy',
    'RetryState',
    'decode_event',
    'SHUTDOWN_SIGNALS',
    'ShutdownController',
    'signal_name',
]
