"""
Docker Events Dispatcher Transport Package
===========================================
Connections to the docker daemon and the streaming events client.
"""

from .adapter import (
    DEFAULT_SOCKET_URI,
    DEFAULT_TIMEOUT,
    ConnectionConfig,
    DaemonConnection,
    Endpoint,
    TimeoutControl,
    classify_transport_error,
    normalize_timeout,
    open_connection,
    parse_endpoint,
)
from .client import StreamBuffer, StreamingClient, decode_line

__all__ = [
    'DEFAULT_SOCKET_URI',
    'DEFAULT_TIMEOUT',
    'ConnectionConfig',
    'DaemonConnection',
    'Endpoint',
    'TimeoutControl',
    'classify_transport_error',
    'normalize_timeout',
    'open_connection',
    'parse_endpoint',
    'StreamBuffer',
    'StreamingClient',
    'decode_line',
]
