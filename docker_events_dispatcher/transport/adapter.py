"""
Transport Adapter for Docker Events Dispatcher
===============================================
HTTP connections to the docker daemon over TCP, TLS or a UNIX domain
socket, with one timeout contract for every variant.
"""

from __future__ import annotations

import logging
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.exceptions import (
    ConnectTimeoutError,
    MaxRetryError,
    NewConnectionError,
    ProtocolError as Urllib3ProtocolError,
    ReadTimeoutError,
)
from urllib3.util.ssl_ import create_urllib3_context
from urllib3.util.timeout import Timeout

from ..errors import (
    ConfigurationError,
    TransportError,
    TransportIOError,
    TransportTimeoutError,
)

# Configure module logger
logger = logging.getLogger(__name__)

# Used whenever a timeout option is absent or not a number
DEFAULT_TIMEOUT = 60

# Socket the docker daemon listens on by default
DEFAULT_SOCKET_URI = "unix:///var/run/docker.sock"

UNIX_SCHEME = "unix"

# Logical address for requests sent over a UNIX socket; only the Host
# header sees it.
SOCKET_HOST = "localhost"
SOCKET_PORT = 80

USER_AGENT = "docker-events-dispatcher"


def normalize_timeout(value: Any, default: float = DEFAULT_TIMEOUT) -> Optional[float]:
    """
    Resolve a timeout option.

    Args:
        value: Seconds, or None for no timeout
        default: Used for anything that is neither

    Returns:
        Seconds, or None for no timeout
    """
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        return default
    return value


@dataclass(frozen=True)
class ConnectionConfig:
    """Immutable transport configuration, built once at startup"""
    endpoint: str = DEFAULT_SOCKET_URI
    connect_timeout: Optional[float] = DEFAULT_TIMEOUT
    read_timeout: Optional[float] = DEFAULT_TIMEOUT
    write_timeout: Optional[float] = DEFAULT_TIMEOUT
    continue_timeout: Optional[float] = DEFAULT_TIMEOUT
    max_retries: int = 0
    cipher_list: Optional[str] = None
    debug_sink: Optional[Any] = field(default=None, compare=False)

    def __post_init__(self):
        for name in ("connect_timeout", "read_timeout", "write_timeout", "continue_timeout"):
            object.__setattr__(self, name, normalize_timeout(getattr(self, name)))

        retries = self.max_retries
        if isinstance(retries, bool) or not isinstance(retries, int) or retries < 0:
            object.__setattr__(self, "max_retries", 0)


@dataclass(frozen=True)
class Endpoint:
    """Where requests are physically sent"""
    base_url: str
    socket_path: Optional[str] = None

    @property
    def is_unix_socket(self) -> bool:
        return self.socket_path is not None


def parse_endpoint(uri: str) -> Endpoint:
    """
    Parse a base URI or ``unix://`` socket URI.

    Args:
        uri: e.g. ``unix:///var/run/docker.sock`` or ``http://10.0.0.2:2375``

    Returns:
        Endpoint describing the transport

    Raises:
        ConfigurationError: if the URI is malformed
    """
    if not isinstance(uri, str) or not uri.strip():
        raise ConfigurationError("Empty host URI.")

    uri = uri.strip()

    if uri.lower().startswith(UNIX_SCHEME + ":"):
        if uri[len(UNIX_SCHEME) + 1:len(UNIX_SCHEME) + 3] != "//":
            raise ConfigurationError(f"Not a UNIX socket URI: {uri}")
        socket_path = uri[len(UNIX_SCHEME) + 3:]
        if not socket_path:
            raise ConfigurationError(f"UNIX socket URI has no path: {uri}")
        return Endpoint(base_url=f"http://{SOCKET_HOST}", socket_path=socket_path)

    if "://" not in uri:
        uri = "http://" + uri

    parsed = urlparse(uri)
    if parsed.scheme.lower() not in ("http", "https"):
        raise ConfigurationError(f"Unsupported URI scheme: {parsed.scheme}")
    if not parsed.hostname:
        raise ConfigurationError(f"Host URI has no host: {uri}")

    return Endpoint(base_url=uri.rstrip("/"))


def _debug(sink: Optional[Any], text: str):
    if sink is not None:
        sink.write(text)


class TimeoutControl(ABC):
    """
    Timeout get/set contract shared by every connection variant.

    While a socket is open the value is read from and applied to the
    socket; otherwise it is kept for the next connect.
    """

    @abstractmethod
    def get_timeout(self) -> Optional[float]:
        """Current socket timeout in seconds, None meaning blocking"""

    @abstractmethod
    def set_timeout(self, timeout: Optional[float]) -> None:
        """Apply a timeout to the open socket and to future connects"""


def _get_timeout(conn: HTTPConnection) -> Optional[float]:
    if conn.sock is not None:
        return conn.sock.gettimeout()
    return Timeout.resolve_default_timeout(conn.timeout)


def _set_timeout(conn: HTTPConnection, timeout: Optional[float]):
    if conn.sock is not None:
        conn.sock.settimeout(timeout)
    conn.timeout = timeout


def _send(conn: HTTPConnection, data: Any, send):
    """Send with the configured write timeout, restoring the previous one after"""
    config: ConnectionConfig = conn.transport_config

    sock = conn.sock
    if sock is None:
        send(data)
    else:
        previous = sock.gettimeout()
        sock.settimeout(config.write_timeout)
        try:
            send(data)
        finally:
            if conn.sock is sock:
                sock.settimeout(previous)

    if isinstance(data, (bytes, bytearray)):
        _debug(config.debug_sink, f"-> {bytes(data)!r}\n")


class TcpConnection(HTTPConnection, TimeoutControl):
    """Plain HTTP over TCP"""

    def __init__(self, *args, transport_config: ConnectionConfig, **kwargs):
        super().__init__(*args, **kwargs)
        self.transport_config = transport_config

    def get_timeout(self) -> Optional[float]:
        return _get_timeout(self)

    def set_timeout(self, timeout: Optional[float]) -> None:
        _set_timeout(self, timeout)

    def send(self, data):
        _send(self, data, super().send)


class TlsConnection(HTTPSConnection, TimeoutControl):
    """HTTPS over TCP"""

    def __init__(self, *args, transport_config: ConnectionConfig, **kwargs):
        super().__init__(*args, **kwargs)
        self.transport_config = transport_config

    def get_timeout(self) -> Optional[float]:
        return _get_timeout(self)

    def set_timeout(self, timeout: Optional[float]) -> None:
        _set_timeout(self, timeout)

    def send(self, data):
        _send(self, data, super().send)


class UnixSocketConnection(TcpConnection):
    """HTTP over a UNIX domain socket; host and port are placeholders"""

    def __init__(self, *args, socket_path: str, **kwargs):
        super().__init__(*args, **kwargs)
        self.socket_path = socket_path

    def _new_conn(self) -> socket.socket:
        timeout = Timeout.resolve_default_timeout(self.timeout)
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)

        try:
            sock.settimeout(timeout)
            sock.connect(self.socket_path)
        except socket.timeout as e:
            sock.close()
            raise ConnectTimeoutError(
                self,
                f"Connection to {self.socket_path} timed out. (connect timeout={timeout})"
            ) from e
        except OSError as e:
            sock.close()
            raise NewConnectionError(
                self,
                f"Failed to establish a new connection to {self.socket_path}: {e}"
            ) from e

        return sock


class TcpConnectionPool(HTTPConnectionPool):
    ConnectionCls = TcpConnection


class TlsConnectionPool(HTTPSConnectionPool):
    ConnectionCls = TlsConnection


class UnixSocketConnectionPool(HTTPConnectionPool):
    ConnectionCls = UnixSocketConnection


class TcpTransportAdapter(HTTPAdapter):
    """
    Requests adapter that builds its own connection pools from a
    ConnectionConfig instead of going through urllib3's PoolManager.
    """

    def __init__(self, config: ConnectionConfig, endpoint: Endpoint):
        self.transport_config = config
        self.endpoint = endpoint
        self._pools: Dict[Tuple[str, Optional[str], Optional[int]], HTTPConnectionPool] = {}
        super().__init__(max_retries=config.max_retries, pool_connections=1, pool_maxsize=1)

    def _new_pool(self, scheme: str, host: str, port: Optional[int]) -> HTTPConnectionPool:
        if scheme == "https":
            return TlsConnectionPool(
                host,
                port,
                maxsize=1,
                transport_config=self.transport_config,
                ssl_context=create_urllib3_context(ciphers=self.transport_config.cipher_list)
            )
        return TcpConnectionPool(host, port, maxsize=1, transport_config=self.transport_config)

    def _pool_for(self, url: str) -> HTTPConnectionPool:
        parsed = urlparse(url)
        key = (parsed.scheme.lower(), parsed.hostname, parsed.port)

        pool = self._pools.get(key)
        if pool is None:
            pool = self._new_pool(*key)
            self._pools[key] = pool
        return pool

    def get_connection_with_tls_context(self, request, verify, proxies=None, cert=None):
        return self._pool_for(request.url)

    def get_connection(self, url, proxies=None):
        return self._pool_for(url)

    def build_response(self, req, resp):
        response = super().build_response(req, resp)

        if self.transport_config.debug_sink is not None:
            headers = "".join(f"<- {k}: {v}\n" for k, v in response.headers.items())
            _debug(self.transport_config.debug_sink, f"<- HTTP {response.status_code} {response.reason}\n{headers}")

        return response

    def close(self):
        super().close()
        for pool in self._pools.values():
            pool.close()
        self._pools.clear()


class UnixSocketTransportAdapter(TcpTransportAdapter):
    """Sends every request to the configured UNIX socket"""

    def _new_pool(self, scheme: str, host: str, port: Optional[int]) -> HTTPConnectionPool:
        return UnixSocketConnectionPool(
            SOCKET_HOST,
            SOCKET_PORT,
            maxsize=1,
            transport_config=self.transport_config,
            socket_path=self.endpoint.socket_path
        )


class DaemonConnection:
    """
    A configured connection to the daemon.

    Owns a requests session whose only adapter is the transport adapter
    chosen for the endpoint. Creating it does not touch the network.
    """

    def __init__(self, config: ConnectionConfig, endpoint: Endpoint, adapter: TcpTransportAdapter):
        self.config = config
        self.endpoint = endpoint
        self.adapter = adapter

        self.session = requests.Session()
        # Never route the daemon through HTTP(S)_PROXY
        self.session.trust_env = False
        self.session.headers.update({'User-Agent': USER_AGENT})
        for prefix in ("http://", "https://"):
            self.session.mount(prefix, adapter)

    def url(self, path: str) -> str:
        return self.endpoint.base_url + "/" + path.lstrip("/")

    def get(self, path: str, stream: bool = False, **kwargs) -> requests.Response:
        """
        Issue a GET request.

        Args:
            path: Request path, e.g. ``/events``
            stream: Deliver the body incrementally
            read_timeout: Overrides the configured read timeout (None for unbounded)

        Returns:
            The response; redirects are never followed
        """
        read_timeout = kwargs.pop("read_timeout", self.config.read_timeout)
        return self.session.get(
            self.url(path),
            stream=stream,
            timeout=(self.config.connect_timeout, read_timeout),
            allow_redirects=False,
            **kwargs
        )

    def close(self):
        self.session.close()

    def __enter__(self) -> "DaemonConnection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def open_connection(config: ConnectionConfig) -> DaemonConnection:
    """
    Build a connection for the configured endpoint.

    Raises:
        ConfigurationError: if the endpoint is malformed
    """
    endpoint = parse_endpoint(config.endpoint)

    if endpoint.is_unix_socket:
        adapter = UnixSocketTransportAdapter(config, endpoint)
    else:
        adapter = TcpTransportAdapter(config, endpoint)

    logger.debug(f"Opening connection to {endpoint.socket_path or endpoint.base_url}")
    return DaemonConnection(config, endpoint, adapter)


def _is_timeout(reason: Any) -> bool:
    if isinstance(reason, MaxRetryError):
        reason = reason.reason
    if isinstance(reason, NewConnectionError):
        return False
    return isinstance(reason, (ReadTimeoutError, ConnectTimeoutError, socket.timeout))


def classify_transport_error(error: BaseException) -> Optional[TransportError]:
    """
    Map a requests/urllib3/socket failure onto the dispatcher taxonomy.

    Returns:
        TransportTimeoutError or TransportIOError, or None if the error is
        not a transport failure
    """
    if isinstance(error, TransportError):
        return error

    if isinstance(error, (requests.exceptions.Timeout, socket.timeout, ReadTimeoutError)):
        return TransportTimeoutError(str(error))

    if isinstance(error, requests.exceptions.ConnectionError):
        reason = error.args[0] if error.args else None
        if _is_timeout(reason):
            return TransportTimeoutError(str(error))
        return TransportIOError(str(error))

    if isinstance(error, (requests.exceptions.ChunkedEncodingError, Urllib3ProtocolError, OSError)):
        return TransportIOError(str(error))

    return None


__all__ = [
    'DEFAULT_TIMEOUT',
    'DEFAULT_SOCKET_URI',
    'ConnectionConfig',
    'Endpoint',
    'TimeoutControl',
    'TcpConnection',
    'TlsConnection',
    'UnixSocketConnection',
    'TcpTransportAdapter',
    'UnixSocketTransportAdapter',
    'DaemonConnection',
    'normalize_timeout',
    'parse_endpoint',
    'open_connection',
    'classify_transport_error',
]
