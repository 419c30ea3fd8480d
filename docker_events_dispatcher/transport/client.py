"""
Streaming Client for Docker Events Dispatcher
==============================================
Reads the daemon's ``/events`` feed and reassembles the raw chunks into
complete newline-delimited event lines.
"""

from __future__ import annotations

from typing import Callable, Iterator, Optional

import requests

from ..errors import ProtocolError, TransportIOError
from ..utils.logger import DispatcherLogger, get_logger
from .adapter import DaemonConnection, classify_transport_error

EVENTS_PATH = "/events"
VERSION_PATH = "/version"

REDIRECT_STATUSES = (301, 302)

# Lines are split on this byte; UTF-8 never uses it inside a character
NEWLINE = b"\n"

# How event bytes become text without losing anything
LINE_ENCODING = "utf-8"
LINE_ERRORS = "surrogateescape"


class StreamBuffer:
    """
    Accumulates feed bytes and hands out complete lines.

    Holds only the unterminated tail of everything fed since the last
    emitted line. Lines are yielded one at a time and the tail is trimmed
    as each is yielded, so a consumer that stops early loses nothing.
    """

    def __init__(self):
        self._buffer = bytearray()

    @property
    def pending(self) -> bytes:
        """Bytes received after the last newline"""
        return bytes(self._buffer)

    def reset(self):
        self._buffer.clear()

    def feed(self, chunk: bytes) -> Iterator[bytes]:
        """
        Append a chunk and yield every line it completes.

        Args:
            chunk: Raw bytes exactly as received

        Yields:
            Each complete line, without its newline
        """
        self._buffer += chunk

        while True:
            index = self._buffer.find(NEWLINE)
            if index < 0:
                return

            line = bytes(self._buffer[:index])
            del self._buffer[:index + 1]
            yield line


def decode_line(line: bytes) -> str:
    """Text form of one event line; ``os.fsencode`` gives the bytes back"""
    return line.decode(LINE_ENCODING, LINE_ERRORS)


class StreamingClient:
    """
    Issues the long-lived events request over one DaemonConnection.

    The client never retries; every failure propagates to the caller,
    classified as a transport IO or timeout failure where applicable.
    """

    def __init__(self, connection: DaemonConnection, log: Optional[DispatcherLogger] = None):
        self.connection = connection
        self.log = log or get_logger(__name__)
        self.buffer = StreamBuffer()

    def stream_events(self, on_event: Callable[[str], None]):
        """
        Stream events until the connection fails.

        ``on_event`` runs synchronously between chunk reads; nothing is
        read from the connection while it executes.

        Args:
            on_event: Called with each event line

        Raises:
            ProtocolError: on a non-success, non-redirect status
            TransportIOError: on socket failure or when the feed ends
            TransportTimeoutError: on connect or read timeout
        """
        self.buffer.reset()

        try:
            response = self.connection.get(EVENTS_PATH, stream=True, read_timeout=None)
        except (requests.exceptions.RequestException, OSError) as e:
            classified = classify_transport_error(e)
            if classified is None:
                raise
            raise classified from e

        # on_event errors are not transport failures and pass through as-is
        try:
            self._consume(response, on_event)
        finally:
            response.close()

        raise TransportIOError("Event stream closed by the daemon.")

    def _consume(self, response: requests.Response, on_event: Callable[[str], None]):
        status = response.status_code

        if status in REDIRECT_STATUSES:
            self.log.verbose("Redirecting.")
            # Redirects are not followed; keep waiting on this connection
            for _ in self._chunks(response):
                pass
            return

        if status != 200:
            raise ProtocolError(status)

        for chunk in self._chunks(response):
            for line in self.buffer.feed(chunk):
                on_event(decode_line(line))

    def _chunks(self, response: requests.Response) -> Iterator[bytes]:
        """Body chunks as they arrive, with read failures classified"""
        try:
            yield from response.iter_content(chunk_size=None)
        except (requests.exceptions.RequestException, OSError) as e:
            classified = classify_transport_error(e)
            if classified is None:
                raise
            raise classified from e

    def get_version(self) -> str:
        """
        Fetch the daemon's ``/version`` body.

        Raises:
            ProtocolError: on a non-200 status
        """
        try:
            response = self.connection.get(VERSION_PATH)
        except (requests.exceptions.RequestException, OSError) as e:
            classified = classify_transport_error(e)
            if classified is None:
                raise
            raise classified from e

        if response.status_code != 200:
            raise ProtocolError(response.status_code)
        return response.text


__all__ = [
    'EVENTS_PATH',
    'VERSION_PATH',
    'StreamBuffer',
    'StreamingClient',
    'decode_line',
]
