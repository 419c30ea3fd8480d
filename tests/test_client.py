"""Tests for the streaming client and its line framing"""

import io
import os
import socket
import tempfile
import threading

import pytest
import requests
from urllib3.exceptions import ReadTimeoutError

from docker_events_dispatcher.errors import ProtocolError, TransportIOError, TransportTimeoutError
from docker_events_dispatcher.transport.adapter import ConnectionConfig, open_connection
from docker_events_dispatcher.transport.client import (
    EVENTS_PATH,
    StreamBuffer,
    StreamingClient,
    decode_line,
)

from .conftest import FakeConnection, FakeResponse, messages


class TestStreamBuffer:
    """Newline framing independent of chunk boundaries"""

    def test_lines_split_across_chunks(self):
        buffer = StreamBuffer()
        chunks = [b'{"Type":"container","Act', b'ion":"start"}\n{"Type":"net', b'work","Action":"connect"}\n']

        lines = [line for chunk in chunks for line in buffer.feed(chunk)]

        assert lines == [
            b'{"Type":"container","Action":"start"}',
            b'{"Type":"network","Action":"connect"}',
        ]
        assert buffer.pending == b""

    def test_same_lines_for_every_split_point(self):
        stream = b'{"a":1}\n{"b":2}\n\n{"c":3}\n'

        for split in range(len(stream) + 1):
            buffer = StreamBuffer()
            lines = list(buffer.feed(stream[:split])) + list(buffer.feed(stream[split:]))
            assert lines == [b'{"a":1}', b'{"b":2}', b"", b'{"c":3}'], split

    def test_partial_line_is_held_back(self):
        buffer = StreamBuffer()

        assert list(buffer.feed(b'{"Type":"container"')) == []
        assert buffer.pending == b'{"Type":"container"'

        assert list(buffer.feed(b"}\n")) == [b'{"Type":"container"}']
        assert buffer.pending == b""

    def test_many_lines_in_one_chunk(self):
        buffer = StreamBuffer()
        assert list(buffer.feed(b"a\nb\nc")) == [b"a", b"b"]
        assert buffer.pending == b"c"

    def test_line_bytes_are_untouched(self):
        buffer = StreamBuffer()
        assert list(buffer.feed(b'  {"x": "\xc3\xa9"} \r\n')) == [b'  {"x": "\xc3\xa9"} \r']

    def test_stopping_early_keeps_remaining_lines(self):
        buffer = StreamBuffer()
        lines = buffer.feed(b"one\ntwo\n")

        assert next(lines) == b"one"
        lines.close()

        assert buffer.pending == b"two\n"
        assert list(buffer.feed(b"")) == [b"two"]

    def test_reset(self):
        buffer = StreamBuffer()
        list(buffer.feed(b"half"))
        buffer.reset()
        assert buffer.pending == b""


class TestDecodeLine:

    def test_utf8(self):
        assert decode_line(b'{"x":"\xc3\xa9"}') == '{"x":"é"}'

    def test_invalid_utf8_round_trips(self):
        raw = b'{"x":"\xff"}'
        assert os.fsencode(decode_line(raw)) == raw


class TestStreamingClient:
    """Status handling and error classification"""

    def test_events_delivered_in_order_then_stream_end_is_io_error(self, log):
        response = FakeResponse(200, [b'{"Type":"a","Action":"x"}\n{"Ty', b'pe":"b","Action":"y"}\n'])
        connection = FakeConnection(response)
        received = []

        with pytest.raises(TransportIOError):
            StreamingClient(connection, log).stream_events(received.append)

        assert received == ['{"Type":"a","Action":"x"}', '{"Type":"b","Action":"y"}']
        assert response.closed
        assert connection.requests == [{"path": EVENTS_PATH, "stream": True, "read_timeout": None}]

    def test_handler_runs_before_next_chunk_is_read(self, log):
        response = FakeResponse(200, [b"first\n", b"second\n"])
        seen = []

        def on_event(line):
            seen.append((line, response.chunks_read))

        with pytest.raises(TransportIOError):
            StreamingClient(FakeConnection(response), log).stream_events(on_event)

        assert seen == [("first", 1), ("second", 2)]

    def test_unterminated_tail_is_not_delivered(self, log):
        response = FakeResponse(200, [b"done\n", b"partial"])
        received = []

        with pytest.raises(TransportIOError):
            StreamingClient(FakeConnection(response), log).stream_events(received.append)

        assert received == ["done"]

    def test_error_status_raises_protocol_error(self, log):
        response = FakeResponse(500)

        with pytest.raises(ProtocolError) as excinfo:
            StreamingClient(FakeConnection(response), log).stream_events(lambda line: None)

        assert excinfo.value.status_code == 500
        assert str(excinfo.value) == "500"
        assert response.closed

    @pytest.mark.parametrize("status", [301, 302])
    def test_redirect_is_logged_and_waited_on(self, log, caplog, status):
        response = FakeResponse(status, [b"<html>moved</html>\n"])
        received = []

        with pytest.raises(TransportIOError):
            StreamingClient(FakeConnection(response), log).stream_events(received.append)

        assert received == []
        assert response.chunks_read == 1
        assert messages(caplog).count("Redirecting.") == 1

    def test_connect_timeout_is_timeout_error(self, log):
        connection = FakeConnection(requests.exceptions.ConnectTimeout("timed out"))

        with pytest.raises(TransportTimeoutError):
            StreamingClient(connection, log).stream_events(lambda line: None)

    def test_connection_refused_is_io_error(self, log):
        connection = FakeConnection(requests.exceptions.ConnectionError("refused"))

        with pytest.raises(TransportIOError):
            StreamingClient(connection, log).stream_events(lambda line: None)

    def test_read_timeout_mid_stream_is_timeout_error(self, log):
        timeout = requests.exceptions.ConnectionError(ReadTimeoutError(None, "/events", "Read timed out."))
        response = FakeResponse(200, [b"one\n", timeout])
        received = []

        with pytest.raises(TransportTimeoutError):
            StreamingClient(FakeConnection(response), log).stream_events(received.append)

        assert received == ["one"]
        assert response.closed

    def test_broken_chunked_body_is_io_error(self, log):
        response = FakeResponse(200, [requests.exceptions.ChunkedEncodingError("broken")])

        with pytest.raises(TransportIOError):
            StreamingClient(FakeConnection(response), log).stream_events(lambda line: None)

    def test_handler_errors_are_not_reclassified(self, log):
        response = FakeResponse(200, [b"one\n"])

        def on_event(line):
            raise RuntimeError("handler failed")

        with pytest.raises(RuntimeError):
            StreamingClient(FakeConnection(response), log).stream_events(on_event)

    def test_handler_os_errors_are_not_transport_errors(self, log):
        response = FakeResponse(200, [b"one\n"])

        def on_event(line):
            raise PermissionError("hook dir entry stat failed")

        with pytest.raises(PermissionError):
            StreamingClient(FakeConnection(response), log).stream_events(on_event)

        assert response.closed

    def test_buffer_starts_empty_for_each_stream(self, log):
        client = StreamingClient(FakeConnection(FakeResponse(200, [b"stale"])), log)
        with pytest.raises(TransportIOError):
            client.stream_events(lambda line: None)

        client.connection = FakeConnection(FakeResponse(200, [b"fresh\n"]))
        received = []
        with pytest.raises(TransportIOError):
            client.stream_events(received.append)

        assert received == ["fresh"]

    def test_get_version(self, log):
        connection = FakeConnection(FakeResponse(200, text='{"Version":"24.0.7"}'))

        assert StreamingClient(connection, log).get_version() == '{"Version":"24.0.7"}'
        assert connection.requests[0]["path"] == "/version"

    def test_get_version_error_status(self, log):
        with pytest.raises(ProtocolError):
            StreamingClient(FakeConnection(FakeResponse(404)), log).get_version()


def _serve_once(server: socket.socket, head: bytes, chunks, captured: list):
    conn, _ = server.accept()
    with conn:
        request = b""
        while b"\r\n\r\n" not in request:
            data = conn.recv(4096)
            if not data:
                break
            request += data
        captured.append(request)

        conn.sendall(head)
        if chunks is None:
            return
        for chunk in chunks:
            conn.sendall(b"%x\r\n%s\r\n" % (len(chunk), chunk))
        conn.sendall(b"0\r\n\r\n")


CHUNKED_HEAD = (
    b"HTTP/1.1 200 OK\r\n"
    b"Content-Type: application/json\r\n"
    b"Transfer-Encoding: chunked\r\n"
    b"\r\n"
)


@pytest.fixture
def socket_path():
    # Short directory; AF_UNIX paths are limited to ~108 bytes
    directory = tempfile.mkdtemp(prefix="ded-")
    path = os.path.join(directory, "docker.sock")
    yield path
    if os.path.exists(path):
        os.unlink(path)
    os.rmdir(directory)


def _start_server(family, address, head, chunks):
    server = socket.socket(family, socket.SOCK_STREAM)
    server.bind(address)
    server.listen(1)
    captured = []
    thread = threading.Thread(target=_serve_once, args=(server, head, chunks, captured), daemon=True)
    thread.start()
    return server, thread, captured


class TestStreamingOverSockets:
    """End-to-end against a throwaway HTTP server"""

    def test_unix_socket_events(self, log, socket_path):
        chunks = [b'{"Type":"container","Act', b'ion":"start"}\n{"Type":"net', b'work","Action":"connect"}\n']
        server, thread, captured = _start_server(socket.AF_UNIX, socket_path, CHUNKED_HEAD, chunks)
        received = []
        sink = io.StringIO()

        try:
            config = ConnectionConfig(endpoint=f"unix://{socket_path}", connect_timeout=5, debug_sink=sink)
            with open_connection(config) as connection:
                with pytest.raises(TransportIOError):
                    StreamingClient(connection, log).stream_events(received.append)
            thread.join(5)
        finally:
            server.close()

        assert received == [
            '{"Type":"container","Action":"start"}',
            '{"Type":"network","Action":"connect"}',
        ]
        request = captured[0]
        assert request.startswith(b"GET /events HTTP/1.1\r\n")
        assert b"\r\nHost: localhost\r\n" in request

        trace = sink.getvalue()
        assert "-> b'GET /events HTTP/1.1" in trace
        assert "<- HTTP 200 OK\n" in trace
        assert "<- Transfer-Encoding: chunked\n" in trace

    def test_tcp_events(self, log):
        server, thread, captured = _start_server(socket.AF_INET, ("127.0.0.1", 0), CHUNKED_HEAD, [b"ping\n"])
        host, port = server.getsockname()
        received = []

        try:
            config = ConnectionConfig(endpoint=f"http://{host}:{port}", connect_timeout=5)
            with open_connection(config) as connection:
                with pytest.raises(TransportIOError):
                    StreamingClient(connection, log).stream_events(received.append)
            thread.join(5)
        finally:
            server.close()

        assert received == ["ping"]
        assert captured[0].startswith(b"GET /events HTTP/1.1\r\n")

    def test_error_status_over_unix_socket(self, log, socket_path):
        head = b"HTTP/1.1 500 Internal Server Error\r\nContent-Length: 0\r\n\r\n"
        server, thread, _ = _start_server(socket.AF_UNIX, socket_path, head, None)

        try:
            with open_connection(ConnectionConfig(endpoint=f"unix://{socket_path}", connect_timeout=5)) as connection:
                with pytest.raises(ProtocolError) as excinfo:
                    StreamingClient(connection, log).stream_events(lambda line: None)
            thread.join(5)
        finally:
            server.close()

        assert str(excinfo.value) == "500"

    def test_missing_socket_is_io_error(self, log, socket_path):
        with open_connection(ConnectionConfig(endpoint=f"unix://{socket_path}")) as connection:
            with pytest.raises(TransportIOError):
                StreamingClient(connection, log).stream_events(lambda line: None)
