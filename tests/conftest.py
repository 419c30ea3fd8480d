"""Pytest configuration and shared fakes"""

import logging
from typing import Iterable, List, Optional

import pytest

from docker_events_dispatcher.utils.logger import DispatcherLogger

# Outside the package logger so records propagate to caplog
TEST_LOGGER_NAME = "dispatcher_tests"


class FakeResponse:
    """Stand-in for a streamed requests.Response"""

    def __init__(self, status_code: int = 200, chunks: Iterable = (), text: str = ""):
        self.status_code = status_code
        self.chunks = list(chunks)
        self.text = text
        self.closed = False
        self.chunks_read = 0

    def iter_content(self, chunk_size=None):
        for chunk in self.chunks:
            if isinstance(chunk, BaseException):
                raise chunk
            self.chunks_read += 1
            yield chunk

    def close(self):
        self.closed = True


class FakeConnection:
    """Stand-in for DaemonConnection returning canned responses in order"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: List[dict] = []
        self.closed = False

    def get(self, path, stream=False, **kwargs):
        self.requests.append({"path": path, "stream": stream, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


@pytest.fixture
def log(caplog) -> DispatcherLogger:
    """DispatcherLogger whose records land in caplog at every level"""
    caplog.set_level(logging.DEBUG, logger=TEST_LOGGER_NAME)
    return DispatcherLogger(logging.getLogger(TEST_LOGGER_NAME))


def messages(caplog, level: Optional[int] = None) -> List[str]:
    """Logged messages, optionally only those at one level"""
    return [
        record.getMessage()
        for record in caplog.records
        if level is None or record.levelno == level
    ]
