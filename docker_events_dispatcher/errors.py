"""
Error Taxonomy for Docker Events Dispatcher
============================================
Every failure the dispatcher distinguishes between, from fatal
configuration problems down to errors local to a single event or hook.
"""

from __future__ import annotations

from typing import Optional


class DispatcherError(Exception):
    """Base class for all dispatcher errors"""


class ConfigurationError(DispatcherError):
    """Malformed endpoint or option value. Never retried."""


class TransportError(DispatcherError):
    """Connection-level failure talking to the daemon"""


class TransportIOError(TransportError):
    """Socket open, connect or read failure; retried per the IO policy"""


class TransportTimeoutError(TransportError):
    """Connect or read timeout; retried per the timeout policy"""


class ProtocolError(DispatcherError):
    """The daemon answered with a status that is neither success nor redirect"""

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(str(status_code))


class EventDecodeError(DispatcherError):
    """One event could not be decoded. Only that event is skipped."""


class HookExecutionError(DispatcherError):
    """Stat, spawn, privilege drop or exec failed for one hook"""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(message)


class ShutdownRequested(BaseException):
    """
    Cooperative cancellation raised into the main thread.

    Derives from BaseException so that ``except Exception`` blocks around
    event and hook handling do not swallow it.
    """

    def __init__(self, signum: Optional[int] = None):
        self.signum = signum
        super().__init__(signum)

    @property
    def exit_code(self) -> int:
        return 128 + self.signum if self.signum else 0


__all__ = [
    'DispatcherError',
    'ConfigurationError',
    'TransportError',
    'TransportIOError',
    'TransportTimeoutError',
    'ProtocolError',
    'EventDecodeError',
    'HookExecutionError',
    'ShutdownRequested',
]
