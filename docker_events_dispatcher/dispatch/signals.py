"""
Cooperative Shutdown for Docker Events Dispatcher
==================================================
Turns SIGTERM/SIGINT into a ShutdownRequested exception in the main
thread, except while a hook child is being waited on.
"""

from __future__ import annotations

import signal
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from ..errors import ShutdownRequested

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class ShutdownController:
    """
    Owns the termination signal handlers.

    Outside a shielded section the handler raises ShutdownRequested, which
    interrupts a blocked socket read or sleep. Inside ``shield()`` the
    signal is only recorded and the exception is raised when the section
    ends.

    Usage:
        with ShutdownController() as shutdown:
            with shutdown.shield():
                process.wait()
    """

    def __init__(self):
        self.requested: Optional[int] = None
        self._shield_depth = 0
        self._previous: Dict[int, object] = {}

    def install(self):
        for signum in SHUTDOWN_SIGNALS:
            self._previous[signum] = signal.signal(signum, self._handle)

    def restore(self):
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()

    def _handle(self, signum, frame):
        if self.requested is None:
            self.requested = signum
        if self._shield_depth == 0:
            raise ShutdownRequested(signum)

    def request(self, signum: int):
        """Record a shutdown request without raising"""
        if self.requested is None:
            self.requested = signum

    @property
    def is_requested(self) -> bool:
        return self.requested is not None

    def check(self):
        """Raise ShutdownRequested if a signal arrived"""
        if self.requested is not None:
            raise ShutdownRequested(self.requested)

    @contextmanager
    def shield(self) -> Iterator[None]:
        self._shield_depth += 1
        try:
            yield
        finally:
            self._shield_depth -= 1
        if self._shield_depth == 0:
            self.check()

    def __enter__(self) -> "ShutdownController":
        self.install()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.restore()
        return False


def signal_name(signum: Optional[int]) -> str:
    """``SIGTERM`` style name for a signal number"""
    if signum is None:
        return "signal"
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


__all__ = ['ShutdownController', 'SHUTDOWN_SIGNALS', 'signal_name']
