"""
Dispatch Loop for Docker Events Dispatcher
===========================================
Keeps the events feed connected, decides how long to wait after a
failure, and hands every decoded event to the hook runner.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..errors import (
    EventDecodeError,
    ShutdownRequested,
    TransportIOError,
    TransportTimeoutError,
)
from ..hooks.runner import HookRunner
from ..transport.adapter import ConnectionConfig, DaemonConnection, open_connection
from ..transport.client import StreamingClient
from ..utils.logger import DispatcherLogger, get_logger
from .signals import ShutdownController

# Wait used instead of the full interval when a quick retry applies
QUICK_RETRY_SECONDS = 0.1


class LoopState(Enum):
    """States of the dispatch loop"""
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RETRY_WAIT = "retry_wait"
    FATAL = "fatal"
    SHUTDOWN = "shutdown"


@dataclass
class RetryPolicy:
    """How long to wait before reconnecting; 0 disables a category"""
    io_error_retry: float = 10
    timeout_error_retry: float = 10
    quick_retries: bool = False
    quick_retry_seconds: float = QUICK_RETRY_SECONDS


@dataclass
class RetryState:
    """Start time of the current or most recent connection attempt"""
    last_attempt: Optional[float] = None

    def mark_attempt(self, now: float):
        self.last_attempt = now


@dataclass
class DecodedEvent:
    """Parsed view of one event line"""
    type: str
    action: str
    fields: Dict[str, Any] = field(default_factory=dict)
    raw: str = ""


def decode_event(raw: str) -> DecodedEvent:
    """
    Parse one event line.

    Args:
        raw: The event text exactly as received

    Returns:
        DecodedEvent with Type and Action split out of the other fields

    Raises:
        EventDecodeError: on malformed JSON or a missing Type/Action
    """
    try:
        parsed = json.loads(raw)
    except ValueError as e:
        raise EventDecodeError(f"JSON parse error: {e}") from e

    if not isinstance(parsed, dict):
        raise EventDecodeError("Event is not a JSON object.")

    event_type = parsed.pop("Type", None)
    if not isinstance(event_type, str) or not event_type:
        raise EventDecodeError("Event has no type.")

    action = parsed.pop("Action", None)
    if not isinstance(action, str) or not action:
        raise EventDecodeError("Event has no action.")

    return DecodedEvent(type=event_type, action=action, fields=parsed, raw=raw)


class DispatchLoop:
    """
    Drives the streaming client and owns the retry state machine.

    CONNECTING -> STREAMING -> RETRY_WAIT -> CONNECTING, until either an
    unretryable failure (FATAL, re-raised to the caller) or a shutdown
    request (SHUTDOWN, returned).
    """

    def __init__(
        self,
        connection_config: ConnectionConfig,
        hook_dir: str,
        policy: Optional[RetryPolicy] = None,
        hook_runner: Optional[HookRunner] = None,
        log: Optional[DispatcherLogger] = None,
        shutdown: Optional[ShutdownController] = None,
        connection_factory: Optional[Callable[[ConnectionConfig], DaemonConnection]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.connection_config = connection_config
        self.hook_dir = hook_dir
        self.policy = policy or RetryPolicy()
        self.log = log or get_logger(__name__)
        self.shutdown = shutdown
        self.hook_runner = hook_runner or HookRunner(log=self.log, shutdown=shutdown)
        self.connection_factory = connection_factory or open_connection
        self.clock = clock
        self.sleep = sleep

        self.retry_state = RetryState()
        self.state = LoopState.CONNECTING
        self.error: Optional[BaseException] = None
        self.pending_delay: Optional[float] = None

    def retry_delay(self, error: BaseException, now: float) -> Optional[float]:
        """
        Wait before the next attempt, or None if the failure is fatal.

        The quick wait applies when quick retries are on and more than one
        full interval has passed since the last attempt began.
        """
        if isinstance(error, TransportTimeoutError):
            interval = self.policy.timeout_error_retry
        elif isinstance(error, TransportIOError):
            interval = self.policy.io_error_retry
        else:
            return None

        if not interval:
            return None

        last = self.retry_state.last_attempt
        if self.policy.quick_retries and last is not None and now > last + interval:
            return self.policy.quick_retry_seconds
        return interval

    def step(self) -> LoopState:
        """Run one transition and return the new state"""
        if self.state is LoopState.CONNECTING:
            self._check_shutdown()
            self.log.verbose("Connecting to docker.")
            self.retry_state.mark_attempt(self.clock())
            self.state = LoopState.STREAMING

        elif self.state is LoopState.STREAMING:
            self.state = self._stream()

        elif self.state is LoopState.RETRY_WAIT:
            delay = self.pending_delay
            self.pending_delay = None
            try:
                self.sleep(delay)
            except ShutdownRequested as e:
                self.error = e
                self.state = LoopState.SHUTDOWN
            else:
                self.state = LoopState.CONNECTING

        return self.state

    def run(self) -> LoopState:
        """
        Loop until shutdown or a fatal failure.

        Returns:
            LoopState.SHUTDOWN

        Raises:
            The fatal error, unchanged
        """
        while self.state not in (LoopState.FATAL, LoopState.SHUTDOWN):
            try:
                self.step()
            except ShutdownRequested as e:
                self.error = e
                self.state = LoopState.SHUTDOWN

        if self.state is LoopState.FATAL:
            raise self.error
        return self.state

    def _check_shutdown(self):
        if self.shutdown is not None:
            self.shutdown.check()

    def _stream(self) -> LoopState:
        try:
            with self.connection_factory(self.connection_config) as connection:
                StreamingClient(connection, self.log).stream_events(self.dispatch_event)
        except ShutdownRequested as e:
            self.error = e
            return LoopState.SHUTDOWN
        except Exception as e:
            self.log.debug(lambda: f"Caught exception {type(e).__name__} ({e}).")
            return self._on_failure(e)

        # stream_events only returns by raising
        return LoopState.CONNECTING

    def _on_failure(self, error: Exception) -> LoopState:
        delay = self.retry_delay(error, self.clock())

        if delay is None:
            self.error = error
            return LoopState.FATAL

        kind = "Timeout" if isinstance(error, TransportTimeoutError) else "IO"
        self.log.error(f"{kind} error; retrying after {delay:g} seconds.")
        self.pending_delay = delay
        return LoopState.RETRY_WAIT

    def dispatch_event(self, raw: str):
        """
        Decode one event line and run the hooks for it.

        Decode failures are logged and only this event is skipped.
        """
        try:
            event = decode_event(raw)
        except EventDecodeError as e:
            self.log.error(str(e))
            return

        self.log.verbose(
            lambda: f'Event: {{ "Type": {json.dumps(event.type)}, "Action": {json.dumps(event.action)} }}'
        )
        self.log.debug(lambda: "Event details: " + json.dumps(event.fields))

        self.hook_runner.run_hooks(self.hook_dir, event.type, event.action, event.raw)


__all__ = [
    'QUICK_RETRY_SECONDS',
    'LoopState',
    'RetryPolicy',
    'RetryState',
    'DecodedEvent',
    'DispatchLoop',
    'decode_event',
]
