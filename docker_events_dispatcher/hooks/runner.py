"""
Hooks Runner for Docker Events Dispatcher
==========================================
Runs every executable file in the hook directory once per event, each in
its own child process with the privileges of the file's owner.
"""

from __future__ import annotations

import os
import subprocess
import time
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..errors import HookExecutionError
from ..utils.logger import DispatcherLogger, get_logger

# Directory scanned for hooks unless configured otherwise
DEFAULT_HOOK_DIR = "/etc/docker-events-dispatcher.d"


@dataclass
class HookFile:
    """An executable hook and the owner whose privileges it runs with"""
    path: str
    uid: int
    gid: int

    @classmethod
    def from_path(cls, path: str) -> "HookFile":
        """Stat the file once; ownership is not cached between events"""
        st = os.stat(path)
        return cls(path=path, uid=st.st_uid, gid=st.st_gid)

    def popen_kwargs(self) -> Dict[str, Any]:
        """
        Privilege and process-group arguments for subprocess.Popen.

        In the child, CPython applies supplementary groups, then the gid,
        then the uid, and only then execs. The group must change first
        because giving up root as a user forfeits the right to change it.
        A root owner (0) means that privilege is left untouched.
        """
        kwargs: Dict[str, Any] = {"process_group": 0}

        if self.gid != 0:
            kwargs["group"] = self.gid
            if os.geteuid() == 0:
                kwargs["extra_groups"] = []

        if self.uid != 0:
            kwargs["user"] = self.uid

        return kwargs


@dataclass
class HookResult:
    """Result of one hook for one event"""
    path: str
    returncode: Optional[int] = None
    error: Optional[str] = None
    skipped: bool = False
    skip_reason: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return not self.skipped and self.error is None and self.returncode == 0


class HookRunner:
    """
    Run hooks for docker events.

    Hooks run strictly one after another: the runner waits for each child
    to exit before starting the next, and a failure in one hook never
    stops the others.
    """

    def __init__(
        self,
        log: Optional[DispatcherLogger] = None,
        shutdown: Optional[Any] = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen
    ):
        """
        Initialize the hook runner.

        Args:
            log: Logger for skip notes and failures
            shutdown: ShutdownController whose signals are held back while
                a hook is being waited on
            popen: Process spawner
        """
        self.log = log or get_logger(__name__)
        self.shutdown = shutdown
        self.popen = popen

    def _entries(self, hook_dir: str) -> List[os.DirEntry]:
        with os.scandir(hook_dir) as it:
            return list(it)

    def run_hooks(self, hook_dir: str, event_type: str, action: str, raw_event: str) -> List[HookResult]:
        """
        Run every eligible hook in ``hook_dir`` for one event.

        Each hook is invoked as ``<hook> <type> <action> <raw event>``.

        Args:
            hook_dir: Directory to scan, re-read on every call
            event_type: Event ``Type``
            action: Event ``Action``
            raw_event: The event line exactly as received

        Returns:
            One HookResult per directory entry
        """
        try:
            entries = self._entries(hook_dir)
        except OSError as e:
            self.log.error(f"Failed to read hook directory '{hook_dir}': {e}")
            return []

        results = []

        for entry in entries:
            path = entry.path

            if entry.name.startswith("."):
                self.log.debug(f"Skipping hidden file: {path}")
                results.append(HookResult(path=path, skipped=True, skip_reason="hidden"))
                continue

            try:
                is_dir = entry.is_dir()
            except OSError as e:
                message = f"Failed to get file stat of '{path}': {e}"
                self.log.error(message)
                results.append(HookResult(path=path, error=message))
                continue

            if is_dir:
                self.log.debug(f"Skipping directory: {path}")
                results.append(HookResult(path=path, skipped=True, skip_reason="directory"))
                continue

            if not os.access(path, os.X_OK):
                self.log.verbose(f"Skipping file: {path}")
                results.append(HookResult(path=path, skipped=True, skip_reason="not executable"))
                continue

            results.append(self._execute(path, [event_type, action, raw_event]))

        return results

    def _execute(self, path: str, args: List[str]) -> HookResult:
        """
        Execute a single hook and wait for it.

        Args:
            path: Hook file
            args: Positional arguments after the program path

        Returns:
            HookResult with execution outcome
        """
        start_time = time.monotonic()

        try:
            hook = HookFile.from_path(path)
        except OSError as e:
            message = f"Failed to get file stat of '{path}': {e}"
            self.log.error(message)
            return HookResult(path=path, error=message)

        # Held from before the spawn so a started child is always reaped
        shield = self.shutdown.shield() if self.shutdown is not None else nullcontext()
        with shield:
            try:
                process = self._spawn(hook, args)
            except HookExecutionError as e:
                self.log.error(str(e))
                return HookResult(
                    path=path,
                    error=str(e),
                    duration_ms=(time.monotonic() - start_time) * 1000
                )

            returncode = process.wait()

        if returncode != 0:
            self.log.warning(f"Hook '{path}' exited with status {returncode}.")

        return HookResult(
            path=path,
            returncode=returncode,
            duration_ms=(time.monotonic() - start_time) * 1000
        )

    def _spawn(self, hook: HookFile, args: List[str]) -> subprocess.Popen:
        """Start the hook in a new process group with its owner's privileges"""
        self.log.debug(f"Calling file: {hook.path}")

        try:
            return self.popen([hook.path, *args], **hook.popen_kwargs())
        except (OSError, subprocess.SubprocessError, ValueError) as e:
            raise HookExecutionError(
                hook.path,
                f"Failed to execute file '{hook.path}' as {hook.uid}:{hook.gid}: {e}"
            ) from e

    def list_hooks(self, hook_dir: str) -> List[HookFile]:
        """
        Eligible hooks currently in ``hook_dir``.

        Returns:
            HookFile for each non-hidden executable regular entry
        """
        hooks = []
        for entry in self._entries(hook_dir):
            if entry.name.startswith(".") or entry.is_dir():
                continue
            if not os.access(entry.path, os.X_OK):
                continue
            try:
                hooks.append(HookFile.from_path(entry.path))
            except OSError as e:
                self.log.error(f"Failed to get file stat of '{entry.path}': {e}")
        return hooks


__all__ = ['DEFAULT_HOOK_DIR', 'HookFile', 'HookResult', 'HookRunner']
