"""
Docker Events Dispatcher Hooks Package
=======================================
Per-event execution of the executables in the hook directory.
"""

from .runner import DEFAULT_HOOK_DIR, HookFile, HookResult, HookRunner

__all__ = ['DEFAULT_HOOK_DIR', 'HookFile', 'HookResult', 'HookRunner']
