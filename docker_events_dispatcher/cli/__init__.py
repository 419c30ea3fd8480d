"""
Docker Events Dispatcher CLI Package
=====================================
Command-line interface for the dispatcher.
"""

from .main import app, main_entry, run_dispatcher

__all__ = [
    'app',
    'main_entry',
    'run_dispatcher',
]
