"""
Docker Events Dispatcher Utils Package
=======================================
Logging utilities shared by every component.
"""

from .logger import (
    VERBOSE,
    LogLevels,
    LOG_LEVEL_NOTES,
    LogConfig,
    DispatcherLogger,
    setup_logging,
    shutdown_logging,
    get_logger,
    parse_log_level,
    level_names,
)

__all__ = [
    'VERBOSE',
    'LogLevels',
    'LOG_LEVEL_NOTES',
    'LogConfig',
    'DispatcherLogger',
    'setup_logging',
    'shutdown_logging',
    'get_logger',
    'parse_log_level',
    'level_names',
]
