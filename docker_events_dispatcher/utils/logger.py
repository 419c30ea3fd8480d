"""
Logging Utilities for Docker Events Dispatcher
===============================================
Multi-sink logging (console, file, syslog) with independent levels and
lazily evaluated messages.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler, SysLogHandler
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from rich.console import Console
from rich.logging import RichHandler

from ..errors import ConfigurationError


# Root logger name for the whole package
LOGGER_NAME = "docker_events_dispatcher"

# Identifier used for syslog messages
SYSLOG_IDENT = "docker-events-dispatcher"

# Log format strings
CONSOLE_FORMAT = "%(message)s"
FILE_FORMAT = "[%(asctime)s] %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Extra stdlib level between DEBUG and INFO
VERBOSE = 15
logging.addLevelName(VERBOSE, "VERBOSE")


class LogLevels:
    """Dispatcher log levels, lowest is quietest"""
    SILENT = 0
    QUIET = 1
    NORMAL = 2
    VERBOSE = 3
    DEBUG = 4


LOG_LEVEL_NOTES = {
    "silent": "No output even warnings and errors",
    "quiet": "Output only warnings and errors",
    "normal": "Includes normal messages, warnings and errors",
    "verbose": "Includes verbose messages",
    "debug": "Includes debug messages and all other messages",
}

# Level a message method needs to be visible
METHOD_LEVELS = {
    "message": LogLevels.NORMAL,
    "warning": LogLevels.QUIET,
    "error": LogLevels.QUIET,
    "fatal": LogLevels.QUIET,
    "verbose": LogLevels.VERBOSE,
    "debug": LogLevels.DEBUG,
}

# Dispatcher level -> stdlib threshold
_STDLIB_LEVELS = {
    LogLevels.SILENT: logging.CRITICAL + 10,
    LogLevels.QUIET: logging.WARNING,
    LogLevels.NORMAL: logging.INFO,
    LogLevels.VERBOSE: VERBOSE,
    LogLevels.DEBUG: logging.DEBUG,
}

Message = Union[str, Callable[[], str]]


def level_names() -> Dict[str, int]:
    """Map of level name to dispatcher level number"""
    return {
        name.lower(): value
        for name, value in vars(LogLevels).items()
        if not name.startswith("_")
    }


def parse_log_level(value: Union[int, str]) -> int:
    """
    Convert a level given as number, level name or method name.

    Args:
        value: e.g. ``3``, ``"3"``, ``"verbose"``, ``"error"``

    Returns:
        Dispatcher level number (0-4)
    """
    if isinstance(value, bool):
        raise ConfigurationError("Invalid log level.")

    if isinstance(value, str):
        text = value.strip().lower()
        if text.isdigit():
            value = int(text)
        elif text in level_names():
            return level_names()[text]
        elif text in METHOD_LEVELS:
            return METHOD_LEVELS[text]
        else:
            raise ConfigurationError(f"Invalid log level: {value}")

    if isinstance(value, int) and LogLevels.SILENT <= value <= LogLevels.DEBUG:
        return value

    raise ConfigurationError(f"Invalid log level: {value}")


def to_stdlib_level(level: int) -> int:
    """Threshold for a stdlib handler showing messages up to ``level``"""
    return _STDLIB_LEVELS[level]


class LogConfig:
    """Logging configuration"""

    def __init__(
        self,
        level: int = LogLevels.NORMAL,
        file_level: int = LogLevels.NORMAL,
        syslog_level: int = LogLevels.QUIET,
        log_file: Optional[Path] = None,
        overwrite_log_file: bool = False,
        max_file_size: int = 0,  # 0 disables rotation
        backup_count: int = 5,
        enable_syslog: bool = False,
        syslog_prefix: Optional[str] = None,
        syslog_address: Optional[Union[str, tuple]] = None,
        no_stdout: bool = False,
        no_stderr: bool = False
    ):
        self.level = level
        self.file_level = file_level
        self.syslog_level = syslog_level
        self.log_file = log_file
        self.overwrite_log_file = overwrite_log_file
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.enable_syslog = enable_syslog
        self.syslog_prefix = syslog_prefix
        self.syslog_address = syslog_address
        self.no_stdout = no_stdout
        self.no_stderr = no_stderr


class _StreamFilter(logging.Filter):
    """Routes records below WARNING to stdout and the rest to stderr"""

    def __init__(self, stderr: bool):
        super().__init__()
        self.stderr = stderr

    def filter(self, record: logging.LogRecord) -> bool:
        return (record.levelno >= logging.WARNING) == self.stderr


def _console_handler(config: LogConfig, stderr: bool) -> logging.Handler:
    console = Console(stderr=True) if stderr else Console(file=sys.stdout)
    debug_mode = config.level >= LogLevels.DEBUG

    handler = RichHandler(
        console=console,
        show_time=debug_mode,
        show_path=debug_mode,
        rich_tracebacks=True,
        markup=False  # event JSON is full of brackets
    )
    handler.setLevel(to_stdlib_level(config.level))
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    handler.addFilter(_StreamFilter(stderr))
    return handler


def _default_syslog_address() -> Union[str, tuple]:
    if os.path.exists("/dev/log"):
        return "/dev/log"
    return ("localhost", 514)


def setup_logging(
    name: str = LOGGER_NAME,
    config: Optional[LogConfig] = None
) -> "DispatcherLogger":
    """
    Set up logging for the application.

    Sink failures (unopenable log file, unreachable syslog) are held back
    and reported once every other sink is attached.

    Args:
        name: Logger name
        config: Logging configuration

    Returns:
        Configured DispatcherLogger
    """
    config = config or LogConfig()

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # Clear existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    queued: List[str] = []

    if not config.no_stdout:
        logger.addHandler(_console_handler(config, stderr=False))
    if not config.no_stderr:
        logger.addHandler(_console_handler(config, stderr=True))

    if config.log_file:
        try:
            file_handler = RotatingFileHandler(
                config.log_file,
                mode='w' if config.overwrite_log_file else 'a',
                maxBytes=config.max_file_size,
                backupCount=config.backup_count,
                encoding='utf-8'
            )
            file_handler.setLevel(to_stdlib_level(config.file_level))
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATE_FORMAT))
            logger.addHandler(file_handler)
        except OSError as e:
            queued.append(f"Failed to open log file '{config.log_file}': {e}")

    if config.enable_syslog:
        try:
            syslog_handler = SysLogHandler(
                address=config.syslog_address or _default_syslog_address(),
                facility=SysLogHandler.LOG_DAEMON
            )
            prefix = (config.syslog_prefix or "").replace("%", "%%")
            syslog_handler.setLevel(to_stdlib_level(config.syslog_level))
            syslog_handler.setFormatter(logging.Formatter(f"{SYSLOG_IDENT}: {prefix}%(message)s"))
            logger.addHandler(syslog_handler)
        except OSError as e:
            queued.append(f"Failed to open syslog: {e}")

    # Lazy messages are only rendered when some sink wants them
    thresholds = [handler.level for handler in logger.handlers]
    logger.setLevel(min(thresholds) if thresholds else to_stdlib_level(LogLevels.SILENT))

    dispatcher_logger = DispatcherLogger(logger)
    for message in queued:
        dispatcher_logger.error(message)

    return dispatcher_logger


def shutdown_logging(name: str = LOGGER_NAME):
    """Flush and close every handler attached by setup_logging"""
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        try:
            handler.flush()
            handler.close()
        except (OSError, ValueError) as e:
            sys.stderr.write(f"Failed to close log handler: {e}\n")
        logger.removeHandler(handler)


class DispatcherLogger:
    """
    Leveled logger used throughout the dispatcher.

    Every method takes either a string or a zero-argument callable; the
    callable is only invoked when the level is enabled, so expensive
    messages cost nothing when filtered out.

    Usage:
        log = DispatcherLogger(logging.getLogger("docker_events_dispatcher"))
        log.verbose("Connecting to docker.")
        log.debug(lambda: f"Event details: {json.dumps(fields)}")
    """

    def __init__(self, base_logger: Optional[logging.Logger] = None):
        self.logger = base_logger or logging.getLogger(LOGGER_NAME)

    def _log(self, level: int, msg: Message, exc_info: bool = False):
        if not self.logger.isEnabledFor(level):
            return
        if callable(msg):
            msg = msg()
        self.logger.log(level, "%s", msg, exc_info=exc_info)

    def is_enabled(self, method: str) -> bool:
        return self.logger.isEnabledFor(to_stdlib_level(METHOD_LEVELS[method]))

    def message(self, msg: Message):
        self._log(logging.INFO, msg)

    def verbose(self, msg: Message):
        self._log(VERBOSE, msg)

    def debug(self, msg: Message, exc_info: bool = False):
        self._log(logging.DEBUG, msg, exc_info=exc_info)

    def warning(self, msg: Message):
        self._log(logging.WARNING, msg)

    def error(self, msg: Message):
        self._log(logging.ERROR, msg)

    def fatal(self, msg: Message):
        self._log(logging.CRITICAL, msg)

    def separator(self, width: int = 20):
        self.message("-" * width)


def get_logger(name: str = LOGGER_NAME) -> DispatcherLogger:
    """
    Get a DispatcherLogger for the given stdlib logger name.

    Args:
        name: Logger name (usually __name__)
    """
    return DispatcherLogger(logging.getLogger(name))


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
    'to_stdlib_level',
]
