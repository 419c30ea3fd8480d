"""
Configuration for Docker Events Dispatcher
===========================================
Defaults, the optional YAML configuration file, and validation of every
option before it reaches the dispatcher.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import yaml

from .dispatch.loop import RetryPolicy
from .errors import ConfigurationError
from .hooks.runner import DEFAULT_HOOK_DIR
from .transport.adapter import DEFAULT_SOCKET_URI, DEFAULT_TIMEOUT, ConnectionConfig
from .utils.logger import LogConfig, LogLevels, parse_log_level

DEFAULT_CONFIG_FILE = Path("/etc/docker-events-dispatcher.yaml")

# Non-empty value turns on debug output for console and log file
DEBUG_ENV_VAR = "DOCKER_EVENTS_DISPATCHER_DEBUG"


def validate_and_convert_seconds(value: Any) -> int:
    """Whole non-negative seconds; 0 is allowed and disables a retry"""
    if isinstance(value, bool):
        raise ConfigurationError("Invalid seconds argument.")
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError("Invalid seconds argument.") from None
    if seconds < 0:
        raise ConfigurationError("Invalid seconds argument.")
    return seconds


def validate_true_or_false(value: Any) -> bool:
    if value is not True and value is not False:
        raise ConfigurationError("Invalid true or false value.")
    return value


def validate_optional_string(value: Any) -> Optional[str]:
    if value is not None and not isinstance(value, str):
        raise ConfigurationError(f"Invalid string value: {value!r}")
    return value


def validate_string(value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"Invalid string value: {value!r}")
    return value


def validate_timeout(value: Any) -> Optional[float]:
    """Seconds, or None/"none" for no timeout"""
    if value is None or (isinstance(value, str) and value.lower() == "none"):
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigurationError(f"Invalid timeout value: {value!r}")
    return value


def validate_retries(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError(f"Invalid retry count: {value!r}")
    return value


@dataclass
class DispatcherConfig:
    """Everything the dispatcher needs, gathered from file, environment and CLI"""
    host_uri: str = DEFAULT_SOCKET_URI
    io_error_retry: int = 10
    timeout_error_retry: int = 10
    quick_retries: bool = False
    hook_dir: str = DEFAULT_HOOK_DIR

    # Logging
    log_level: int = LogLevels.NORMAL
    log_file_level: int = LogLevels.NORMAL
    log_level_syslog: int = LogLevels.QUIET
    log_file: Optional[str] = None
    overwrite_log_file: bool = False
    no_stdout: bool = False
    no_stderr: bool = False
    enable_syslog: bool = False
    syslog_prefix: Optional[str] = None

    # Transport
    connect_timeout: Optional[float] = DEFAULT_TIMEOUT
    read_timeout: Optional[float] = DEFAULT_TIMEOUT
    write_timeout: Optional[float] = DEFAULT_TIMEOUT
    continue_timeout: Optional[float] = DEFAULT_TIMEOUT
    max_retries: int = 0
    cipher_list: Optional[str] = None

    def set(self, name: str, value: Any):
        """
        Validate and set one option.

        Args:
            name: Option name; dashes are accepted in place of underscores
            value: Raw value from YAML or the command line

        Raises:
            ConfigurationError: on an unknown option or invalid value
        """
        key = name.replace("-", "_")
        validator = VALIDATORS.get(key)
        if validator is None:
            raise ConfigurationError(f"Unknown option: {name}")
        setattr(self, key, validator(value))

    def update(self, values: Dict[str, Any]):
        for name, value in values.items():
            self.set(name, value)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            io_error_retry=self.io_error_retry,
            timeout_error_retry=self.timeout_error_retry,
            quick_retries=self.quick_retries
        )

    def connection_config(self) -> ConnectionConfig:
        return ConnectionConfig(
            endpoint=self.host_uri,
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
            write_timeout=self.write_timeout,
            continue_timeout=self.continue_timeout,
            max_retries=self.max_retries,
            cipher_list=self.cipher_list
        )

    def log_config(self) -> LogConfig:
        return LogConfig(
            level=self.log_level,
            file_level=self.log_file_level,
            syslog_level=self.log_level_syslog,
            log_file=Path(self.log_file) if self.log_file else None,
            overwrite_log_file=self.overwrite_log_file,
            enable_syslog=self.enable_syslog,
            syslog_prefix=self.syslog_prefix,
            no_stdout=self.no_stdout,
            no_stderr=self.no_stderr
        )

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


VALIDATORS: Dict[str, Callable[[Any], Any]] = {
    "host_uri": validate_string,
    "io_error_retry": validate_and_convert_seconds,
    "timeout_error_retry": validate_and_convert_seconds,
    "quick_retries": validate_true_or_false,
    "hook_dir": validate_string,
    "log_level": parse_log_level,
    "log_file_level": parse_log_level,
    "log_level_syslog": parse_log_level,
    "log_file": validate_optional_string,
    "overwrite_log_file": validate_true_or_false,
    "no_stdout": validate_true_or_false,
    "no_stderr": validate_true_or_false,
    "enable_syslog": validate_true_or_false,
    "syslog_prefix": validate_optional_string,
    "connect_timeout": validate_timeout,
    "read_timeout": validate_timeout,
    "write_timeout": validate_timeout,
    "continue_timeout": validate_timeout,
    "max_retries": validate_retries,
    "cipher_list": validate_optional_string,
}


def load_config(
    path: Optional[Union[str, Path]] = None,
    environ: Optional[Dict[str, str]] = None
) -> DispatcherConfig:
    """
    Build the configuration from defaults, the YAML file and the environment.

    The default file is only read when it exists; a path given explicitly
    must exist.

    Args:
        path: Configuration file to read instead of the default
        environ: Environment to consult (defaults to os.environ)

    Returns:
        Validated DispatcherConfig
    """
    config = DispatcherConfig()
    config_file = Path(path) if path else DEFAULT_CONFIG_FILE

    if path or config_file.exists():
        try:
            with open(config_file) as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigurationError(f"Failed to read config file '{config_file}': {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid config file '{config_file}': {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file '{config_file}' must contain a mapping.")

        config.update(data)

    environ = os.environ if environ is None else environ
    if environ.get(DEBUG_ENV_VAR):
        config.log_level = config.log_file_level = LogLevels.DEBUG

    return config


__all__ = [
    'DEFAULT_CONFIG_FILE',
    'DEBUG_ENV_VAR',
    'DispatcherConfig',
    'load_config',
    'validate_and_convert_seconds',
    'validate_true_or_false',
    'validate_timeout',
]
