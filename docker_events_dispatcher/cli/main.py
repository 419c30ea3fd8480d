"""
CLI Main for Docker Events Dispatcher
======================================
Typer-based CLI: runs the dispatcher by default and offers a couple of
inspection subcommands.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.markup import escape

from ..config import DispatcherConfig, load_config
from ..dispatch import DispatchLoop, ShutdownController, signal_name
from ..errors import (
    ConfigurationError,
    DispatcherError,
    ProtocolError,
    ShutdownRequested,
    TransportIOError,
    TransportTimeoutError,
)
from ..hooks import HookRunner
from ..transport import StreamingClient, open_connection, parse_endpoint
from ..utils.logger import (
    LOG_LEVEL_NOTES,
    DispatcherLogger,
    LogLevels,
    level_names,
    setup_logging,
    shutdown_logging,
)

# Console for command output
console = Console()

# Console for errors before logging is configured
err_console = Console(stderr=True)

app = typer.Typer(
    name="docker-events-dispatcher",
    help=(
        "Listens for events from dockerd and executes the executable files "
        "in the hook directory for each one."
    ),
    no_args_is_help=False,
    add_completion=False,
    rich_markup_mode="rich"
)


class AppState:
    """Configuration resolved by the main callback for subcommands"""
    config: Optional[DispatcherConfig] = None


state = AppState()


def version_callback(value: bool):
    """Print version and exit"""
    if value:
        from .. import __version__
        console.print(f"docker-events-dispatcher {__version__}")
        raise typer.Exit()


def _levels_help() -> str:
    return "; ".join(
        f"{name.upper()} ({number}) {LOG_LEVEL_NOTES[name]}"
        for name, number in sorted(level_names().items(), key=lambda item: item[1])
    )


def build_config(config_file: Optional[Path], overrides: Dict[str, Any]) -> DispatcherConfig:
    """
    Resolve configuration: defaults, then file and environment, then CLI.

    Only options actually given on the command line (not None) override.
    """
    config = load_config(config_file)
    config.update({name: value for name, value in overrides.items() if value is not None})
    return config


def _fatal_message(error: BaseException) -> str:
    if isinstance(error, ProtocolError):
        return f"Non-success status code received: {error}"
    if isinstance(error, TransportTimeoutError):
        return f"Timeout error: {error}"
    if isinstance(error, TransportIOError):
        return f"IO error: {error}"
    message = str(error)
    return f"Unknown exception caught: {type(error).__name__}: {message[:1].upper() + message[1:]}"


def run_dispatcher(config: DispatcherConfig, log: Optional[DispatcherLogger] = None) -> int:
    """
    Run the dispatcher until shutdown or a fatal error.

    Args:
        config: Resolved configuration
        log: Logger to use instead of one built from ``config``

    Returns:
        Process exit code: 128 + signal on shutdown, 1 on any failure
    """
    owns_logging = log is None
    log = log or setup_logging(config=config.log_config())

    try:
        if os.geteuid() != 0:
            log.fatal("Needs to run as EUID 0.")
            return 1
        if os.getegid() != 0:
            log.fatal("Needs to run as EGID 0.")
            return 1

        connection_config = config.connection_config()
        parse_endpoint(connection_config.endpoint)

        with ShutdownController() as shutdown:
            log.message("Started.")

            loop = DispatchLoop(
                connection_config,
                config.hook_dir,
                policy=config.retry_policy(),
                log=log,
                shutdown=shutdown
            )
            loop.run()

        signum = loop.error.signum if isinstance(loop.error, ShutdownRequested) else None
        log.message(f"{signal_name(signum)} caught.")
        return 128 + signum if signum else 0

    except ConfigurationError as e:
        log.debug("Configuration failure", exc_info=True)
        log.fatal(f"Argument error: {e}")
        return 1
    except ShutdownRequested as e:
        log.message(f"{signal_name(e.signum)} caught.")
        return e.exit_code
    except Exception as e:
        log.debug("Fatal failure", exc_info=True)
        log.fatal(_fatal_message(e))
        return 1
    finally:
        log.message("Exiting.")
        if owns_logging:
            shutdown_logging()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="YAML configuration file"
    ),
    host: Optional[str] = typer.Option(
        None,
        "--host", "-H",
        help="Base host URI or socket URI to connect to"
    ),
    hook_dir: Optional[str] = typer.Option(
        None,
        "--hook-dir",
        help="Directory of executables to run for each event"
    ),
    io_error_retry: Optional[int] = typer.Option(
        None,
        "--io-error-retry",
        help="Seconds to wait before reconnecting after an IO error; 0 disables retry"
    ),
    timeout_error_retry: Optional[int] = typer.Option(
        None,
        "--timeout-error-retry",
        help="Seconds to wait before reconnecting after a timeout; 0 disables retry"
    ),
    quick_retries: Optional[bool] = typer.Option(
        None,
        "--quick-retries/--no-quick-retries",
        help="Retry after 0.1s if the last attempt began more than one retry interval ago"
    ),
    log_file: Optional[str] = typer.Option(
        None,
        "--log-file", "-l",
        help="Log file to send a timestamped copy of messages to"
    ),
    overwrite_log_file: bool = typer.Option(
        False,
        "--overwrite-log-file", "-o",
        help="Open the log file in overwrite mode instead of append"
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Level of messages sent to stdout/stderr"
    ),
    log_file_level: Optional[str] = typer.Option(
        None,
        "--log-file-level",
        help="Level of messages sent to the log file"
    ),
    no_stdout: bool = typer.Option(
        False,
        "--no-stdout",
        help="Disable any output to stdout"
    ),
    no_stderr: bool = typer.Option(
        False,
        "--no-stderr",
        help="Disable any output to stderr"
    ),
    syslog: Optional[bool] = typer.Option(
        None,
        "--syslog/--no-syslog", "-S",
        help="Send messages to the system log"
    ),
    syslog_level: Optional[str] = typer.Option(
        None,
        "--syslog-level",
        help="Level of messages sent to syslog"
    ),
    syslog_prefix: Optional[str] = typer.Option(
        None,
        "--syslog-prefix",
        help="Prefix inserted at the beginning of every syslog message"
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Same as setting log level and log file level to DEBUG"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Same as setting log level and log file level to VERBOSE"
    ),
    version: bool = typer.Option(
        None,
        "--version", "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    )
):
    """
    Listen for docker events and run hooks for each.

    Every executable in the hook directory is called as
    [cyan]<hook> <Type> <Action> <event JSON>[/cyan] with the privileges of
    the file's owner.
    """
    preset = None
    if debug:
        preset = LogLevels.DEBUG
    elif verbose:
        preset = LogLevels.VERBOSE

    overrides = {
        "host_uri": host,
        "hook_dir": hook_dir,
        "io_error_retry": io_error_retry,
        "timeout_error_retry": timeout_error_retry,
        "quick_retries": quick_retries,
        "log_file": log_file,
        "overwrite_log_file": overwrite_log_file or None,
        "log_level": preset,
        "log_file_level": preset,
        "no_stdout": no_stdout or None,
        "no_stderr": no_stderr or None,
        "enable_syslog": syslog,
        "syslog_prefix": syslog_prefix,
    }
    explicit_levels = {
        "log_level": log_level,
        "log_file_level": log_file_level,
        "log_level_syslog": syslog_level,
    }

    try:
        config = build_config(config_file, overrides)
        config.update({name: value for name, value in explicit_levels.items() if value is not None})
    except ConfigurationError as e:
        err_console.print(f"[red]Argument error: {escape(str(e))}[/red]")
        err_console.print(f"[dim]Log levels: {_levels_help()}[/dim]")
        raise typer.Exit(1)

    state.config = config

    if ctx.invoked_subcommand is None:
        raise typer.Exit(run_dispatcher(config))


@app.command("daemon-version")
def daemon_version():
    """Show the docker daemon's version information"""
    config = state.config or load_config()

    try:
        with open_connection(config.connection_config()) as connection:
            body = StreamingClient(connection).get_version()
    except DispatcherError as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    try:
        console.print_json(data=json.loads(body))
    except ValueError:
        console.print(body, markup=False)


@app.command()
def hooks():
    """List the hooks that would run for each event"""
    config = state.config or load_config()
    runner = HookRunner()

    try:
        found = runner.list_hooks(config.hook_dir)
    except OSError as e:
        err_console.print(f"[red]Failed to read hook directory '{escape(config.hook_dir)}': {escape(str(e))}[/red]")
        raise typer.Exit(1)

    if not found:
        console.print(f"[dim]No hooks in {escape(config.hook_dir)}[/dim]")
        return

    for hook in found:
        console.print(f"  • [cyan]{escape(hook.path)}[/cyan] [dim](uid {hook.uid}, gid {hook.gid})[/dim]")


def main_entry():
    """Entry point for the CLI"""
    try:
        app()
    except KeyboardInterrupt:
        err_console.print("\n[dim]SIGINT caught.[/dim]")
        sys.exit(130)


if __name__ == "__main__":
    main_entry()
