"""Opsdeck run command - Start the scheduler service in the foreground."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from opsdeck.cli.error_handler import ConfigurationError, handle_errors

app = typer.Typer(help="Start the Opsdeck scheduler service.")
console = Console()

logger = logging.getLogger(__name__)


def _attach_log_file(log_file: Path, format_str: str) -> None:
    """Add a file handler to the root logger unless one already writes there."""
    root = logging.getLogger()
    target = str(log_file.resolve())
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
            return

    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(logging.Formatter(format_str))
    root.addHandler(file_handler)


@app.callback(invoke_without_command=True)
@handle_errors
def run(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    shutdown_timeout: float = typer.Option(
        30.0,
        "--shutdown-timeout",
        min=0,
        help="Seconds to wait for running jobs on shutdown.",
    ),
    no_entry_points: bool = typer.Option(
        False,
        "--no-entry-points",
        help="Do not load handlers published by installed packages.",
    ),
) -> None:
    """Start the Opsdeck scheduler service.

    This command starts the long-running service which:
    - Recovers executions interrupted by a previous run
    - Arms a timer for every active job and runs it on schedule
    - Retries failed runs and prunes old execution history

    It runs until interrupted (Ctrl+C or SIGTERM).

    Example:
        opsdeck run
        opsdeck run --config ./opsdeck.toml --shutdown-timeout 60
    """
    from opsdeck.config import (
        VALID_LOG_LEVELS,
        ensure_directories,
        load_config,
        set_config,
        validate_config,
    )
    from opsdeck.daemon.service import run_daemon

    config = load_config(config_file)
    if no_entry_points:
        config.handlers.load_entry_points = False

    issues = validate_config(config)
    errors = [e for e in issues if e.severity == "error"]
    if errors:
        raise ConfigurationError(
            "Invalid configuration",
            details={e.field: e.message for e in errors},
        )
    for warning in issues:
        if warning.severity != "error":
            console.print(f"[yellow]{warning}[/yellow]")

    set_config(config)
    ensure_directories(config)

    if config.logging.file:
        level = config.logging.level.upper()
        # Only raise verbosity; --debug on the command line still wins
        if level in VALID_LOG_LEVELS and logging.getLevelName(level) < logging.getLogger().level:
            logging.getLogger("opsdeck").setLevel(level)
        _attach_log_file(Path(config.logging.file), config.logging.format)

    console.print("[bold green]Starting Opsdeck scheduler...[/bold green]")
    console.print(f"[dim]Database: {config.database_url}[/dim]")

    try:
        asyncio.run(run_daemon(config, {"shutdown_timeout": shutdown_timeout}))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")

    console.print("Scheduler stopped")
