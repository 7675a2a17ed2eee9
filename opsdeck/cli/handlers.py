"""Opsdeck handlers command - Show available job types."""

import typer
from rich.console import Console
from rich.table import Table

from opsdeck.cli.error_handler import handle_errors

app = typer.Typer(help="Inspect registered job handlers.")
console = Console()


@app.command("list")
@handle_errors
def list_handlers() -> None:
    """List job types that have a registered handler.

    Includes the built-in types and any handlers published by installed
    packages under the ``opsdeck.handlers`` entry point group.

    Example:
        opsdeck handlers list
    """
    from opsdeck.cli.jobs import get_scheduler

    scheduler = get_scheduler()
    types = scheduler.registry.available_types()

    if not types:
        console.print("[yellow]No handlers registered[/yellow]")
        return

    table = Table(title="Job Handlers")
    table.add_column("Job Type", style="cyan")
    table.add_column("Handler")

    for job_type in types:
        handler = scheduler.registry.get(job_type)
        module = getattr(handler, "__module__", "")
        name = getattr(handler, "__qualname__", repr(handler))
        table.add_row(job_type, f"{module}.{name}" if module else name)

    console.print(table)
