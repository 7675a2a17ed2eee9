"""Opsdeck jobs command - Manage scheduled jobs."""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from opsdeck.cli.error_handler import (
    ExecutionFailedError,
    NotFoundError,
    ValidationError,
    handle_errors,
)
from opsdeck.scheduler import (
    CronSpec,
    ExecutionStatus,
    IntervalSpec,
    Job,
    JobRequest,
    JobScheduler,
    JobStatus,
    OneTimeSpec,
    describe_trigger,
)

app = typer.Typer(help="Manage scheduled jobs.")
console = Console()

_STATUS_STYLES = {
    JobStatus.ACTIVE: "green",
    JobStatus.PAUSED: "yellow",
    JobStatus.INACTIVE: "dim",
    JobStatus.DELETED: "red",
    ExecutionStatus.RUNNING: "cyan",
    ExecutionStatus.SUCCESS: "green",
    ExecutionStatus.FAILED: "red",
    ExecutionStatus.TIMEOUT: "magenta",
}


def get_scheduler() -> JobScheduler:
    """Build a scheduler on the configured database.

    The CLI never starts it: job changes are written to the store and the
    running service picks them up on its next sync.
    """
    from opsdeck.config import get_config
    from opsdeck.scheduler import create_scheduler

    return create_scheduler(get_config())


def _resolve_job_id(scheduler: JobScheduler, job_id: str) -> UUID:
    """Accept a full job id or a unique prefix of one."""
    try:
        return UUID(job_id)
    except ValueError:
        pass

    matches = scheduler.store.match_job_ids(job_id.strip())
    if not matches:
        raise NotFoundError(f"Job not found: {job_id}")
    if len(matches) > 1:
        raise ValidationError(f"Multiple jobs match '{job_id}'. Be more specific.")
    return matches[0]


def _styled(status: Any) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value.lower()}[/{style}]"


def _fmt_time(value: Optional[datetime], empty: str = "Never") -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else empty


def _parse_status(status: Optional[str]) -> Optional[JobStatus]:
    if not status:
        return None
    try:
        return JobStatus(status.upper())
    except ValueError:
        valid = ", ".join(s.value.lower() for s in JobStatus)
        raise ValidationError(f"Invalid status '{status}'. Choose from: {valid}")


def _parse_config(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON for --config: {e}")
    if not isinstance(value, dict):
        raise ValidationError("--config must be a JSON object")
    return value


def _parse_at(raw: str) -> datetime:
    try:
        value = datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"Invalid datetime for --at: '{raw}' (use ISO 8601)")
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _trigger_fields(
    cron: Optional[str],
    every: Optional[int],
    at: Optional[str],
) -> Optional[Dict[str, Any]]:
    """Trigger fields from the mutually exclusive --cron/--every/--at options."""
    given = [opt for opt, value in (("--cron", cron), ("--every", every), ("--at", at))
             if value is not None]
    if not given:
        return None
    if len(given) > 1:
        raise ValidationError(f"Options {', '.join(given)} are mutually exclusive")

    if cron is not None:
        return {"trigger_type": "CRON", "cron_expression": cron}
    if every is not None:
        return {"trigger_type": "INTERVAL", "interval_minutes": every}
    return {"trigger_type": "ONE_TIME", "scheduled_at": _parse_at(at)}


def _existing_trigger_fields(job: Job) -> Dict[str, Any]:
    trigger = job.trigger
    if isinstance(trigger, CronSpec):
        return {"trigger_type": "CRON", "cron_expression": trigger.expression}
    if isinstance(trigger, IntervalSpec):
        return {"trigger_type": "INTERVAL", "interval_minutes": trigger.minutes}
    assert isinstance(trigger, OneTimeSpec)
    return {"trigger_type": "ONE_TIME", "scheduled_at": trigger.at}


def _print_job(job: Job) -> None:
    console.print(f"  ID: {job.job_id}")
    console.print(f"  Name: {job.name}")
    console.print(f"  Type: {job.job_type}")
    console.print(f"  Trigger: {describe_trigger(job.trigger)}")
    console.print(f"  Status: {_styled(job.status)}")
    console.print(f"  Next run: {_fmt_time(job.next_execution_at, 'N/A')}")


@app.command("list")
@handle_errors
def list_jobs(
    status: Optional[str] = typer.Option(
        None,
        "--status",
        "-s",
        help="Filter by status (active, paused, inactive, deleted).",
    ),
    job_type: Optional[str] = typer.Option(
        None,
        "--type",
        "-t",
        help="Filter by job type.",
    ),
    tags: Optional[List[str]] = typer.Option(
        None,
        "--tag",
        help="Filter by tag (repeatable; any tag matches).",
    ),
    search: Optional[str] = typer.Option(
        None,
        "--search",
        help="Search job names and descriptions.",
    ),
    org_id: Optional[str] = typer.Option(
        None,
        "--org",
        help="Filter by organization.",
    ),
    page: int = typer.Option(1, "--page", min=1, help="Page number."),
    limit: int = typer.Option(20, "--limit", "-l", min=1, help="Jobs per page."),
) -> None:
    """List scheduled jobs.

    Example:
        opsdeck jobs list
        opsdeck jobs list --status paused --type API_CALL
    """
    scheduler = get_scheduler()
    result = scheduler.list_jobs(
        org_id=org_id,
        status=_parse_status(status),
        job_type=job_type,
        tags=tags or None,
        search=search,
        page=page,
        limit=limit,
    )

    table = Table(title="Scheduled Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Type")
    table.add_column("Trigger", style="green")
    table.add_column("Status", style="bold")
    table.add_column("Last Run")
    table.add_column("Next Run")

    for job in result.items:
        table.add_row(
            str(job.job_id)[:8],
            job.name,
            job.job_type,
            describe_trigger(job.trigger),
            _styled(job.status),
            _fmt_time(job.last_executed_at),
            _fmt_time(job.next_execution_at, "N/A"),
        )

    console.print(table)
    console.print(
        f"[dim]Page {result.page} of {max(result.total_pages, 1)} "
        f"({result.total} job{'s' if result.total != 1 else ''})[/dim]"
    )


@app.command("show")
@handle_errors
def show_job(
    job_id: str = typer.Argument(..., help="ID (or prefix) of the job."),
) -> None:
    """Show a job's full definition."""
    scheduler = get_scheduler()
    job = scheduler.get_job(_resolve_job_id(scheduler, job_id))

    console.print(f"[bold]{job.name}[/bold]")
    _print_job(job)
    console.print(f"  Organization: {job.org_id or '-'}")
    if job.description:
        console.print(f"  Description: {job.description}")
    console.print(f"  Timeout: {job.timeout:g}s")
    console.print(f"  Retries: {job.retry_count} (delay {job.retry_delay:g}s)")
    console.print(f"  Tags: {', '.join(job.tags) if job.tags else '-'}")
    console.print(f"  Config: {json.dumps(job.config, default=str)}")
    console.print(f"  Last run: {_fmt_time(job.last_executed_at)}")
    console.print(f"  Created: {_fmt_time(job.created_at)}")
    console.print(f"  Updated: {_fmt_time(job.updated_at)}")


@app.command("create")
@handle_errors
def create_job(
    name: str = typer.Option(..., "--name", "-n", help="Job name."),
    job_type: str = typer.Option(..., "--type", "-t", help="Handler job type, e.g. API_CALL."),
    cron: Optional[str] = typer.Option(
        None,
        "--cron",
        help="Cron expression in UTC (e.g., '0 * * * *' for hourly).",
    ),
    every: Optional[int] = typer.Option(
        None,
        "--every",
        help="Run every N minutes after the previous run completes.",
    ),
    at: Optional[str] = typer.Option(
        None,
        "--at",
        help="Run once at this ISO 8601 time (UTC unless an offset is given).",
    ),
    config_json: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Handler configuration as a JSON object.",
    ),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Timeout in seconds."),
    retries: Optional[int] = typer.Option(None, "--retries", help="Automatic retries after a failure."),
    retry_delay: Optional[float] = typer.Option(
        None,
        "--retry-delay",
        help="Seconds to wait before each retry.",
    ),
    tags: Optional[List[str]] = typer.Option(None, "--tag", help="Tag (repeatable)."),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Description."),
    org_id: str = typer.Option("", "--org", help="Owning organization."),
) -> None:
    """Create a new scheduled job.

    Example:
        opsdeck jobs create -n "Order sync" -t API_CALL --every 15 \\
            --config '{"url": "https://example.com/sync"}'
        opsdeck jobs create -n "Nightly report" -t WEBHOOK_TRIGGER --cron "0 2 * * *"
    """
    trigger = _trigger_fields(cron, every, at)
    if trigger is None:
        raise ValidationError("One of --cron, --every or --at is required")

    scheduler = get_scheduler()
    job = scheduler.create_job(JobRequest(
        name=name,
        job_type=job_type,
        config=_parse_config(config_json) or {},
        timeout=timeout,
        retry_count=retries,
        retry_delay=retry_delay,
        tags=tags or [],
        description=description,
        org_id=org_id,
        **trigger,
    ))

    console.print(f"[green]✓[/green] Job created: {job.job_id}")
    _print_job(job)


@app.command("update")
@handle_errors
def update_job(
    job_id: str = typer.Argument(..., help="ID (or prefix) of the job."),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Job name."),
    job_type: Optional[str] = typer.Option(None, "--type", "-t", help="Handler job type."),
    cron: Optional[str] = typer.Option(None, "--cron", help="New cron expression."),
    every: Optional[int] = typer.Option(None, "--every", help="New interval in minutes."),
    at: Optional[str] = typer.Option(None, "--at", help="New one-time instant (ISO 8601)."),
    config_json: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Replacement handler configuration as a JSON object.",
    ),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Timeout in seconds."),
    retries: Optional[int] = typer.Option(None, "--retries", help="Automatic retries after a failure."),
    retry_delay: Optional[float] = typer.Option(
        None,
        "--retry-delay",
        help="Seconds to wait before each retry.",
    ),
    tags: Optional[List[str]] = typer.Option(None, "--tag", help="Replacement tags (repeatable)."),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Description."),
) -> None:
    """Change a job. Options left out keep their current value.

    Example:
        opsdeck jobs update 1a2b3c4d --every 30
        opsdeck jobs update 1a2b3c4d --retries 3 --retry-delay 120
    """
    scheduler = get_scheduler()
    current = scheduler.get_job(_resolve_job_id(scheduler, job_id))

    trigger = _trigger_fields(cron, every, at) or _existing_trigger_fields(current)
    config = _parse_config(config_json)

    job = scheduler.update_job(current.job_id, JobRequest(
        name=name if name is not None else current.name,
        job_type=job_type if job_type is not None else current.job_type,
        config=config if config is not None else current.config,
        timeout=timeout if timeout is not None else current.timeout,
        retry_count=retries if retries is not None else current.retry_count,
        retry_delay=retry_delay if retry_delay is not None else current.retry_delay,
        tags=tags if tags else current.tags,
        description=description if description is not None else current.description,
        org_id=current.org_id,
        created_by=current.created_by,
        **trigger,
    ))

    console.print(f"[green]✓[/green] Job updated: {job.job_id}")
    _print_job(job)


@app.command("pause")
@handle_errors
def pause_job(
    job_id: str = typer.Argument(..., help="ID (or prefix) of the job to pause."),
) -> None:
    """Pause a scheduled job.

    Example:
        opsdeck jobs pause 1a2b3c4d
    """
    scheduler = get_scheduler()
    job = scheduler.pause_job(_resolve_job_id(scheduler, job_id))
    console.print(f"[green]✓[/green] Job paused: {job.name}")


@app.command("resume")
@handle_errors
def resume_job(
    job_id: str = typer.Argument(..., help="ID (or prefix) of the job to resume."),
) -> None:
    """Resume a paused job.

    Example:
        opsdeck jobs resume 1a2b3c4d
    """
    scheduler = get_scheduler()
    job = scheduler.resume_job(_resolve_job_id(scheduler, job_id))

    if job.status == JobStatus.INACTIVE:
        console.print(f"[yellow]![/yellow] Job '{job.name}' has no future run; marked inactive")
        return

    console.print(f"[green]✓[/green] Job resumed: {job.name}")
    console.print(f"  Next run: {_fmt_time(job.next_execution_at, 'N/A')}")


@app.command("delete")
@handle_errors
def delete_job(
    job_id: str = typer.Argument(..., help="ID (or prefix) of the job to delete."),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Skip confirmation prompt.",
    ),
) -> None:
    """Delete a scheduled job. Its history is kept.

    Example:
        opsdeck jobs delete 1a2b3c4d
        opsdeck jobs delete 1a2b3c4d --force
    """
    scheduler = get_scheduler()
    job = scheduler.get_job(_resolve_job_id(scheduler, job_id))

    if not force:
        confirm = typer.confirm(f"Delete job '{job.name}' ({job.job_id})?")
        if not confirm:
            raise typer.Abort()

    scheduler.delete_job(job.job_id)
    console.print(f"[green]✓[/green] Job deleted: {job.job_id}")


@app.command("run")
@handle_errors
def run_job(
    job_id: str = typer.Argument(..., help="ID (or prefix) of the job to run immediately."),
) -> None:
    """Run a job immediately (outside of schedule) and wait for it.

    Example:
        opsdeck jobs run 1a2b3c4d
    """
    scheduler = get_scheduler()
    job = scheduler.get_job(_resolve_job_id(scheduler, job_id))
    console.print(f"[bold]Running job:[/bold] {job.name}")

    execution = asyncio.run(scheduler.run_job_now(job.job_id))
    duration = f"{execution.duration_ms / 1000:.1f}s" if execution.duration_ms is not None else "-"

    if execution.status == ExecutionStatus.SUCCESS:
        console.print(f"[green]✓[/green] Job completed in {duration}")
        if execution.result is not None:
            console.print(f"  Result: {json.dumps(execution.result, default=str)}")
        return

    raise ExecutionFailedError(
        f"Job {execution.status.value.lower()}: {execution.error}",
        details={"execution_id": str(execution.execution_id)},
    )


@app.command("history")
@handle_errors
def job_history(
    job_id: str = typer.Argument(..., help="ID (or prefix) of the job."),
    page: int = typer.Option(1, "--page", min=1, help="Page number."),
    limit: int = typer.Option(
        10,
        "--limit",
        "-l",
        min=1,
        help="Number of history entries to show.",
    ),
) -> None:
    """Show job execution history, newest first.

    Example:
        opsdeck jobs history 1a2b3c4d --limit 20
    """
    scheduler = get_scheduler()
    target = _resolve_job_id(scheduler, job_id)
    history = scheduler.list_executions(target, page=page, limit=limit)

    table = Table(title=f"Job History for {str(target)[:8]}")
    table.add_column("Execution", style="cyan")
    table.add_column("Source")
    table.add_column("Started", style="green")
    table.add_column("Duration")
    table.add_column("Status", style="bold")
    table.add_column("Attempt")
    table.add_column("Error")

    for record in history.items:
        duration = f"{record.duration_ms / 1000:.1f}s" if record.duration_ms is not None else ""
        table.add_row(
            str(record.execution_id)[:8],
            record.trigger_source.value.lower(),
            record.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            duration,
            _styled(record.status),
            str(record.attempt),
            record.error or "",
        )

    console.print(table)
    console.print(f"[dim]Page {history.page} of {max(history.total_pages, 1)} "
                  f"({history.total} total)[/dim]")


@app.command("logs")
@handle_errors
def job_logs(
    job_id: str = typer.Argument(..., help="ID (or prefix) of the job."),
    execution_id: Optional[str] = typer.Option(
        None,
        "--execution",
        "-e",
        help="Only show entries for this execution id.",
    ),
    limit: int = typer.Option(50, "--limit", "-l", min=1, help="Number of entries to show."),
) -> None:
    """Show a job's log entries, newest first."""
    scheduler = get_scheduler()
    target = _resolve_job_id(scheduler, job_id)

    execution_uuid = None
    if execution_id:
        try:
            execution_uuid = UUID(execution_id)
        except ValueError:
            raise ValidationError(f"Invalid execution id: {execution_id}")

    entries = scheduler.get_job_logs(target, limit=limit, execution_id=execution_uuid)
    if not entries:
        console.print("[dim]No log entries[/dim]")
        return

    level_styles = {"INFO": "white", "WARNING": "yellow", "ERROR": "red"}
    for entry in entries:
        style = level_styles.get(entry.level.value, "white")
        console.print(
            f"{entry.timestamp.strftime('%Y-%m-%d %H:%M:%S')} "
            f"[{style}]{entry.level.value:<7}[/{style}] {entry.message}",
            highlight=False,
        )
