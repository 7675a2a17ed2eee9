"""Job store: the scheduler's narrow persistence adapter.

Converts between the domain dataclasses in ``opsdeck.scheduler.models`` and
the SQLAlchemy rows in ``opsdeck.database.models``. Every public method runs
in its own short transaction, so callers never hold a session across an
``await``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.orm import sessionmaker

from opsdeck.database.connection import (
    create_db_engine,
    create_session_factory,
    create_tables,
    session_scope,
)
from opsdeck.database.models import JobExecution, JobLog, ScheduledJob
from opsdeck.database.repositories import RepositoryFactory
from opsdeck.scheduler.models import (
    Execution,
    ExecutionStatus,
    Job,
    JobLogEntry,
    JobStatus,
    LogLevel,
    Page,
    TriggerSource,
    utcnow,
)
from opsdeck.scheduler.triggers import (
    CronSpec,
    IntervalSpec,
    OneTimeSpec,
    TriggerSpec,
    TriggerType,
)

logger = logging.getLogger(__name__)

# Sentinel for "leave this column alone"
_UNSET: Any = object()


def _trigger_columns(trigger: TriggerSpec) -> dict:
    if isinstance(trigger, CronSpec):
        return {
            "trigger_type": TriggerType.CRON.value,
            "cron_expression": trigger.expression,
            "interval_minutes": None,
            "scheduled_at": None,
        }
    if isinstance(trigger, IntervalSpec):
        return {
            "trigger_type": TriggerType.INTERVAL.value,
            "cron_expression": None,
            "interval_minutes": trigger.minutes,
            "scheduled_at": None,
        }
    return {
        "trigger_type": TriggerType.ONE_TIME.value,
        "cron_expression": None,
        "interval_minutes": None,
        "scheduled_at": trigger.at,
    }


def _trigger_from_row(row: ScheduledJob) -> TriggerSpec:
    kind = TriggerType(row.trigger_type)
    if kind is TriggerType.CRON:
        return CronSpec(row.cron_expression or "")
    if kind is TriggerType.INTERVAL:
        return IntervalSpec(int(row.interval_minutes or 0))
    return OneTimeSpec(row.scheduled_at)


def _job_from_row(row: ScheduledJob) -> Job:
    return Job(
        job_id=UUID(row.job_id),
        org_id=row.org_id,
        name=row.name,
        job_type=row.job_type,
        trigger=_trigger_from_row(row),
        config=dict(row.config or {}),
        timeout=row.timeout,
        retry_count=row.retry_count,
        retry_delay=row.retry_delay,
        status=JobStatus(row.status),
        created_by=row.created_by,
        description=row.description,
        tags=list(row.tags or []),
        last_executed_at=row.last_executed_at,
        next_execution_at=row.next_execution_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _job_columns(job: Job) -> dict:
    columns = {
        "org_id": job.org_id,
        "created_by": job.created_by,
        "name": job.name,
        "description": job.description,
        "job_type": job.job_type,
        "config": dict(job.config),
        "timeout": job.timeout,
        "retry_count": job.retry_count,
        "retry_delay": job.retry_delay,
        "status": job.status.value,
        "last_executed_at": job.last_executed_at,
        "next_execution_at": job.next_execution_at,
        "tags": list(job.tags),
        "created_at": job.created_at,
        "updated_at": job.updated_at,
    }
    columns.update(_trigger_columns(job.trigger))
    return columns


def _execution_from_row(row: JobExecution) -> Execution:
    return Execution(
        execution_id=UUID(row.execution_id),
        job_id=UUID(row.job_id),
        org_id=row.org_id,
        status=ExecutionStatus(row.status),
        trigger_source=TriggerSource(row.trigger_source),
        started_at=row.started_at,
        completed_at=row.completed_at,
        duration_ms=row.duration_ms,
        error=row.error,
        result=row.result,
        parent_execution_id=(
            UUID(row.parent_execution_id) if row.parent_execution_id else None
        ),
        attempt=row.attempt,
    )


def _log_from_row(row: JobLog) -> JobLogEntry:
    return JobLogEntry(
        id=row.id,
        job_id=UUID(row.job_id),
        execution_id=UUID(row.execution_id) if row.execution_id else None,
        org_id=row.org_id,
        level=LogLevel(row.level),
        message=row.message,
        data=row.log_data,
        timestamp=row.timestamp,
    )


class JobStore:
    """Durable storage for jobs, executions and job logs.

    Args:
        session_factory: SQLAlchemy session factory bound to the database
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str, create: bool = True) -> "JobStore":
        """Open a store on ``database_url``, creating the tables if asked."""
        engine = create_db_engine(database_url)
        if create:
            create_tables(engine)
        return cls(create_session_factory(engine))

    # --- Jobs -------------------------------------------------------------

    def save_job(self, job: Job) -> Job:
        """Insert a new job or replace every column of an existing one."""
        with session_scope(self._session_factory) as session:
            repos = RepositoryFactory(session)
            columns = _job_columns(job)
            if repos.jobs.get_by_id(job.job_id) is None:
                repos.jobs.create(job.job_id, **columns)
            else:
                repos.jobs.update(job.job_id, **columns)
        return job

    def get_job(self, job_id: UUID) -> Optional[Job]:
        """Load a job by id, or None if it does not exist."""
        with session_scope(self._session_factory) as session:
            row = RepositoryFactory(session).jobs.get_by_id(job_id)
            return _job_from_row(row) if row else None

    def match_job_ids(self, prefix: str, limit: int = 10) -> List[UUID]:
        """Ids of jobs (deleted ones included) whose id starts with ``prefix``."""
        with session_scope(self._session_factory) as session:
            ids = RepositoryFactory(session).jobs.find_ids_by_prefix(prefix, limit=limit)
        return [UUID(job_id) for job_id in ids]

    def list_jobs(
        self,
        org_id: Optional[str] = None,
        status: Optional[JobStatus] = None,
        job_type: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page[Job]:
        """List jobs newest first with optional filters.

        DELETED jobs are only listed when ``status`` asks for them.
        """
        page = max(page, 1)
        with session_scope(self._session_factory) as session:
            rows, total = RepositoryFactory(session).jobs.find(
                org_id=org_id,
                status=status.value if status else None,
                job_type=job_type,
                tags=tags,
                search=search,
                offset=(page - 1) * limit,
                limit=limit,
            )
            items = [_job_from_row(row) for row in rows]
        return Page(items=items, page=page, limit=limit, total=total)

    def active_jobs(self) -> List[Job]:
        """All ACTIVE jobs (indexed status query)."""
        with session_scope(self._session_factory) as session:
            rows = RepositoryFactory(session).jobs.get_by_status(JobStatus.ACTIVE.value)
            return [_job_from_row(row) for row in rows]

    def update_schedule(
        self,
        job_id: UUID,
        next_execution_at: Optional[datetime] = _UNSET,
        last_executed_at: Optional[datetime] = _UNSET,
        status: Optional[JobStatus] = None,
    ) -> Optional[Job]:
        """Update the scheduling columns of a job.

        Arguments left out keep their stored value. ``updated_at`` is only
        bumped when the status changes; schedule bookkeeping is not an edit.

        Returns:
            The updated job, or None if it does not exist
        """
        changes: dict = {}
        if next_execution_at is not _UNSET:
            changes["next_execution_at"] = next_execution_at
        if last_executed_at is not _UNSET:
            changes["last_executed_at"] = last_executed_at
        if status is not None:
            changes["status"] = status.value

        with session_scope(self._session_factory) as session:
            repo = RepositoryFactory(session).jobs
            row = repo.get_by_id(job_id)
            if row is None:
                return None
            if status is not None:
                changes["updated_at"] = utcnow()
            repo.update(job_id, **changes)
            return _job_from_row(row)

    # --- Executions -------------------------------------------------------

    def create_execution(self, execution: Execution) -> Execution:
        """Persist a new execution record."""
        with session_scope(self._session_factory) as session:
            RepositoryFactory(session).executions.create(
                execution.execution_id,
                execution.job_id,
                org_id=execution.org_id,
                status=execution.status.value,
                trigger_source=execution.trigger_source.value,
                started_at=execution.started_at,
                completed_at=execution.completed_at,
                duration_ms=execution.duration_ms,
                error=execution.error,
                result=execution.result,
                parent_execution_id=execution.parent_execution_id,
                attempt=execution.attempt,
            )
        return execution

    def complete_execution(self, execution: Execution) -> Execution:
        """Persist the terminal state of an execution."""
        with session_scope(self._session_factory) as session:
            RepositoryFactory(session).executions.update(
                execution.execution_id,
                status=execution.status.value,
                completed_at=execution.completed_at,
                duration_ms=execution.duration_ms,
                error=execution.error,
                result=execution.result,
            )
        return execution

    def get_execution(self, execution_id: UUID) -> Optional[Execution]:
        """Load an execution by id."""
        with session_scope(self._session_factory) as session:
            row = RepositoryFactory(session).executions.get_by_id(execution_id)
            return _execution_from_row(row) if row else None

    def list_executions(self, job_id: UUID, page: int = 1, limit: int = 20) -> Page[Execution]:
        """Execution history of a job, newest first."""
        page = max(page, 1)
        with session_scope(self._session_factory) as session:
            repo = RepositoryFactory(session).executions
            rows = repo.get_history(job_id=job_id, limit=limit, offset=(page - 1) * limit)
            items = [_execution_from_row(row) for row in rows]
            total = repo.count(job_id)
        return Page(items=items, page=page, limit=limit, total=total)

    def count_retries(self, root_execution_id: UUID) -> int:
        """Number of retry executions already recorded for a root execution."""
        with session_scope(self._session_factory) as session:
            return RepositoryFactory(session).executions.count_children(root_execution_id)

    def fail_running_executions(self, error: str) -> List[Execution]:
        """Mark every RUNNING execution FAILED.

        Used on startup: nothing can be running before the engine starts, so
        any RUNNING row was left behind by a process that died mid-run.

        Returns:
            The executions that were recovered
        """
        now = utcnow()
        recovered: List[Execution] = []
        with session_scope(self._session_factory) as session:
            repo = RepositoryFactory(session).executions
            for row in repo.get_by_status(ExecutionStatus.RUNNING.value):
                row.status = ExecutionStatus.FAILED.value
                row.completed_at = now
                row.duration_ms = max(int((now - row.started_at).total_seconds() * 1000), 0)
                row.error = error
                recovered.append(_execution_from_row(row))
        return recovered

    # --- Logs -------------------------------------------------------------

    def append_log(self, entry: JobLogEntry) -> JobLogEntry:
        """Append an entry to the job log."""
        with session_scope(self._session_factory) as session:
            row = RepositoryFactory(session).logs.create(
                entry.job_id,
                entry.message,
                level=entry.level.value,
                org_id=entry.org_id,
                execution_id=entry.execution_id,
                data=entry.data,
                timestamp=entry.timestamp,
            )
            entry.id = row.id
        return entry

    def list_logs(
        self,
        job_id: UUID,
        limit: int = 50,
        execution_id: Optional[UUID] = None,
    ) -> List[JobLogEntry]:
        """Job log entries, newest first."""
        with session_scope(self._session_factory) as session:
            rows = RepositoryFactory(session).logs.get_for_job(
                job_id, limit=limit, execution_id=execution_id
            )
            return [_log_from_row(row) for row in rows]

    # --- Maintenance ------------------------------------------------------

    def delete_history_before(self, cutoff: datetime) -> Tuple[int, int]:
        """Delete finished executions and log entries older than ``cutoff``.

        Returns:
            Tuple of (executions deleted, log entries deleted)
        """
        with session_scope(self._session_factory) as session:
            repos = RepositoryFactory(session)
            executions = repos.executions.delete_old_executions(cutoff)
            logs = repos.logs.delete_old_logs(cutoff)
        if executions or logs:
            logger.info(
                f"Deleted {executions} executions and {logs} log entries older than {cutoff}"
            )
        return executions, logs
