"""Database repositories for Opsdeck.

Provides data access for scheduled jobs, their execution history and the job
log. Repositories flush but never commit; the surrounding ``session_scope``
owns the transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import desc, or_, select
from sqlalchemy.orm import Session, aliased

from opsdeck.database.models import JobExecution, JobLog, ScheduledJob


class JobRepository:
    """
    Repository for scheduled job persistence.

    Provides create, lookup, filtered listing and field updates for job
    definitions.
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def create(self, job_id: UUID, **fields: Any) -> ScheduledJob:
        """
        Create a new job in database.

        Args:
            job_id: Unique job identifier
            **fields: Column values for the new row

        Returns:
            Created ScheduledJob instance
        """
        db_job = ScheduledJob(job_id=str(job_id), **fields)
        self.session.add(db_job)
        self.session.flush()
        return db_job

    def get_by_id(self, job_id: UUID) -> Optional[ScheduledJob]:
        """
        Get a job by its UUID.

        Args:
            job_id: Job UUID

        Returns:
            ScheduledJob if found, None otherwise
        """
        return self.session.query(ScheduledJob).filter(
            ScheduledJob.job_id == str(job_id)
        ).first()

    def find_ids_by_prefix(self, prefix: str, limit: int = 10) -> List[str]:
        """Job ids starting with ``prefix`` (for short ids typed on the CLI)."""
        rows = self.session.query(ScheduledJob.job_id).filter(
            ScheduledJob.job_id.like(f"{prefix.lower()}%")
        ).limit(limit).all()
        return [row.job_id for row in rows]

    def get_by_status(self, status: str) -> List[ScheduledJob]:
        """
        Get all jobs in a given status.

        Uses the (status, next_execution_at) index.

        Args:
            status: Job status value

        Returns:
            Matching jobs ordered by next execution time
        """
        return self.session.query(ScheduledJob).filter(
            ScheduledJob.status == status
        ).order_by(ScheduledJob.next_execution_at).all()

    def find(
        self,
        org_id: Optional[str] = None,
        status: Optional[str] = None,
        job_type: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        search: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
        include_deleted: bool = False,
    ) -> Tuple[List[ScheduledJob], int]:
        """
        Filtered, paginated job listing.

        Args:
            org_id: Restrict to one organization
            status: Restrict to one status
            job_type: Restrict to one handler type
            tags: Keep jobs carrying at least one of these tags
            search: Case-insensitive match on name or description
            offset: Number of results to skip
            limit: Maximum number of results
            include_deleted: Whether DELETED jobs are listed when no status is given

        Returns:
            Tuple of (jobs newest first, total matching count)
        """
        query = self.session.query(ScheduledJob)

        if org_id is not None:
            query = query.filter(ScheduledJob.org_id == org_id)
        if status is not None:
            query = query.filter(ScheduledJob.status == status)
        elif not include_deleted:
            query = query.filter(ScheduledJob.status != "DELETED")
        if job_type is not None:
            query = query.filter(ScheduledJob.job_type == job_type)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                ScheduledJob.name.ilike(pattern),
                ScheduledJob.description.ilike(pattern),
            ))

        query = query.order_by(desc(ScheduledJob.created_at), desc(ScheduledJob.id))

        if tags:
            # Tags live in a JSON column; match them in Python
            wanted = set(tags)
            rows = [row for row in query.all() if wanted.intersection(row.tags or [])]
            return rows[offset:offset + limit], len(rows)

        total = query.count()
        return query.offset(offset).limit(limit).all(), total

    def update(self, job_id: UUID, **kwargs: Any) -> Optional[ScheduledJob]:
        """
        Update a job.

        Args:
            job_id: UUID of the job to update
            **kwargs: Attributes to update

        Returns:
            Updated ScheduledJob or None if not found
        """
        db_job = self.get_by_id(job_id)
        if not db_job:
            return None

        for key, value in kwargs.items():
            if hasattr(db_job, key):
                setattr(db_job, key, value)

        self.session.flush()
        return db_job


class JobExecutionRepository:
    """
    Repository for job execution history.

    Provides methods for recording and querying job executions.
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def create(self, execution_id: UUID, job_id: UUID, **fields: Any) -> JobExecution:
        """
        Record a job execution.

        Args:
            execution_id: UUID of the execution
            job_id: UUID of the job
            **fields: Remaining column values

        Returns:
            Created JobExecution instance
        """
        parent = fields.pop("parent_execution_id", None)
        execution = JobExecution(
            execution_id=str(execution_id),
            job_id=str(job_id),
            parent_execution_id=str(parent) if parent else None,
            **fields,
        )
        self.session.add(execution)
        self.session.flush()
        return execution

    def get_by_id(self, execution_id: UUID) -> Optional[JobExecution]:
        """
        Get an execution by its UUID.

        Args:
            execution_id: Execution UUID

        Returns:
            JobExecution if found, None otherwise
        """
        return self.session.query(JobExecution).filter(
            JobExecution.execution_id == str(execution_id)
        ).first()

    def update(self, execution_id: UUID, **kwargs: Any) -> Optional[JobExecution]:
        """
        Update an execution.

        Returns:
            Updated JobExecution or None if not found
        """
        execution = self.get_by_id(execution_id)
        if not execution:
            return None

        for key, value in kwargs.items():
            if hasattr(execution, key):
                setattr(execution, key, value)

        self.session.flush()
        return execution

    def get_history(
        self,
        job_id: Optional[UUID] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[JobExecution]:
        """
        Get execution history.

        Args:
            job_id: Filter by job ID (optional)
            limit: Maximum number of results
            offset: Number of results to skip

        Returns:
            List of job executions ordered by started_at descending
        """
        query = self.session.query(JobExecution).order_by(
            desc(JobExecution.started_at), desc(JobExecution.id)
        )

        if job_id:
            query = query.filter(JobExecution.job_id == str(job_id))

        return query.offset(offset).limit(limit).all()

    def count(self, job_id: Optional[UUID] = None) -> int:
        """
        Count executions.

        Args:
            job_id: Filter by job ID (optional)

        Returns:
            Number of executions
        """
        query = self.session.query(JobExecution)
        if job_id:
            query = query.filter(JobExecution.job_id == str(job_id))
        return query.count()

    def count_children(self, parent_execution_id: UUID) -> int:
        """
        Count retry executions linked to an original execution.

        Args:
            parent_execution_id: Execution ID of the original attempt

        Returns:
            Number of retry executions recorded so far
        """
        return self.session.query(JobExecution).filter(
            JobExecution.parent_execution_id == str(parent_execution_id)
        ).count()

    def get_by_status(self, status: str) -> List[JobExecution]:
        """
        Get all executions in a given status.

        Args:
            status: Execution status value

        Returns:
            Matching executions
        """
        return self.session.query(JobExecution).filter(
            JobExecution.status == status
        ).all()

    def delete_old_executions(self, before: datetime) -> int:
        """
        Delete finished executions older than a given date.

        Retry children are removed first. An original execution is kept while
        any of its retries survives, so the self-referencing foreign key holds.

        Args:
            before: Delete executions started before this time

        Returns:
            Number of executions deleted
        """
        base = self.session.query(JobExecution).filter(
            JobExecution.started_at < before,
            JobExecution.status != "RUNNING",
        )
        children = base.filter(JobExecution.parent_execution_id.isnot(None)).delete(
            synchronize_session=False
        )
        retry = aliased(JobExecution)
        still_referenced = select(retry.parent_execution_id).where(
            retry.parent_execution_id.isnot(None)
        )
        parents = base.filter(
            JobExecution.parent_execution_id.is_(None),
            JobExecution.execution_id.not_in(still_referenced),
        ).delete(synchronize_session=False)
        return children + parents


class JobLogRepository:
    """Repository for the append-only job log."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        job_id: UUID,
        message: str,
        level: str = "INFO",
        org_id: str = "",
        execution_id: Optional[UUID] = None,
        data: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> JobLog:
        """
        Append a log entry.

        Args:
            job_id: UUID of the job
            message: Log message
            level: INFO, WARNING or ERROR
            org_id: Owning organization
            execution_id: Execution the entry belongs to (optional)
            data: Structured context (optional)
            timestamp: Entry time (defaults to now)

        Returns:
            Created JobLog instance
        """
        entry = JobLog(
            job_id=str(job_id),
            execution_id=str(execution_id) if execution_id else None,
            org_id=org_id,
            level=level,
            message=message,
            log_data=data,
        )
        if timestamp is not None:
            entry.timestamp = timestamp
        self.session.add(entry)
        self.session.flush()
        return entry

    def get_for_job(
        self,
        job_id: UUID,
        limit: int = 50,
        execution_id: Optional[UUID] = None,
    ) -> List[JobLog]:
        """
        Get log entries for a job, newest first.

        Args:
            job_id: UUID of the job
            limit: Maximum number of results
            execution_id: Restrict to one execution (optional)

        Returns:
            List of log entries
        """
        query = self.session.query(JobLog).filter(JobLog.job_id == str(job_id))
        if execution_id:
            query = query.filter(JobLog.execution_id == str(execution_id))
        return query.order_by(desc(JobLog.timestamp), desc(JobLog.id)).limit(limit).all()

    def delete_old_logs(self, before: datetime) -> int:
        """
        Delete log entries older than a given date.

        Returns:
            Number of entries deleted
        """
        return self.session.query(JobLog).filter(
            JobLog.timestamp < before
        ).delete(synchronize_session=False)


class RepositoryFactory:
    """
    Factory for creating repository instances.

    Usage:
        with session_scope(factory) as session:
            repos = RepositoryFactory(session)
            job = repos.jobs.get_by_id(job_id)
    """

    def __init__(self, session: Session):
        """
        Initialize factory with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session
        self._jobs: Optional[JobRepository] = None
        self._executions: Optional[JobExecutionRepository] = None
        self._logs: Optional[JobLogRepository] = None

    @property
    def jobs(self) -> JobRepository:
        """Get job repository."""
        if self._jobs is None:
            self._jobs = JobRepository(self.session)
        return self._jobs

    @property
    def executions(self) -> JobExecutionRepository:
        """Get job execution repository."""
        if self._executions is None:
            self._executions = JobExecutionRepository(self.session)
        return self._executions

    @property
    def logs(self) -> JobLogRepository:
        """Get job log repository."""
        if self._logs is None:
            self._logs = JobLogRepository(self.session)
        return self._logs
