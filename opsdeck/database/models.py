"""
SQLAlchemy models for the Opsdeck scheduler database.

Three tenant-scoped record types: job definitions, executions (with an
optional parent reference for retries) and the append-only job log.
UUIDs are stored as 36-character strings for SQLite compatibility and all
timestamps are naive UTC.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

# Create base class for all models
Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ScheduledJob(Base):
    """
    Scheduled job definition.

    Trigger fields are stored flat; exactly one of ``cron_expression``,
    ``interval_minutes`` or ``scheduled_at`` is meaningful for a given
    ``trigger_type``.
    """

    __tablename__ = "scheduled_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        unique=True,
        index=True
    )
    org_id: Mapped[str] = mapped_column(String, nullable=False, default="", index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    job_type: Mapped[str] = mapped_column(String, nullable=False, index=True)

    # Trigger
    trigger_type: Mapped[str] = mapped_column(String(16), nullable=False)
    cron_expression: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    interval_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Execution parameters
    config: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, default=dict)
    timeout: Mapped[float] = mapped_column(Float, nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retry_delay: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE", index=True)
    last_executed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    next_execution_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True, index=True
    )

    # Metadata
    tags: Mapped[Optional[List[str]]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=_utcnow,
        nullable=False,
    )
    # Written by the store only when the definition or status changes
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=_utcnow,
        nullable=False,
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary representation."""
        return {
            "id": self.id,
            "job_id": self.job_id,
            "org_id": self.org_id,
            "created_by": self.created_by,
            "name": self.name,
            "description": self.description,
            "job_type": self.job_type,
            "trigger_type": self.trigger_type,
            "cron_expression": self.cron_expression,
            "interval_minutes": self.interval_minutes,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "config": self.config,
            "timeout": self.timeout,
            "retry_count": self.retry_count,
            "retry_delay": self.retry_delay,
            "status": self.status,
            "last_executed_at": (
                self.last_executed_at.isoformat() if self.last_executed_at else None
            ),
            "next_execution_at": (
                self.next_execution_at.isoformat() if self.next_execution_at else None
            ),
            "tags": self.tags or [],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class JobExecution(Base):
    """
    One execution attempt of a scheduled job.

    Retries point at the original execution through ``parent_execution_id``.
    """

    __tablename__ = "job_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    execution_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        unique=True,
        index=True
    )
    job_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("scheduled_jobs.job_id"),
        nullable=False,
        index=True
    )
    org_id: Mapped[str] = mapped_column(String, nullable=False, default="", index=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    trigger_source: Mapped[str] = mapped_column(String(16), nullable=False)

    # Execution timing
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Outcome
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    # Retry chain
    parent_execution_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("job_executions.execution_id"),
        nullable=True,
        index=True
    )
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert job execution to dictionary representation."""
        return {
            "id": self.id,
            "execution_id": self.execution_id,
            "job_id": self.job_id,
            "org_id": self.org_id,
            "status": self.status,
            "trigger_source": self.trigger_source,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "result": self.result,
            "parent_execution_id": self.parent_execution_id,
            "attempt": self.attempt,
        }


class JobLog(Base):
    """
    Append-only diagnostic trail for a job.

    Written by the scheduler engine, the execution runner and handlers.
    """

    __tablename__ = "job_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    execution_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    org_id: Mapped[str] = mapped_column(String, nullable=False, default="", index=True)

    level: Mapped[str] = mapped_column(String(16), nullable=False, default="INFO")
    message: Mapped[str] = mapped_column(Text, nullable=False)
    # Named 'log_data' to stay clear of SQLAlchemy's reserved attribute names
    log_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True, name="data")

    timestamp: Mapped[datetime] = mapped_column(
        DateTime,
        default=_utcnow,
        nullable=False,
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert log entry to dictionary representation."""
        return {
            "id": self.id,
            "job_id": self.job_id,
            "execution_id": self.execution_id,
            "org_id": self.org_id,
            "level": self.level,
            "message": self.message,
            "data": self.log_data,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


# Additional indexes for common queries
Index("ix_scheduled_jobs_status_next", ScheduledJob.status, ScheduledJob.next_execution_at)
Index("ix_job_executions_job_started", JobExecution.job_id, JobExecution.started_at.desc())
Index("ix_job_logs_job_timestamp", JobLog.job_id, JobLog.timestamp.desc())
