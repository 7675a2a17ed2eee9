"""Domain types for scheduled jobs and their executions.

These dataclasses are what the scheduler engine, runner and retry
coordinator pass around. The SQLAlchemy rows in ``opsdeck.database.models``
are converted to and from these types by the job store.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar
from uuid import UUID, uuid4

from opsdeck.scheduler.triggers import TriggerSpec, TriggerType, trigger_type_of


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the store's convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobStatus(str, Enum):
    """Lifecycle status of a scheduled job."""

    ACTIVE = "ACTIVE"  # Armed and will fire
    PAUSED = "PAUSED"  # Timer cancelled until resumed
    INACTIVE = "INACTIVE"  # One-time job that already fired
    DELETED = "DELETED"  # Soft-deleted, never scheduled again


class ExecutionStatus(str, Enum):
    """Status of a single execution attempt."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class TriggerSource(str, Enum):
    """What caused an execution to start."""

    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"
    RETRY = "RETRY"


class LogLevel(str, Enum):
    """Severity of a job log entry."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass
class Job:
    """A persisted definition of recurring or one-off work.

    Attributes:
        job_id: Unique identifier for the job
        org_id: Owning organization (tenant scope)
        name: Human-readable job name
        job_type: Handler key looked up in the handler registry
        trigger: When the job fires (cron, interval or one-time)
        config: Opaque handler configuration
        timeout: Maximum run duration in seconds
        retry_count: Maximum automatic retries after a failure
        retry_delay: Seconds to wait before each retry
        status: Lifecycle status
        created_by: Reference to the creating user
        description: Optional free-text description
        tags: Free-form tags
        last_executed_at: Completion time of the last terminal run
        next_execution_at: Next armed fire time, if any
        created_at: When the job was created
        updated_at: When the job definition last changed
    """

    name: str
    job_type: str
    trigger: TriggerSpec
    org_id: str = ""
    job_id: UUID = field(default_factory=uuid4)
    config: Dict[str, Any] = field(default_factory=dict)
    timeout: float = 300.0
    retry_count: int = 0
    retry_delay: float = 60.0
    status: JobStatus = JobStatus.ACTIVE
    created_by: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    last_executed_at: Optional[datetime] = None
    next_execution_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def trigger_type(self) -> TriggerType:
        """Trigger type derived from the trigger variant."""
        return trigger_type_of(self.trigger)

    @property
    def is_schedulable(self) -> bool:
        """Whether the engine should keep a timer armed for this job."""
        return self.status == JobStatus.ACTIVE


@dataclass
class Execution:
    """One attempt to run a job's handler."""

    job_id: UUID
    execution_id: UUID = field(default_factory=uuid4)
    org_id: str = ""
    status: ExecutionStatus = ExecutionStatus.RUNNING
    trigger_source: TriggerSource = TriggerSource.SCHEDULED
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None
    result: Optional[Any] = None
    parent_execution_id: Optional[UUID] = None
    attempt: int = 0

    @property
    def root_execution_id(self) -> UUID:
        """The original execution of a retry chain."""
        return self.parent_execution_id or self.execution_id


@dataclass
class JobLogEntry:
    """A single append-only diagnostic line tied to a job."""

    job_id: UUID
    message: str
    level: LogLevel = LogLevel.INFO
    org_id: str = ""
    execution_id: Optional[UUID] = None
    data: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    """A page of results plus pagination bookkeeping."""

    items: List[T]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


@dataclass
class JobRequest:
    """Create/update payload accepted from the CRUD layer.

    Trigger fields are raw here; ``parse_trigger`` turns them into a
    ``TriggerSpec`` or rejects them. ``None`` for timeout/retry fields means
    "use the configured default".
    """

    name: str
    job_type: str
    trigger_type: str
    cron_expression: Optional[str] = None
    interval_minutes: Optional[int] = None
    scheduled_at: Optional[datetime] = None
    config: Dict[str, Any] = field(default_factory=dict)
    timeout: Optional[float] = None
    retry_count: Optional[int] = None
    retry_delay: Optional[float] = None
    tags: List[str] = field(default_factory=list)
    description: Optional[str] = None
    org_id: str = ""
    created_by: Optional[str] = None
