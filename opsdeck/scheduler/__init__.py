"""Job scheduler for cron, interval and one-time background jobs.

The scheduler arms a timer per active job, runs jobs through registered
handlers with a timeout and a per-job execution lock, retries failures a
bounded number of times and keeps a durable execution history.
"""

from opsdeck.scheduler.exceptions import (
    HandlerError,
    HandlerNotFoundError,
    HandlerTimeoutError,
    JobNotFoundError,
    JobValidationError,
    SchedulerError,
    SchedulingConflict,
)
from opsdeck.scheduler.handlers import HandlerContext, HandlerRegistry
from opsdeck.scheduler.job_executor import JobExecutor, JobLockTable
from opsdeck.scheduler.job_scheduler import JobScheduler, create_scheduler
from opsdeck.scheduler.models import (
    Execution,
    ExecutionStatus,
    Job,
    JobLogEntry,
    JobRequest,
    JobStatus,
    LogLevel,
    Page,
    TriggerSource,
)
from opsdeck.scheduler.retry import RetryCoordinator, RetryDecision, RetryOutcome
from opsdeck.scheduler.store import JobStore
from opsdeck.scheduler.triggers import (
    CronSpec,
    IntervalSpec,
    OneTimeSpec,
    TriggerType,
    describe_trigger,
    next_fire_after,
    parse_trigger,
)

__all__ = [
    "CronSpec",
    "Execution",
    "ExecutionStatus",
    "HandlerContext",
    "HandlerError",
    "HandlerNotFoundError",
    "HandlerRegistry",
    "HandlerTimeoutError",
    "IntervalSpec",
    "Job",
    "JobExecutor",
    "JobLockTable",
    "JobLogEntry",
    "JobNotFoundError",
    "JobRequest",
    "JobScheduler",
    "JobStatus",
    "JobStore",
    "JobValidationError",
    "LogLevel",
    "OneTimeSpec",
    "Page",
    "RetryCoordinator",
    "RetryDecision",
    "RetryOutcome",
    "SchedulerError",
    "SchedulingConflict",
    "TriggerSource",
    "TriggerType",
    "create_scheduler",
    "describe_trigger",
    "next_fire_after",
    "parse_trigger",
]
