"""Retry coordinator for failed executions.

Retries are counted per root execution: the original attempt plus its
retries form one chain, and a job with ``retry_count = R`` produces at most
``R + 1`` executions per chain. Retries never touch the job's regular
schedule.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional
from uuid import UUID

from opsdeck.scheduler.models import (
    Execution,
    ExecutionStatus,
    Job,
    JobLogEntry,
    LogLevel,
    utcnow,
)
from opsdeck.scheduler.store import JobStore

logger = logging.getLogger(__name__)

# Arms a retry: (job, root execution id, attempt number, run at)
RetryArmer = Callable[[Job, UUID, int, datetime], None]


class RetryOutcome(str, Enum):
    SCHEDULED = "SCHEDULED"
    EXHAUSTED = "EXHAUSTED"
    SKIPPED = "SKIPPED"  # Execution did not fail


@dataclass
class RetryDecision:
    """What the coordinator did with a terminal execution."""

    outcome: RetryOutcome
    root_execution_id: Optional[UUID] = None
    attempt: int = 0
    run_at: Optional[datetime] = None


class RetryCoordinator:
    """Decides whether a failed execution gets another attempt.

    Args:
        store: Job store, used to count retries and write job logs
        arm: Callback that arms the retry timer in the engine
    """

    def __init__(self, store: JobStore, arm: RetryArmer) -> None:
        self._store = store
        self._arm = arm

    def maybe_retry(self, execution: Execution, job: Job) -> RetryDecision:
        """Schedule the next retry for ``execution`` if the job allows one."""
        if execution.status not in (ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT):
            return RetryDecision(RetryOutcome.SKIPPED)

        root_id = execution.root_execution_id
        attempts = self._store.count_retries(root_id)

        if attempts >= job.retry_count:
            if job.retry_count > 0:
                message = f"Giving up after {attempts} retr{'y' if attempts == 1 else 'ies'}"
                logger.warning(f"Job '{job.name}' ({job.job_id}): {message}")
                self._log(job, execution, message, LogLevel.ERROR, {
                    "root_execution_id": str(root_id),
                    "retries": attempts,
                })
            return RetryDecision(RetryOutcome.EXHAUSTED, root_id, attempts)

        attempt = attempts + 1
        run_at = (execution.completed_at or utcnow()) + timedelta(seconds=job.retry_delay)
        self._arm(job, root_id, attempt, run_at)

        message = f"Scheduling retry {attempt}/{job.retry_count} at {run_at.isoformat()}"
        logger.info(f"Job '{job.name}' ({job.job_id}): {message}")
        self._log(job, execution, message, LogLevel.WARNING, {
            "root_execution_id": str(root_id),
            "attempt": attempt,
            "run_at": run_at.isoformat(),
        })
        return RetryDecision(RetryOutcome.SCHEDULED, root_id, attempt, run_at)

    def _log(self, job: Job, execution: Execution, message: str, level: LogLevel, data: dict) -> None:
        try:
            self._store.append_log(JobLogEntry(
                job_id=job.job_id,
                org_id=job.org_id,
                execution_id=execution.execution_id,
                message=message,
                level=level,
                data=data,
            ))
        except Exception as e:
            logger.warning(f"Failed to write job log for {job.job_id}: {e}")
