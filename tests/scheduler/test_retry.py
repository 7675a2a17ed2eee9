"""Tests for the retry coordinator."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from opsdeck.scheduler.models import (
    Execution,
    ExecutionStatus,
    Job,
    LogLevel,
    TriggerSource,
)
from opsdeck.scheduler.retry import RetryCoordinator, RetryOutcome
from opsdeck.scheduler.triggers import IntervalSpec

COMPLETED = datetime(2024, 5, 1, 12, 0, 0)


@pytest.fixture
def arm() -> MagicMock:
    return MagicMock()


@pytest.fixture
def coordinator(store, arm) -> RetryCoordinator:
    return RetryCoordinator(store, arm)


def saved_job(store, retry_count: int = 2, retry_delay: float = 30.0) -> Job:
    return store.save_job(Job(
        name="Listing sync",
        job_type="FAIL",
        trigger=IntervalSpec(10),
        retry_count=retry_count,
        retry_delay=retry_delay,
    ))


def finished(store, job: Job, status=ExecutionStatus.FAILED, parent=None, attempt=0) -> Execution:
    execution = Execution(
        job_id=job.job_id,
        status=status,
        trigger_source=TriggerSource.RETRY if parent else TriggerSource.SCHEDULED,
        started_at=COMPLETED - timedelta(seconds=1),
        completed_at=COMPLETED,
        parent_execution_id=parent,
        attempt=attempt,
        error=None if status == ExecutionStatus.SUCCESS else "boom",
    )
    return store.create_execution(execution)


class TestRetryCoordinator:
    """Tests for RetryCoordinator.maybe_retry."""

    def test_success_is_not_retried(self, store, coordinator, arm) -> None:
        job = saved_job(store)
        execution = finished(store, job, status=ExecutionStatus.SUCCESS)

        decision = coordinator.maybe_retry(execution, job)

        assert decision.outcome == RetryOutcome.SKIPPED
        arm.assert_not_called()

    def test_first_failure_schedules_retry(self, store, coordinator, arm) -> None:
        job = saved_job(store, retry_delay=30.0)
        execution = finished(store, job)

        decision = coordinator.maybe_retry(execution, job)

        run_at = COMPLETED + timedelta(seconds=30)
        assert decision.outcome == RetryOutcome.SCHEDULED
        assert decision.attempt == 1
        assert decision.root_execution_id == execution.execution_id
        assert decision.run_at == run_at
        arm.assert_called_once_with(job, execution.execution_id, 1, run_at)

        entry = store.list_logs(job.job_id)[0]
        assert entry.level == LogLevel.WARNING
        assert entry.message.startswith("Scheduling retry 1/2")
        assert entry.execution_id == execution.execution_id

    def test_timeout_is_retried(self, store, coordinator, arm) -> None:
        job = saved_job(store)
        execution = finished(store, job, status=ExecutionStatus.TIMEOUT)

        assert coordinator.maybe_retry(execution, job).outcome == RetryOutcome.SCHEDULED

    def test_retry_of_retry_counts_against_root(self, store, coordinator, arm) -> None:
        job = saved_job(store, retry_count=3)
        root = finished(store, job)
        first_retry = finished(store, job, parent=root.execution_id, attempt=1)

        decision = coordinator.maybe_retry(first_retry, job)

        assert decision.root_execution_id == root.execution_id
        assert decision.attempt == 2
        arm.assert_called_once()
        assert arm.call_args.args[1] == root.execution_id

    def test_exhausted(self, store, coordinator, arm) -> None:
        job = saved_job(store, retry_count=1)
        root = finished(store, job)
        last = finished(store, job, parent=root.execution_id, attempt=1)

        decision = coordinator.maybe_retry(last, job)

        assert decision.outcome == RetryOutcome.EXHAUSTED
        assert decision.attempt == 1
        arm.assert_not_called()

        entry = store.list_logs(job.job_id)[0]
        assert entry.level == LogLevel.ERROR
        assert entry.message == "Giving up after 1 retry"

    def test_no_retries_configured(self, store, coordinator, arm) -> None:
        job = saved_job(store, retry_count=0)
        execution = finished(store, job)

        decision = coordinator.maybe_retry(execution, job)

        assert decision.outcome == RetryOutcome.EXHAUSTED
        arm.assert_not_called()
        assert store.list_logs(job.job_id) == []
