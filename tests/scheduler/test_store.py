"""Tests for the job store."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from opsdeck.scheduler.models import (
    Execution,
    ExecutionStatus,
    Job,
    JobLogEntry,
    JobStatus,
    LogLevel,
    TriggerSource,
    utcnow,
)
from opsdeck.scheduler.triggers import CronSpec, IntervalSpec, OneTimeSpec


def make_job(**overrides) -> Job:
    fields = dict(
        name="Order sync",
        job_type="ECHO",
        trigger=IntervalSpec(15),
        org_id="org-1",
        config={"marketplace": "etsy"},
        tags=["orders"],
    )
    fields.update(overrides)
    return Job(**fields)


class TestJobs:
    """Tests for job persistence."""

    def test_save_and_get(self, store) -> None:
        job = make_job(
            trigger=CronSpec("0 2 * * *"),
            timeout=120.0,
            retry_count=3,
            retry_delay=30.0,
            description="Pull new orders",
            created_by="user-7",
        )
        store.save_job(job)

        loaded = store.get_job(job.job_id)
        assert loaded is not None
        assert loaded.job_id == job.job_id
        assert loaded.trigger == CronSpec("0 2 * * *")
        assert loaded.config == {"marketplace": "etsy"}
        assert loaded.tags == ["orders"]
        assert loaded.timeout == 120.0
        assert loaded.retry_count == 3
        assert loaded.retry_delay == 30.0
        assert loaded.status == JobStatus.ACTIVE
        assert loaded.created_by == "user-7"

    def test_get_missing_job(self, store) -> None:
        assert store.get_job(uuid4()) is None

    def test_save_replaces_trigger_columns(self, store) -> None:
        job = make_job(trigger=CronSpec("0 * * * *"))
        store.save_job(job)

        at = datetime(2030, 1, 1, 8, 0)
        job.trigger = OneTimeSpec(at)
        store.save_job(job)

        assert store.get_job(job.job_id).trigger == OneTimeSpec(at)

    def test_list_excludes_deleted_unless_asked(self, store) -> None:
        kept = store.save_job(make_job(name="kept"))
        gone = store.save_job(make_job(name="gone", status=JobStatus.DELETED))

        page = store.list_jobs()
        assert [j.job_id for j in page.items] == [kept.job_id]
        assert page.total == 1

        deleted = store.list_jobs(status=JobStatus.DELETED)
        assert [j.job_id for j in deleted.items] == [gone.job_id]

    def test_list_filters(self, store) -> None:
        now = utcnow()
        a = store.save_job(make_job(
            name="Etsy orders", org_id="org-1", tags=["orders"], created_at=now,
        ))
        b = store.save_job(make_job(
            name="Amazon inventory", job_type="FAIL", org_id="org-1", tags=["inventory"],
            created_at=now + timedelta(seconds=1),
        ))
        c = store.save_job(make_job(
            name="Etsy listings", org_id="org-2", tags=["listings", "orders"],
            created_at=now + timedelta(seconds=2),
        ))

        assert [j.job_id for j in store.list_jobs().items] == [c.job_id, b.job_id, a.job_id]
        assert {j.job_id for j in store.list_jobs(org_id="org-1").items} == {a.job_id, b.job_id}
        assert [j.job_id for j in store.list_jobs(job_type="FAIL").items] == [b.job_id]
        assert {j.job_id for j in store.list_jobs(tags=["orders"]).items} == {a.job_id, c.job_id}
        assert {j.job_id for j in store.list_jobs(search="etsy").items} == {a.job_id, c.job_id}

    def test_list_pagination(self, store) -> None:
        now = utcnow()
        for i in range(5):
            store.save_job(make_job(name=f"job {i}", created_at=now + timedelta(seconds=i)))

        page = store.list_jobs(page=2, limit=2)
        assert [j.name for j in page.items] == ["job 2", "job 1"]
        assert page.total == 5
        assert page.total_pages == 3

    def test_active_jobs(self, store) -> None:
        active = store.save_job(make_job())
        store.save_job(make_job(status=JobStatus.PAUSED))
        store.save_job(make_job(status=JobStatus.INACTIVE))

        assert [j.job_id for j in store.active_jobs()] == [active.job_id]

    def test_update_schedule_keeps_updated_at(self, store) -> None:
        job = make_job(updated_at=datetime(2024, 1, 1))
        store.save_job(job)

        next_at = datetime(2030, 1, 1)
        updated = store.update_schedule(job.job_id, next_execution_at=next_at)

        assert updated.next_execution_at == next_at
        assert updated.updated_at == datetime(2024, 1, 1)
        assert updated.last_executed_at is None

    def test_update_schedule_status_change_bumps_updated_at(self, store) -> None:
        job = make_job(updated_at=datetime(2024, 1, 1))
        store.save_job(job)

        updated = store.update_schedule(
            job.job_id, next_execution_at=None, status=JobStatus.PAUSED
        )

        assert updated.status == JobStatus.PAUSED
        assert updated.next_execution_at is None
        assert updated.updated_at > datetime(2024, 1, 1)

    def test_update_schedule_missing_job(self, store) -> None:
        assert store.update_schedule(uuid4(), status=JobStatus.PAUSED) is None

    def test_match_job_ids(self, store) -> None:
        job = store.save_job(make_job())
        prefix = str(job.job_id)[:8]

        assert store.match_job_ids(prefix) == [job.job_id]
        assert store.match_job_ids(prefix.upper()) == [job.job_id]
        assert store.match_job_ids("zzzz") == []


class TestExecutions:
    """Tests for execution records."""

    def test_create_and_complete(self, store) -> None:
        job = store.save_job(make_job())
        execution = store.create_execution(Execution(
            job_id=job.job_id,
            org_id=job.org_id,
            trigger_source=TriggerSource.MANUAL,
        ))

        execution.status = ExecutionStatus.SUCCESS
        execution.completed_at = utcnow()
        execution.duration_ms = 12
        execution.result = {"orders": 3}
        store.complete_execution(execution)

        loaded = store.get_execution(execution.execution_id)
        assert loaded.status == ExecutionStatus.SUCCESS
        assert loaded.trigger_source == TriggerSource.MANUAL
        assert loaded.result == {"orders": 3}
        assert loaded.duration_ms == 12
        assert loaded.org_id == "org-1"

    def test_history_newest_first(self, store) -> None:
        job = store.save_job(make_job())
        base = utcnow()
        ids = []
        for i in range(3):
            execution = Execution(job_id=job.job_id, started_at=base + timedelta(seconds=i))
            store.create_execution(execution)
            ids.append(execution.execution_id)

        page = store.list_executions(job.job_id, limit=2)
        assert [e.execution_id for e in page.items] == [ids[2], ids[1]]
        assert page.total == 3

    def test_count_retries(self, store) -> None:
        job = store.save_job(make_job())
        root = store.create_execution(Execution(job_id=job.job_id))
        assert store.count_retries(root.execution_id) == 0

        for attempt in (1, 2):
            store.create_execution(Execution(
                job_id=job.job_id,
                trigger_source=TriggerSource.RETRY,
                parent_execution_id=root.execution_id,
                attempt=attempt,
            ))

        assert store.count_retries(root.execution_id) == 2

    def test_fail_running_executions(self, store) -> None:
        job = store.save_job(make_job())
        running = store.create_execution(Execution(
            job_id=job.job_id,
            started_at=utcnow() - timedelta(minutes=5),
        ))
        done = store.create_execution(Execution(
            job_id=job.job_id,
            status=ExecutionStatus.SUCCESS,
            completed_at=utcnow(),
        ))

        recovered = store.fail_running_executions("Interrupted")

        assert [e.execution_id for e in recovered] == [running.execution_id]
        loaded = store.get_execution(running.execution_id)
        assert loaded.status == ExecutionStatus.FAILED
        assert loaded.error == "Interrupted"
        assert loaded.completed_at is not None
        assert loaded.duration_ms >= 5 * 60 * 1000
        assert store.get_execution(done.execution_id).status == ExecutionStatus.SUCCESS


class TestLogsAndRetention:
    """Tests for job logs and history cleanup."""

    def test_append_and_list_logs(self, store) -> None:
        job = store.save_job(make_job())
        execution = store.create_execution(Execution(job_id=job.job_id))

        first = store.append_log(JobLogEntry(job_id=job.job_id, message="created"))
        store.append_log(JobLogEntry(
            job_id=job.job_id,
            execution_id=execution.execution_id,
            message="started",
            level=LogLevel.WARNING,
            data={"attempt": 0},
        ))

        assert first.id is not None
        entries = store.list_logs(job.job_id)
        assert [e.message for e in entries] == ["started", "created"]
        assert entries[0].level == LogLevel.WARNING
        assert entries[0].data == {"attempt": 0}

        scoped = store.list_logs(job.job_id, execution_id=execution.execution_id)
        assert [e.message for e in scoped] == ["started"]

    def test_delete_history_before(self, store) -> None:
        job = store.save_job(make_job())
        old = utcnow() - timedelta(days=40)

        old_root = store.create_execution(Execution(
            job_id=job.job_id, status=ExecutionStatus.FAILED, started_at=old,
        ))
        store.create_execution(Execution(
            job_id=job.job_id,
            status=ExecutionStatus.FAILED,
            started_at=old,
            trigger_source=TriggerSource.RETRY,
            parent_execution_id=old_root.execution_id,
            attempt=1,
        ))
        still_running = store.create_execution(Execution(job_id=job.job_id, started_at=old))
        recent = store.create_execution(Execution(
            job_id=job.job_id, status=ExecutionStatus.SUCCESS,
        ))
        store.append_log(JobLogEntry(job_id=job.job_id, message="old", timestamp=old))
        store.append_log(JobLogEntry(job_id=job.job_id, message="new"))

        executions, logs = store.delete_history_before(utcnow() - timedelta(days=30))

        assert executions == 2
        assert logs == 1
        remaining = {e.execution_id for e in store.list_executions(job.job_id).items}
        assert remaining == {still_running.execution_id, recent.execution_id}
        assert [e.message for e in store.list_logs(job.job_id)] == ["new"]

    def test_root_kept_while_retry_survives(self, store) -> None:
        job = store.save_job(make_job())
        old = utcnow() - timedelta(days=40)

        root = store.create_execution(Execution(
            job_id=job.job_id, status=ExecutionStatus.FAILED, started_at=old,
        ))
        store.create_execution(Execution(
            job_id=job.job_id,
            status=ExecutionStatus.SUCCESS,
            trigger_source=TriggerSource.RETRY,
            parent_execution_id=root.execution_id,
            attempt=1,
        ))

        executions, _ = store.delete_history_before(utcnow() - timedelta(days=30))

        assert executions == 0
        assert store.get_execution(root.execution_id) is not None
