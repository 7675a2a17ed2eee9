"""Scheduler engine for cron, interval and one-time jobs.

The JobScheduler owns one armed timer per ACTIVE job. Timers are one-shot
APScheduler jobs with a DateTrigger; after each scheduled run the engine
recomputes the next fire time from the run's completion and arms a fresh
timer. Job definition changes (create, update, pause, resume, delete) go
through the engine so that timers and the store never disagree.

Jobs and execution history live in the database and survive restarts. On
``start()`` the engine fails executions left RUNNING by a dead process and
re-arms every ACTIVE job from its stored ``next_execution_at``.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID, uuid4

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from opsdeck.config import OpsdeckConfig, SchedulerConfig
from opsdeck.database.connection import create_tables, get_session_maker, init_engine
from opsdeck.scheduler.builtin_handlers import register_builtin_handlers
from opsdeck.scheduler.exceptions import (
    JobNotFoundError,
    JobValidationError,
    SchedulingConflict,
)
from opsdeck.scheduler.handlers import HandlerRegistry
from opsdeck.scheduler.job_executor import JobExecutor, JobLockTable
from opsdeck.scheduler.models import (
    Execution,
    Job,
    JobLogEntry,
    JobRequest,
    JobStatus,
    LogLevel,
    Page,
    TriggerSource,
    utcnow,
)
from opsdeck.scheduler.retry import RetryCoordinator
from opsdeck.scheduler.store import JobStore
from opsdeck.scheduler.triggers import (
    CronSpec,
    OneTimeSpec,
    next_fire_after,
    parse_trigger,
    resume_fire_time,
)

logger = logging.getLogger(__name__)

CLEANUP_TIMER_ID = "opsdeck:cleanup"
SYNC_TIMER_ID = "opsdeck:sync"

# Floor for re-deferring a retry that found its job busy, in seconds
MIN_RETRY_DEFER = 1.0

INTERRUPTED_ERROR = "Interrupted by scheduler restart"


@dataclass
class _ArmedTimer:
    token: str
    fire_at: datetime


@dataclass
class _PendingRetry:
    job_id: UUID
    root_execution_id: UUID
    attempt: int
    run_at: datetime


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc)


class JobScheduler:
    """Arms timers for jobs and runs them through the execution runner.

    Example:
        store = JobStore.from_url("sqlite:///opsdeck.db")
        registry = HandlerRegistry()
        scheduler = JobScheduler(store, registry)

        await scheduler.start()
        job = scheduler.create_job(JobRequest(
            name="Nightly order sync",
            job_type="ORDER_SYNC",
            trigger_type="CRON",
            cron_expression="0 2 * * *",
        ))

    Args:
        store: Durable job store
        registry: Handler registry used to resolve job types
        config: Scheduler configuration (defaults apply when omitted)
    """

    def __init__(
        self,
        store: JobStore,
        registry: Optional[HandlerRegistry] = None,
        config: Optional[SchedulerConfig] = None,
    ) -> None:
        self._store = store
        self._registry = registry or HandlerRegistry()
        self._config = config or SchedulerConfig()

        # Guards the timer registries; also the runner's admission gate
        self._lock = threading.RLock()
        self._timers: Dict[UUID, _ArmedTimer] = {}
        self._retries: Dict[str, _PendingRetry] = {}

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

        self._locks = JobLockTable()
        self._retry = RetryCoordinator(store, self._arm_retry)
        self._executor = JobExecutor(
            store,
            self._registry,
            locks=self._locks,
            gate=self._lock,
            on_complete=self._on_execution_finished,
            retry=self._retry,
        )

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def executor(self) -> JobExecutor:
        return self._executor

    # --- Job API ------------------------------------------------------------

    def create_job(self, request: JobRequest) -> Job:
        """Validate, persist and arm a new job.

        Raises:
            JobValidationError: If the request is invalid
        """
        job = self._build_job(request)
        now = utcnow()
        job.created_at = job.updated_at = now

        with self._lock:
            job.next_execution_at = next_fire_after(job.trigger, now)
            self._store.save_job(job)
            if job.next_execution_at is not None:
                self._arm(job, job.next_execution_at)

        logger.info(f"Created job '{job.name}' ({job.job_id}), next run {job.next_execution_at}")
        self._log(job, "Job created", data={"next_execution_at": _iso(job.next_execution_at)})
        return job

    def update_job(self, job_id: UUID, request: JobRequest) -> Job:
        """Replace the editable fields of a job and re-arm it.

        A PAUSED job stays paused; any other job becomes ACTIVE with a fire
        time computed from now. Pending retries are dropped.

        Raises:
            JobNotFoundError: If the job does not exist
            JobValidationError: If the request is invalid or the job is deleted
        """
        existing = self._require_job(job_id)
        if existing.status == JobStatus.DELETED:
            raise JobValidationError("Cannot update a deleted job", field="status")

        updated = self._build_job(request)
        updated.job_id = existing.job_id
        updated.org_id = existing.org_id
        updated.created_by = existing.created_by
        updated.created_at = existing.created_at
        updated.last_executed_at = existing.last_executed_at
        now = utcnow()
        updated.updated_at = now

        with self._lock:
            current = self._require_job(job_id)
            if current.status == JobStatus.DELETED:
                raise JobValidationError("Cannot update a deleted job", field="status")

            self._disarm(job_id)
            self._cancel_retries(job_id)
            if current.status == JobStatus.PAUSED:
                updated.status = JobStatus.PAUSED
                updated.next_execution_at = None
            else:
                updated.status = JobStatus.ACTIVE
                updated.next_execution_at = next_fire_after(updated.trigger, now)

            self._store.save_job(updated)
            if updated.status == JobStatus.ACTIVE and updated.next_execution_at is not None:
                self._arm(updated, updated.next_execution_at)

        logger.info(f"Updated job '{updated.name}' ({job_id})")
        self._log(updated, "Job updated", data={
            "next_execution_at": _iso(updated.next_execution_at),
        })
        return updated

    def pause_job(self, job_id: UUID) -> Job:
        """Cancel a job's timers and mark it PAUSED. History is kept.

        Raises:
            JobNotFoundError: If the job does not exist
            JobValidationError: If the job is deleted
        """
        with self._lock:
            job = self._require_job(job_id)
            if job.status == JobStatus.DELETED:
                raise JobValidationError("Cannot pause a deleted job", field="status")
            if job.status == JobStatus.PAUSED:
                return job

            self._disarm(job_id)
            self._cancel_retries(job_id)
            job = self._store.update_schedule(
                job_id, next_execution_at=None, status=JobStatus.PAUSED
            )

        logger.info(f"Paused job '{job.name}' ({job_id})")
        self._log(job, "Job paused")
        return job

    def resume_job(self, job_id: UUID) -> Job:
        """Re-activate a paused job with a fire time computed from now.

        A one-time job whose instant has passed becomes INACTIVE instead.

        Raises:
            JobNotFoundError: If the job does not exist
            JobValidationError: If the job is deleted
        """
        with self._lock:
            job = self._require_job(job_id)
            if job.status == JobStatus.DELETED:
                raise JobValidationError("Cannot resume a deleted job", field="status")
            if job.status == JobStatus.ACTIVE:
                return job

            next_at = next_fire_after(job.trigger, utcnow())
            status = JobStatus.ACTIVE if next_at is not None else JobStatus.INACTIVE
            job = self._store.update_schedule(job_id, next_execution_at=next_at, status=status)
            if next_at is not None:
                self._arm(job, next_at)

        logger.info(f"Resumed job '{job.name}' ({job_id}), next run {job.next_execution_at}")
        self._log(job, "Job resumed", data={"next_execution_at": _iso(job.next_execution_at)})
        return job

    def delete_job(self, job_id: UUID) -> Job:
        """Soft-delete a job. It is never scheduled again.

        An execution already running is allowed to finish.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        with self._lock:
            job = self._require_job(job_id)
            if job.status == JobStatus.DELETED:
                return job

            self._disarm(job_id)
            self._cancel_retries(job_id)
            job = self._store.update_schedule(
                job_id, next_execution_at=None, status=JobStatus.DELETED
            )
            self._locks.discard(job_id)

        logger.info(f"Deleted job '{job.name}' ({job_id})")
        self._log(job, "Job deleted")
        return job

    def get_job(self, job_id: UUID) -> Job:
        """Get a job by id.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        return self._require_job(job_id)

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
        """List jobs newest first. Deleted jobs only appear when asked for."""
        limit = min(max(limit, 1), self._config.max_page_size)
        return self._store.list_jobs(
            org_id=org_id,
            status=status,
            job_type=job_type,
            tags=tags,
            search=search,
            page=max(page, 1),
            limit=limit,
        )

    def trigger_job(self, job_id: UUID) -> UUID:
        """Start an out-of-band run and return its execution id immediately.

        The outcome is visible through ``list_executions``.

        Raises:
            JobNotFoundError: If the job does not exist
            JobValidationError: If the job is paused or deleted
            SchedulingConflict: If the job is already running
        """
        job = self._require_runnable(job_id)
        execution = self._executor.launch(job, TriggerSource.MANUAL)
        if execution is None:
            raise JobValidationError("Job is no longer runnable", field="status")

        logger.info(f"Manual run of job '{job.name}' started: {execution.execution_id}")
        return execution.execution_id

    async def run_job_now(self, job_id: UUID) -> Execution:
        """Run a job immediately and wait for the outcome.

        Raises:
            JobNotFoundError: If the job does not exist
            JobValidationError: If the job is paused or deleted
            SchedulingConflict: If the job is already running
        """
        job = self._require_runnable(job_id)
        execution = await self._executor.run(job, TriggerSource.MANUAL)
        if execution is None:
            raise JobValidationError("Job is no longer runnable", field="status")
        return execution

    def list_executions(self, job_id: UUID, page: int = 1, limit: int = 20) -> Page[Execution]:
        """Execution history of a job, newest first.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        self._require_job(job_id)
        limit = min(max(limit, 1), self._config.max_page_size)
        return self._store.list_executions(job_id, page=max(page, 1), limit=limit)

    def get_job_logs(
        self,
        job_id: UUID,
        limit: int = 50,
        execution_id: Optional[UUID] = None,
    ) -> List[JobLogEntry]:
        """Job log entries, newest first.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        self._require_job(job_id)
        return self._store.list_logs(job_id, limit=max(limit, 1), execution_id=execution_id)

    # --- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Start the scheduler.

        Recovers executions interrupted by a previous process, starts
        APScheduler and arms every ACTIVE job.
        """
        if self._running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting job scheduler...")

        recovered = self._store.fail_running_executions(INTERRUPTED_ERROR)
        if recovered:
            logger.warning(f"Marked {len(recovered)} interrupted execution(s) as FAILED")

        self._scheduler = self._create_scheduler()
        self._setup_listeners()
        self._scheduler.start()
        self._running = True

        armed = self.reconcile()

        if self._config.history_retention_days > 0:
            self._scheduler.add_job(
                self._cleanup_tick,
                trigger=CronTrigger.from_crontab(
                    CronSpec(self._config.cleanup_cron).normalized, timezone="UTC"
                ),
                id=CLEANUP_TIMER_ID,
                name="History cleanup",
                replace_existing=True,
            )

        if self._config.sync_interval > 0:
            self._scheduler.add_job(
                self._sync_tick,
                trigger=IntervalTrigger(seconds=self._config.sync_interval, timezone="UTC"),
                id=SYNC_TIMER_ID,
                name="Store sync",
                replace_existing=True,
            )

        logger.info(f"Scheduler started with {armed} jobs")

    async def stop(self, timeout: Optional[float] = 30.0) -> None:
        """Stop the scheduler.

        Cancels every timer and pending retry, then waits up to ``timeout``
        seconds for running executions before cancelling them.
        """
        if not self._running:
            return

        logger.info("Stopping job scheduler...")

        with self._lock:
            self._running = False
            self._timers.clear()
            self._retries.clear()
            if self._scheduler:
                self._scheduler.shutdown(wait=False)
                self._scheduler = None

        await self._executor.shutdown(timeout=timeout)
        logger.info("Scheduler stopped")

    def reconcile(self) -> int:
        """Bring the armed timers in line with the store.

        Arms ACTIVE jobs that have no timer (or whose stored fire time moved),
        and drops timers and retries of jobs that are no longer runnable.
        Jobs with a running execution are left to their completion handling.

        Returns:
            Number of armed job timers afterwards
        """
        now = utcnow()
        with self._lock:
            active = {job.job_id: job for job in self._store.active_jobs()}

            for job_id in list(self._timers):
                if job_id not in active:
                    self._disarm(job_id)

            for token, pending in list(self._retries.items()):
                if pending.job_id in active:
                    continue
                job = self._store.get_job(pending.job_id)
                if job is None or job.status in (JobStatus.PAUSED, JobStatus.DELETED):
                    self._cancel_retries(pending.job_id)

            for job in active.values():
                if self._locks.is_locked(job.job_id):
                    continue

                fire_at = resume_fire_time(job.trigger, job.next_execution_at, now)
                armed = self._timers.get(job.job_id)
                if armed is not None and armed.fire_at == fire_at:
                    continue

                if fire_at != job.next_execution_at:
                    self._store.update_schedule(job.job_id, next_execution_at=fire_at)
                self._arm(job, fire_at)

            return len(self._timers)

    def cleanup_old_history(self, days: Optional[int] = None) -> int:
        """Clean up old execution history and job logs.

        Args:
            days: Delete records older than this many days (default from config)

        Returns:
            Number of executions deleted
        """
        days = days if days is not None else self._config.history_retention_days
        if days <= 0:
            return 0

        cutoff = utcnow() - timedelta(days=days)
        try:
            executions, logs = self._store.delete_history_before(cutoff)
            logger.info(f"Cleaned up {executions} old execution records and {logs} log entries")
            return executions
        except Exception as e:
            logger.error(f"Failed to clean up old history: {e}")
            return 0

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status.

        Returns:
            Dictionary with scheduler status information
        """
        with self._lock:
            timers = [
                {"job_id": str(job_id), "next_run": armed.fire_at.isoformat()}
                for job_id, armed in sorted(self._timers.items(), key=lambda i: i[1].fire_at)
            ]
            retries = [
                {
                    "job_id": str(p.job_id),
                    "root_execution_id": str(p.root_execution_id),
                    "attempt": p.attempt,
                    "run_at": p.run_at.isoformat(),
                }
                for p in sorted(self._retries.values(), key=lambda p: p.run_at)
            ]

        return {
            "running": self._running,
            "armed_jobs": len(timers),
            "pending_retries": len(retries),
            "running_executions": self._executor.running_count,
            "abandoned_handlers": self._executor.abandoned_count,
            "handlers": self._registry.available_types(),
            "timers": timers,
            "retries": retries,
        }

    # --- Timers -------------------------------------------------------------

    def _create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure APScheduler instance."""
        jobstores = {"default": MemoryJobStore()}

        executors = {"default": AsyncIOExecutor()}

        job_defaults = {
            "coalesce": True,  # Combine missed runs
            "max_instances": 1,  # One instance per timer
            "misfire_grace_time": self._config.misfire_grace_time,
        }

        return AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone="UTC",
        )

    def _setup_listeners(self) -> None:
        """Set up APScheduler event listeners."""
        if not self._scheduler:
            return

        def on_timer_error(event: Any) -> None:
            exception = getattr(event, "exception", "Unknown error")
            logger.error(f"Timer {event.job_id} failed: {exception}")

        def on_timer_missed(event: Any) -> None:
            logger.warning(f"Timer {event.job_id} missed its run time, firing now")
            self._rearm_missed(event.job_id)

        self._scheduler.add_listener(on_timer_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(on_timer_missed, EVENT_JOB_MISSED)

    def _arm(self, job: Job, fire_at: datetime) -> None:
        """Arm a one-shot timer for ``job``. Caller holds the registry lock."""
        self._disarm(job.job_id)
        if not self._scheduler:
            return

        token = f"job:{job.job_id}:{uuid4().hex[:12]}"
        run_at = max(fire_at, utcnow())
        self._scheduler.add_job(
            self._fire,
            trigger=DateTrigger(run_date=_as_utc(run_at), timezone="UTC"),
            id=token,
            name=job.name or f"Job {job.job_id}",
            args=[job.job_id, token],
        )
        self._timers[job.job_id] = _ArmedTimer(token=token, fire_at=fire_at)
        logger.debug(f"Armed job {job.job_id} for {fire_at.isoformat()}")

    def _disarm(self, job_id: UUID) -> None:
        armed = self._timers.pop(job_id, None)
        if armed is not None:
            self._remove_timer(armed.token)
            logger.debug(f"Disarmed job {job_id}")

    def _remove_timer(self, token: str) -> None:
        if not self._scheduler:
            return
        try:
            self._scheduler.remove_job(token)
        except JobLookupError:
            # Already fired
            pass

    def _rearm_missed(self, token: str) -> None:
        with self._lock:
            missed = [
                (job_id, armed) for job_id, armed in self._timers.items() if armed.token == token
            ]
            if missed:
                job_id, armed = missed[0]
                job = self._store.get_job(job_id)
                if job is not None:
                    self._arm(job, armed.fire_at)
                return

            pending = self._retries.pop(token, None)
            if pending is not None:
                self._add_retry_timer(pending)

    async def _sync_tick(self) -> None:
        self.reconcile()

    async def _cleanup_tick(self) -> None:
        self.cleanup_old_history()

    async def _fire(self, job_id: UUID, token: str) -> None:
        """Timer callback: run the job if this timer is still the armed one."""
        with self._lock:
            armed = self._timers.get(job_id)
            if armed is None or armed.token != token:
                logger.debug(f"Ignoring stale timer {token}")
                return
            del self._timers[job_id]
            job = self._store.get_job(job_id)

        if job is None or job.status != JobStatus.ACTIVE:
            logger.warning(f"Job {job_id} not found or not active, skipping execution")
            return

        try:
            self._executor.launch(job, TriggerSource.SCHEDULED)
        except SchedulingConflict:
            logger.warning(f"Skipping scheduled run of '{job.name}' ({job_id}): already running")
            self._log(job, "Scheduled run skipped: previous execution still running",
                      level=LogLevel.WARNING)
            self._advance_schedule(job, utcnow())

    def _on_execution_finished(self, job: Job, execution: Execution) -> None:
        """Runner callback: record the run and re-arm after a scheduled fire."""
        with self._lock:
            current = self._store.get_job(job.job_id)
            if current is None:
                return

            self._store.update_schedule(current.job_id, last_executed_at=execution.completed_at)
            current.last_executed_at = execution.completed_at

            if execution.trigger_source != TriggerSource.SCHEDULED:
                return
            if current.status != JobStatus.ACTIVE or current.job_id in self._timers:
                # Paused, deleted or re-armed by an update while running
                return

            self._advance_schedule(current, execution.completed_at or utcnow())

    def _advance_schedule(self, job: Job, reference: datetime) -> None:
        """Compute and arm the occurrence after ``reference``.

        One-time jobs become INACTIVE: their single fire has been used up.
        """
        with self._lock:
            if isinstance(job.trigger, OneTimeSpec):
                self._store.update_schedule(
                    job.job_id, next_execution_at=None, status=JobStatus.INACTIVE
                )
                logger.info(f"One-time job '{job.name}' ({job.job_id}) is now inactive")
                return

            next_at = next_fire_after(job.trigger, reference)
            self._store.update_schedule(job.job_id, next_execution_at=next_at)
            if next_at is not None and self._running:
                self._arm(job, next_at)

    # --- Retries ------------------------------------------------------------

    def _arm_retry(self, job: Job, root_execution_id: UUID, attempt: int, run_at: datetime) -> None:
        """Retry coordinator callback: arm a retry timer."""
        pending = _PendingRetry(
            job_id=job.job_id,
            root_execution_id=root_execution_id,
            attempt=attempt,
            run_at=run_at,
        )
        with self._lock:
            if not self._running:
                logger.warning(
                    f"Scheduler not running; retry {attempt} of job {job.job_id} dropped"
                )
                return
            self._add_retry_timer(pending)

    def _add_retry_timer(self, pending: _PendingRetry) -> None:
        if not self._scheduler:
            return
        token = f"retry:{pending.job_id}:{uuid4().hex[:12]}"
        self._scheduler.add_job(
            self._fire_retry,
            trigger=DateTrigger(run_date=_as_utc(max(pending.run_at, utcnow())), timezone="UTC"),
            id=token,
            name=f"Retry {pending.attempt} of {pending.job_id}",
            args=[token],
        )
        self._retries[token] = pending

    def _cancel_retries(self, job_id: UUID) -> None:
        for token, pending in list(self._retries.items()):
            if pending.job_id == job_id:
                del self._retries[token]
                self._remove_timer(token)

    async def _fire_retry(self, token: str) -> None:
        with self._lock:
            pending = self._retries.pop(token, None)
            if pending is None:
                return
            job = self._store.get_job(pending.job_id)

        if job is None or job.status not in (JobStatus.ACTIVE, JobStatus.INACTIVE):
            return

        try:
            self._executor.launch(
                job,
                TriggerSource.RETRY,
                parent_execution_id=pending.root_execution_id,
                attempt=pending.attempt,
            )
        except SchedulingConflict:
            delay = max(job.retry_delay, MIN_RETRY_DEFER)
            pending.run_at = utcnow() + timedelta(seconds=delay)
            logger.info(
                f"Retry {pending.attempt} of job {job.job_id} deferred {delay:g}s: job is running"
            )
            with self._lock:
                if self._running:
                    self._add_retry_timer(pending)

    # --- Helpers ------------------------------------------------------------

    def _require_job(self, job_id: UUID) -> Job:
        job = self._store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _require_runnable(self, job_id: UUID) -> Job:
        job = self._require_job(job_id)
        if job.status in (JobStatus.PAUSED, JobStatus.DELETED):
            raise JobValidationError(
                f"Cannot run a {job.status.value.lower()} job", field="status"
            )
        return job

    def _build_job(self, request: JobRequest) -> Job:
        """Validate a create/update request and turn it into a Job."""
        if not request.name or not request.name.strip():
            raise JobValidationError("Job name is required", field="name")
        if not request.job_type or not request.job_type.strip():
            raise JobValidationError("Job type is required", field="job_type")

        trigger = parse_trigger(
            request.trigger_type,
            cron_expression=request.cron_expression,
            interval_minutes=request.interval_minutes,
            scheduled_at=request.scheduled_at,
        )
        if isinstance(trigger, OneTimeSpec) and trigger.at <= utcnow():
            raise JobValidationError("Scheduled time must be in the future", field="scheduled_at")

        timeout = self._config.default_timeout if request.timeout is None else request.timeout
        retry_count = (
            self._config.default_retry_count if request.retry_count is None else request.retry_count
        )
        retry_delay = (
            self._config.default_retry_delay if request.retry_delay is None else request.retry_delay
        )

        if timeout <= 0:
            raise JobValidationError("Timeout must be greater than zero", field="timeout")
        if isinstance(retry_count, bool) or int(retry_count) != retry_count or retry_count < 0:
            raise JobValidationError(
                "Retry count must be a non-negative whole number", field="retry_count"
            )
        if retry_delay < 0:
            raise JobValidationError("Retry delay must not be negative", field="retry_delay")
        if not isinstance(request.config, dict):
            raise JobValidationError("Config must be an object", field="config")

        if not self._registry.has(request.job_type):
            logger.warning(f"No handler registered for job type {request.job_type}")

        return Job(
            name=request.name.strip(),
            job_type=request.job_type.strip(),
            trigger=trigger,
            org_id=request.org_id,
            config=dict(request.config),
            timeout=float(timeout),
            retry_count=int(retry_count),
            retry_delay=float(retry_delay),
            created_by=request.created_by,
            description=request.description,
            tags=[str(tag) for tag in request.tags],
        )

    def _log(
        self,
        job: Job,
        message: str,
        level: LogLevel = LogLevel.INFO,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            self._store.append_log(JobLogEntry(
                job_id=job.job_id,
                org_id=job.org_id,
                message=message,
                level=level,
                data=data,
            ))
        except Exception as e:
            logger.warning(f"Failed to write job log for {job.job_id}: {e}")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def create_scheduler(
    config: OpsdeckConfig,
    registry: Optional[HandlerRegistry] = None,
    store: Optional[JobStore] = None,
) -> JobScheduler:
    """Build a scheduler wired to the configured database and handlers.

    Registers the built-in job types and, when enabled, handlers published
    under the ``opsdeck.handlers`` entry point group.
    """
    if store is None:
        create_tables(init_engine(config))
        store = JobStore(get_session_maker(config))

    registry = registry or HandlerRegistry()
    register_builtin_handlers(
        registry,
        store,
        http_timeout=config.handlers.http_timeout,
        retention_days=config.scheduler.history_retention_days,
    )
    if config.handlers.load_entry_points:
        registry.load_entry_points()

    return JobScheduler(store, registry, config.scheduler)
