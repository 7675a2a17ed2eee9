"""Execution runner for scheduled jobs.

The JobExecutor turns one fire request into one Execution record:

1. Acquire the job's execution lock (fail fast with SchedulingConflict)
2. Persist a RUNNING execution, admitted under the engine's gate
3. Look up the handler and run it against the job's timeout
4. Persist SUCCESS, FAILED or TIMEOUT
5. Release the lock, notify the engine and hand failures to the retry
   coordinator

Handler failures never escape the runner; they end up on the execution.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from functools import partial
from typing import Any, Callable, Dict, Optional, Set, Tuple
from uuid import UUID

from opsdeck.scheduler.exceptions import (
    HandlerNotFoundError,
    HandlerTimeoutError,
    SchedulingConflict,
)
from opsdeck.scheduler.handlers import HandlerContext, HandlerRegistry, invoke_handler
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
from opsdeck.scheduler.retry import RetryCoordinator
from opsdeck.scheduler.store import JobStore

logger = logging.getLogger(__name__)

# Job statuses a fire request may run under, checked at admission time
ADMISSIBLE_STATUSES: Dict[TriggerSource, Tuple[JobStatus, ...]] = {
    TriggerSource.SCHEDULED: (JobStatus.ACTIVE,),
    TriggerSource.MANUAL: (JobStatus.ACTIVE, JobStatus.INACTIVE),
    TriggerSource.RETRY: (JobStatus.ACTIVE, JobStatus.INACTIVE),
}

CompletionCallback = Callable[[Job, Execution], None]


class JobLockTable:
    """One non-blocking lock per job id.

    A held lock means the job has a RUNNING execution. Locks are created on
    first use and dropped with ``discard`` once a job is deleted.
    """

    def __init__(self) -> None:
        self._locks: Dict[UUID, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, job_id: UUID) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = self._locks[job_id] = threading.Lock()
            return lock

    def try_acquire(self, job_id: UUID) -> bool:
        """Acquire the job's lock without blocking. Returns False if held."""
        return self._lock_for(job_id).acquire(blocking=False)

    def release(self, job_id: UUID) -> None:
        lock = self._lock_for(job_id)
        if lock.locked():
            lock.release()

    def is_locked(self, job_id: UUID) -> bool:
        with self._guard:
            lock = self._locks.get(job_id)
        return lock is not None and lock.locked()

    def discard(self, job_id: UUID) -> None:
        """Forget the lock of a job that will never run again, unless held."""
        with self._guard:
            lock = self._locks.get(job_id)
            if lock is not None and not lock.locked():
                del self._locks[job_id]

    def held(self) -> Set[UUID]:
        """Ids of jobs currently running."""
        with self._guard:
            return {job_id for job_id, lock in self._locks.items() if lock.locked()}


def _json_safe(value: Any) -> Any:
    """Coerce a handler result into something the JSON column accepts."""
    if value is None:
        return None
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return json.loads(json.dumps(value, default=str))


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class JobExecutor:
    """Runs jobs under their execution lock and records the outcome.

    Example:
        executor = JobExecutor(store, registry)
        execution = await executor.run(job, TriggerSource.MANUAL)
        print(execution.status)

    Args:
        store: Job store for executions and job logs
        registry: Handler registry
        locks: Per-job lock table (shared with the engine)
        gate: Lock held while checking admission and inserting the RUNNING
            record; the engine passes its registry lock so a pause or delete
            cannot slip in between
        on_complete: Called with the job and terminal execution after the
            lock is released
        retry: Retry coordinator for FAILED and TIMEOUT outcomes
    """

    def __init__(
        self,
        store: JobStore,
        registry: HandlerRegistry,
        locks: Optional[JobLockTable] = None,
        gate: Optional[threading.RLock] = None,
        on_complete: Optional[CompletionCallback] = None,
        retry: Optional[RetryCoordinator] = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self.locks = locks or JobLockTable()
        self._gate = gate or threading.RLock()
        self._on_complete = on_complete
        self.retry = retry

        # Background runs started by launch()
        self._tasks: Set[asyncio.Task] = set()
        # Handlers that outlived their timeout
        self._abandoned: Set[asyncio.Task] = set()

    @property
    def running_count(self) -> int:
        return len(self.locks.held())

    @property
    def abandoned_count(self) -> int:
        return len(self._abandoned)

    async def run(
        self,
        job: Job,
        trigger_source: TriggerSource = TriggerSource.SCHEDULED,
        parent_execution_id: Optional[UUID] = None,
        attempt: int = 0,
    ) -> Optional[Execution]:
        """Run a job to a terminal outcome.

        Returns:
            The terminal execution, or None if the job was no longer
            admissible (paused or deleted since the fire was requested)

        Raises:
            SchedulingConflict: If the job already has a running execution
        """
        admitted = self._begin(job, trigger_source, parent_execution_id, attempt)
        if admitted is None:
            return None
        current, execution = admitted
        return await self._drive(current, execution)

    def launch(
        self,
        job: Job,
        trigger_source: TriggerSource = TriggerSource.MANUAL,
        parent_execution_id: Optional[UUID] = None,
        attempt: int = 0,
    ) -> Optional[Execution]:
        """Start a run and return its RUNNING execution without waiting.

        Lock acquisition and the RUNNING insert happen before this returns;
        the handler runs in a background task.

        Raises:
            SchedulingConflict: If the job already has a running execution
        """
        admitted = self._begin(job, trigger_source, parent_execution_id, attempt)
        if admitted is None:
            return None
        current, execution = admitted

        task = asyncio.get_running_loop().create_task(self._drive(current, execution))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return execution

    async def wait_idle(self) -> None:
        """Wait for every launched run to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Wait up to ``timeout`` seconds for launched runs, then cancel the rest.

        Abandoned handlers are always cancelled.
        """
        if self._tasks and timeout:
            await asyncio.wait(list(self._tasks), timeout=timeout)

        pending = [t for t in list(self._tasks) + list(self._abandoned) if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _begin(
        self,
        job: Job,
        trigger_source: TriggerSource,
        parent_execution_id: Optional[UUID],
        attempt: int,
    ) -> Optional[Tuple[Job, Execution]]:
        if not self.locks.try_acquire(job.job_id):
            raise SchedulingConflict(job.job_id)

        try:
            with self._gate:
                current = self._store.get_job(job.job_id)
                if current is None or current.status not in ADMISSIBLE_STATUSES[trigger_source]:
                    status = current.status.value if current else "missing"
                    logger.info(
                        f"Skipping {trigger_source.value.lower()} run of job {job.job_id}: "
                        f"job is {status}"
                    )
                    self.locks.release(job.job_id)
                    return None

                execution = Execution(
                    job_id=current.job_id,
                    org_id=current.org_id,
                    trigger_source=trigger_source,
                    parent_execution_id=parent_execution_id,
                    attempt=attempt,
                    started_at=utcnow(),
                )
                self._store.create_execution(execution)
        except Exception:
            self.locks.release(job.job_id)
            raise

        logger.info(
            f"Executing job '{current.name}' ({current.job_id}) "
            f"[{trigger_source.value}, execution {execution.execution_id}]"
        )
        self._write_log(
            current,
            execution.execution_id,
            "Job execution started",
            LogLevel.INFO,
            {"trigger_source": trigger_source.value, "attempt": attempt},
        )
        return current, execution

    async def _drive(self, job: Job, execution: Execution) -> Execution:
        ctx = HandlerContext(
            job=job,
            execution_id=execution.execution_id,
            log_writer=partial(self._write_log, job, execution.execution_id),
        )

        try:
            await self._invoke(job, execution, ctx)
        except asyncio.CancelledError:
            self._finish(execution, ExecutionStatus.FAILED, error="Execution cancelled")
            self._persist_outcome(job, execution)
            self.locks.release(job.job_id)
            raise

        self._persist_outcome(job, execution)
        self.locks.release(job.job_id)

        if self._on_complete is not None:
            try:
                self._on_complete(job, execution)
            except Exception as e:
                logger.error(f"Completion callback failed for job {job.job_id}: {e}")

        if self.retry is not None and execution.status in (
            ExecutionStatus.FAILED,
            ExecutionStatus.TIMEOUT,
        ):
            try:
                self.retry.maybe_retry(execution, job)
            except Exception as e:
                logger.error(f"Retry scheduling failed for job {job.job_id}: {e}")

        return execution

    async def _invoke(self, job: Job, execution: Execution, ctx: HandlerContext) -> None:
        try:
            handler = self._registry.get(job.job_type)
        except HandlerNotFoundError as e:
            logger.error(f"Job {job.job_id} failed: {e}")
            self._finish(execution, ExecutionStatus.FAILED, error=str(e))
            return

        task = asyncio.get_running_loop().create_task(invoke_handler(handler, ctx))
        try:
            done, _ = await asyncio.wait({task}, timeout=job.timeout)
        except asyncio.CancelledError:
            ctx.cancel_event.set()
            task.cancel()
            raise

        if task not in done:
            ctx.cancel_event.set()
            task.cancel()
            self._abandoned.add(task)
            task.add_done_callback(self._abandoned_done)

            error = HandlerTimeoutError(job.job_id, job.timeout)
            logger.warning(str(error))
            self._finish(execution, ExecutionStatus.TIMEOUT, error=str(error))
            return

        if task.cancelled():
            self._finish(execution, ExecutionStatus.FAILED, error="Handler was cancelled")
            return

        exc = task.exception()
        if exc is not None:
            logger.error(f"Job {job.job_id} failed: {_error_message(exc)}")
            self._finish(execution, ExecutionStatus.FAILED, error=_error_message(exc))
            return

        self._finish(execution, ExecutionStatus.SUCCESS, result=_json_safe(task.result()))

    def _abandoned_done(self, task: asyncio.Task) -> None:
        self._abandoned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Abandoned handler finished with error: {task.exception()}")

    @staticmethod
    def _finish(
        execution: Execution,
        status: ExecutionStatus,
        error: Optional[str] = None,
        result: Any = None,
    ) -> None:
        completed_at = utcnow()
        execution.status = status
        execution.completed_at = completed_at
        execution.duration_ms = max(
            int((completed_at - execution.started_at).total_seconds() * 1000), 0
        )
        execution.error = error
        execution.result = result

    def _persist_outcome(self, job: Job, execution: Execution) -> None:
        try:
            self._store.complete_execution(execution)
        except Exception as e:
            logger.error(f"Failed to persist outcome of execution {execution.execution_id}: {e}")

        if execution.status == ExecutionStatus.SUCCESS:
            logger.info(
                f"Job '{job.name}' completed successfully in {execution.duration_ms}ms"
            )
            self._write_log(
                job,
                execution.execution_id,
                "Job execution completed",
                LogLevel.INFO,
                {"duration_ms": execution.duration_ms},
            )
        else:
            self._write_log(
                job,
                execution.execution_id,
                f"Job execution {execution.status.value.lower()}: {execution.error}",
                LogLevel.ERROR,
                {"duration_ms": execution.duration_ms, "status": execution.status.value},
            )

    def _write_log(
        self,
        job: Job,
        execution_id: Optional[UUID],
        message: str,
        level: LogLevel = LogLevel.INFO,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            self._store.append_log(JobLogEntry(
                job_id=job.job_id,
                org_id=job.org_id,
                execution_id=execution_id,
                message=message,
                level=level,
                data=_json_safe(data),
            ))
        except Exception as e:
            logger.warning(f"Failed to write job log for {job.job_id}: {e}")
