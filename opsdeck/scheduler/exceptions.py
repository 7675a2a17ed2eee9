"""Exceptions raised by the scheduling subsystem.

Only ``JobValidationError``, ``JobNotFoundError`` and ``SchedulingConflict``
ever reach a caller of the scheduler API. Handler-level errors are captured
by the execution runner and recorded on the execution.
"""

from uuid import UUID


class SchedulerError(Exception):
    """Base exception for all scheduler errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class JobValidationError(SchedulerError):
    """Raised when a job definition is missing or has invalid fields."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    def __str__(self) -> str:
        if self.field:
            return f"{self.message} (field: {self.field})"
        return self.message


class JobNotFoundError(SchedulerError):
    """Raised when an operation targets an unknown job id."""

    def __init__(self, job_id: UUID | str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class SchedulingConflict(SchedulerError):
    """Raised when a fire request finds the job's execution lock held."""

    def __init__(self, job_id: UUID | str) -> None:
        super().__init__(f"Job {job_id} already has an execution in progress")
        self.job_id = job_id


class HandlerError(SchedulerError):
    """Raised (and recorded) when a handler fails during execution."""


class HandlerNotFoundError(HandlerError):
    """Raised when no handler is registered for a job type."""

    def __init__(self, job_type: str) -> None:
        super().__init__(f"Handler not found: {job_type}")
        self.job_type = job_type


class HandlerTimeoutError(HandlerError, TimeoutError):
    """Raised when a handler exceeds the job's timeout."""

    def __init__(self, job_id: UUID | str, timeout: float) -> None:
        super().__init__(f"Job {job_id} timed out after {timeout:g}s")
        self.job_id = job_id
        self.timeout = timeout
