"""Handler registry for job types.

A handler is the function that does a job's actual work. It is looked up by
the job's ``job_type`` and called with a ``HandlerContext``:

    registry = HandlerRegistry()

    @registry.handler("INVENTORY_SYNC")
    async def sync_inventory(ctx: HandlerContext) -> dict:
        ctx.log("Sync started")
        return {"synced": 42}

Coroutine functions run on the event loop; plain functions run in a worker
thread via ``asyncio.to_thread``. Third-party packages can publish handlers
under the ``opsdeck.handlers`` entry point group.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from uuid import UUID

from opsdeck.scheduler.exceptions import HandlerNotFoundError
from opsdeck.scheduler.models import Job, LogLevel

logger = logging.getLogger(__name__)

LogWriter = Callable[[str, LogLevel, Optional[Dict[str, Any]]], None]

_LOGGING_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass
class HandlerContext:
    """Everything a handler gets to see about the execution it serves.

    Attributes:
        job: Snapshot of the job definition at fire time
        execution_id: Id of the execution record for this run
        cancel_event: Set when the run timed out; long-running handlers
            should poll ``cancelled`` and stop early
    """

    job: Job
    execution_id: UUID
    cancel_event: threading.Event = field(default_factory=threading.Event)
    log_writer: Optional[LogWriter] = None

    @property
    def config(self) -> Dict[str, Any]:
        """The job's opaque handler configuration."""
        return self.job.config

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def log(
        self,
        message: str,
        level: Union[LogLevel, str] = LogLevel.INFO,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append an entry to the job log for this execution."""
        level = LogLevel(level)
        logger.log(
            _LOGGING_LEVELS[level],
            f"[{self.job.name}] {message}",
        )
        if self.log_writer is not None:
            self.log_writer(message, level, data)


Handler = Callable[[HandlerContext], Union[Any, Awaitable[Any]]]


async def invoke_handler(handler: Handler, ctx: HandlerContext) -> Any:
    """Call ``handler`` with ``ctx``, off the loop if it is synchronous."""
    if inspect.iscoroutinefunction(handler):
        return await handler(ctx)

    result = await asyncio.to_thread(handler, ctx)
    if inspect.isawaitable(result):
        result = await result
    return result


class HandlerRegistry:
    """Maps job types to handler callables.

    Example:
        registry = HandlerRegistry()
        registry.register("API_CALL", call_api)
        handler = registry.get("API_CALL")
    """

    # Entry point group for third-party handlers
    ENTRY_POINT_GROUP = "opsdeck.handlers"

    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {}
        self._lock = threading.Lock()

    def register(self, job_type: str, handler: Handler, replace: bool = False) -> None:
        """Register a handler for a job type.

        Args:
            job_type: Job type key
            handler: Callable taking a ``HandlerContext``
            replace: Allow replacing an existing registration

        Raises:
            ValueError: If the type is already registered and ``replace`` is False
        """
        if not job_type:
            raise ValueError("Job type must not be empty")
        if not callable(handler):
            raise TypeError(f"Handler for {job_type} is not callable")

        with self._lock:
            if job_type in self._handlers and not replace:
                raise ValueError(f"Handler already registered for job type: {job_type}")
            self._handlers[job_type] = handler

        logger.debug(f"Registered handler for job type {job_type}")

    def handler(self, job_type: str, replace: bool = False) -> Callable[[Handler], Handler]:
        """Decorator form of ``register``."""

        def decorator(fn: Handler) -> Handler:
            self.register(job_type, fn, replace=replace)
            return fn

        return decorator

    def unregister(self, job_type: str) -> bool:
        """Remove a registration. Returns True if one existed."""
        with self._lock:
            return self._handlers.pop(job_type, None) is not None

    def get(self, job_type: str) -> Handler:
        """Look up the handler for a job type.

        Raises:
            HandlerNotFoundError: If no handler is registered
        """
        with self._lock:
            handler = self._handlers.get(job_type)
        if handler is None:
            raise HandlerNotFoundError(job_type)
        return handler

    def has(self, job_type: str) -> bool:
        with self._lock:
            return job_type in self._handlers

    def available_types(self) -> List[str]:
        """Get sorted list of registered job types."""
        with self._lock:
            return sorted(self._handlers)

    def load_entry_points(self) -> int:
        """Register handlers published under ``ENTRY_POINT_GROUP``.

        The entry point name is the job type. Handlers that fail to load are
        logged and skipped; existing registrations are never replaced.

        Returns:
            Number of handlers registered
        """
        from importlib.metadata import entry_points

        loaded = 0
        for ep in entry_points(group=self.ENTRY_POINT_GROUP):
            if self.has(ep.name):
                logger.debug(f"Skipping entry point {ep.name}: type already registered")
                continue
            try:
                handler = ep.load()
                self.register(ep.name, handler)
                loaded += 1
            except Exception as e:
                logger.warning(f"Failed to load handler entry point {ep.name}: {e}")

        if loaded:
            logger.info(f"Loaded {loaded} handler(s) from entry points")
        return loaded
