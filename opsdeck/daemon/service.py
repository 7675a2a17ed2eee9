"""Service wrapper around the job scheduler.

This module provides:
- Service lifecycle management (start/stop)
- Signal handling for graceful shutdown
"""

import asyncio
import logging
import signal
from typing import Any, Dict, Optional

from opsdeck.config import OpsdeckConfig, ensure_directories
from opsdeck.scheduler.handlers import HandlerRegistry
from opsdeck.scheduler.job_scheduler import JobScheduler, create_scheduler
from opsdeck.scheduler.store import JobStore

logger = logging.getLogger(__name__)


class OpsdeckDaemon:
    """Long-running scheduler service.

    Example:
        daemon = OpsdeckDaemon(config)

        await daemon.start()
        await daemon.run_until_shutdown()
        await daemon.stop()

    Args:
        config: Opsdeck configuration
        registry: Handler registry (built-ins and entry points are added)
        store: Job store (defaults to the configured database)
        shutdown_timeout: Seconds to wait for running executions on stop
    """

    def __init__(
        self,
        config: OpsdeckConfig,
        registry: Optional[HandlerRegistry] = None,
        store: Optional[JobStore] = None,
        shutdown_timeout: float = 30.0,
    ):
        self._config = config
        self._registry = registry
        self._store = store
        self._shutdown_timeout = shutdown_timeout
        self._scheduler: Optional[JobScheduler] = None
        self._running = False
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the scheduler.

        Raises:
            RuntimeError: If the scheduler is disabled in the configuration
        """
        if not self._config.scheduler.enabled:
            raise RuntimeError("Scheduler is disabled in configuration")

        logger.info("Starting Opsdeck daemon...")

        if self._store is None:
            ensure_directories(self._config)

        self._scheduler = create_scheduler(
            self._config,
            registry=self._registry,
            store=self._store,
        )
        await self._scheduler.start()

        self._running = True
        logger.info(
            f"Opsdeck daemon started with handlers: "
            f"{', '.join(self._scheduler.registry.available_types()) or 'none'}"
        )

    async def stop(self) -> None:
        """Stop the scheduler, letting running executions finish first."""
        logger.info("Stopping Opsdeck daemon...")

        self._running = False

        if self._scheduler:
            try:
                await self._scheduler.stop(timeout=self._shutdown_timeout)
            except Exception as e:
                logger.warning(f"Error stopping scheduler: {e}")

        logger.info("Opsdeck daemon stopped")

    async def run_until_shutdown(self) -> None:
        """Block until ``request_shutdown()`` is called."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request daemon shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def scheduler(self) -> Optional[JobScheduler]:
        """The job scheduler, or None if not started."""
        return self._scheduler


async def run_daemon(config: OpsdeckConfig, options: Optional[Dict[str, Any]] = None) -> None:
    """Run the Opsdeck daemon until SIGTERM or SIGINT.

    Args:
        config: Opsdeck configuration
        options: Daemon options:
            - shutdown_timeout: Seconds to wait for running executions
    """
    options = options or {}
    daemon = OpsdeckDaemon(
        config,
        shutdown_timeout=options.get("shutdown_timeout", 30.0),
    )

    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        daemon.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda signum, frame: handle_signal(signal.Signals(signum)))

    try:
        await daemon.start()
        await daemon.run_until_shutdown()
    finally:
        await daemon.stop()
