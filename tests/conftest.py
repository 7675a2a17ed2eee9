"""Shared fixtures for the Opsdeck test suite."""

import asyncio
from typing import Callable

import pytest

from opsdeck.config import SchedulerConfig
from opsdeck.database.connection import reset_engine
from opsdeck.scheduler.handlers import HandlerRegistry
from opsdeck.scheduler.job_scheduler import JobScheduler
from opsdeck.scheduler.store import JobStore


@pytest.fixture
def store(tmp_path) -> JobStore:
    """A job store on a fresh SQLite file."""
    return JobStore.from_url(f"sqlite:///{tmp_path / 'opsdeck.db'}")


@pytest.fixture
def registry() -> HandlerRegistry:
    """A registry with a few test handlers."""
    registry = HandlerRegistry()

    @registry.handler("ECHO")
    async def echo(ctx):
        return {"echo": ctx.config.get("value")}

    @registry.handler("FAIL")
    async def fail(ctx):
        raise RuntimeError("boom")

    @registry.handler("SYNC_ECHO")
    def sync_echo(ctx):
        return {"thread": True, "value": ctx.config.get("value")}

    return registry


@pytest.fixture
def scheduler_config() -> SchedulerConfig:
    """Scheduler config without the periodic cleanup and sync timers."""
    return SchedulerConfig(
        history_retention_days=0,
        sync_interval=0,
        default_retry_delay=0.0,
    )


@pytest.fixture
def scheduler(store, registry, scheduler_config) -> JobScheduler:
    """A scheduler that is not started yet."""
    return JobScheduler(store, registry, scheduler_config)


@pytest.fixture
def wait_for() -> Callable:
    """Poll a condition until it holds or a timeout expires."""

    async def _wait_for(condition: Callable[[], bool], timeout: float = 5.0) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if condition():
                return True
            await asyncio.sleep(0.02)
        return condition()

    return _wait_for


@pytest.fixture(autouse=True)
def _reset_globals():
    """Forget the cached config and database engine between tests."""
    from opsdeck.config import clear_config_cache

    yield
    clear_config_cache()
    reset_engine()
