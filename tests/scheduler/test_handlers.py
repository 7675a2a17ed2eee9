"""Tests for the handler registry and built-in handlers."""

import asyncio
import json
import threading
from datetime import timedelta
from unittest.mock import MagicMock, patch
from uuid import uuid4

import httpx
import pytest

from opsdeck.scheduler.builtin_handlers import (
    API_CALL,
    CLEANUP_HISTORY,
    FUNCTION_CALL,
    WEBHOOK_TRIGGER,
    make_api_call_handler,
    make_cleanup_handler,
    make_function_call_handler,
    make_webhook_handler,
    register_builtin_handlers,
)
from opsdeck.scheduler.exceptions import HandlerError, HandlerNotFoundError
from opsdeck.scheduler.handlers import HandlerContext, HandlerRegistry, invoke_handler
from opsdeck.scheduler.models import (
    Execution,
    ExecutionStatus,
    Job,
    JobLogEntry,
    LogLevel,
    utcnow,
)
from opsdeck.scheduler.triggers import IntervalSpec


def make_ctx(config=None, log_writer=None) -> HandlerContext:
    job = Job(name="Test job", job_type="TEST", trigger=IntervalSpec(5), config=config or {})
    return HandlerContext(job=job, execution_id=uuid4(), log_writer=log_writer)


def mock_http(handler):
    """Patch httpx.AsyncClient so requests go to ``handler``."""
    real_client = httpx.AsyncClient

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    return patch("opsdeck.scheduler.builtin_handlers.httpx.AsyncClient", side_effect=factory)


class TestHandlerRegistry:
    """Tests for HandlerRegistry."""

    def test_register_and_get(self) -> None:
        registry = HandlerRegistry()
        handler = MagicMock()
        registry.register("SYNC_ORDERS", handler)

        assert registry.get("SYNC_ORDERS") is handler
        assert registry.has("SYNC_ORDERS")

    def test_duplicate_registration_rejected(self) -> None:
        registry = HandlerRegistry()
        registry.register("SYNC_ORDERS", MagicMock())

        with pytest.raises(ValueError):
            registry.register("SYNC_ORDERS", MagicMock())

    def test_replace(self) -> None:
        registry = HandlerRegistry()
        registry.register("SYNC_ORDERS", MagicMock())
        replacement = MagicMock()
        registry.register("SYNC_ORDERS", replacement, replace=True)

        assert registry.get("SYNC_ORDERS") is replacement

    def test_not_callable_rejected(self) -> None:
        with pytest.raises(TypeError):
            HandlerRegistry().register("SYNC_ORDERS", "not a function")

    def test_get_unknown_type(self) -> None:
        with pytest.raises(HandlerNotFoundError) as exc_info:
            HandlerRegistry().get("MISSING")
        assert str(exc_info.value) == "Handler not found: MISSING"
        assert isinstance(exc_info.value, HandlerError)
        assert exc_info.value.message == "Handler not found: MISSING"

    def test_decorator_and_available_types(self) -> None:
        registry = HandlerRegistry()

        @registry.handler("B_TYPE")
        def b(ctx):
            return None

        @registry.handler("A_TYPE")
        async def a(ctx):
            return None

        assert registry.available_types() == ["A_TYPE", "B_TYPE"]
        assert registry.get("B_TYPE") is b

    def test_unregister(self) -> None:
        registry = HandlerRegistry()
        registry.register("SYNC_ORDERS", MagicMock())

        assert registry.unregister("SYNC_ORDERS") is True
        assert registry.unregister("SYNC_ORDERS") is False
        assert not registry.has("SYNC_ORDERS")

    def test_load_entry_points(self) -> None:
        good = MagicMock()
        good.name = "GOOD"
        good.load.return_value = lambda ctx: "ok"
        broken = MagicMock()
        broken.name = "BROKEN"
        broken.load.side_effect = ImportError("missing dependency")
        taken = MagicMock()
        taken.name = "TAKEN"

        registry = HandlerRegistry()
        existing = MagicMock()
        registry.register("TAKEN", existing)

        with patch("importlib.metadata.entry_points", return_value=[good, broken, taken]) as eps:
            loaded = registry.load_entry_points()

        eps.assert_called_once_with(group="opsdeck.handlers")
        assert loaded == 1
        assert registry.has("GOOD")
        assert not registry.has("BROKEN")
        assert registry.get("TAKEN") is existing
        taken.load.assert_not_called()


class TestHandlerContext:
    """Tests for HandlerContext."""

    def test_log_goes_to_writer(self) -> None:
        writer = MagicMock()
        ctx = make_ctx(log_writer=writer)

        ctx.log("Fetched 3 orders", data={"orders": 3})
        ctx.log("Rate limited", level="WARNING")

        writer.assert_any_call("Fetched 3 orders", LogLevel.INFO, {"orders": 3})
        writer.assert_any_call("Rate limited", LogLevel.WARNING, None)

    def test_config_and_cancelled(self) -> None:
        ctx = make_ctx(config={"shop": "acme"})
        assert ctx.config == {"shop": "acme"}
        assert ctx.cancelled is False

        ctx.cancel_event.set()
        assert ctx.cancelled is True


class TestInvokeHandler:
    """Tests for invoke_handler."""

    @pytest.mark.asyncio
    async def test_coroutine_handler(self) -> None:
        async def handler(ctx):
            await asyncio.sleep(0)
            return "async"

        assert await invoke_handler(handler, make_ctx()) == "async"

    @pytest.mark.asyncio
    async def test_sync_handler_runs_off_loop(self) -> None:
        loop_thread = threading.get_ident()

        def handler(ctx):
            return threading.get_ident()

        assert await invoke_handler(handler, make_ctx()) != loop_thread


class TestApiCallHandler:
    """Tests for the API_CALL handler."""

    @pytest.mark.asyncio
    async def test_successful_call(self) -> None:
        seen = {}

        def respond(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"orders": 2})

        writer = MagicMock()
        ctx = make_ctx(
            config={
                "url": "https://api.example.com/orders",
                "headers": {"Authorization": "Bearer token"},
            },
            log_writer=writer,
        )

        with mock_http(respond):
            result = await make_api_call_handler()(ctx)

        assert seen == {
            "method": "GET",
            "url": "https://api.example.com/orders",
            "auth": "Bearer token",
        }
        assert result["status"] == 200
        assert result["data"] == {"orders": 2}
        assert writer.call_count == 2

    @pytest.mark.asyncio
    async def test_json_body(self) -> None:
        seen = {}

        def respond(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, text="created")

        ctx = make_ctx(config={
            "url": "https://api.example.com/orders",
            "method": "post",
            "body": {"sku": "A-1"},
        })

        with mock_http(respond):
            result = await make_api_call_handler()(ctx)

        assert seen["body"] == {"sku": "A-1"}
        assert result["data"] == "created"

    @pytest.mark.asyncio
    async def test_error_status_raises(self) -> None:
        ctx = make_ctx(config={"url": "https://api.example.com/orders"})

        with mock_http(lambda request: httpx.Response(503)):
            with pytest.raises(httpx.HTTPStatusError):
                await make_api_call_handler()(ctx)

    @pytest.mark.asyncio
    async def test_missing_url(self) -> None:
        with pytest.raises(ValueError):
            await make_api_call_handler()(make_ctx())


class TestWebhookHandler:
    """Tests for the WEBHOOK_TRIGGER handler."""

    @pytest.mark.asyncio
    async def test_posts_payload(self) -> None:
        seen = {}

        def respond(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["payload"] = json.loads(request.content)
            seen["content_type"] = request.headers.get("content-type")
            return httpx.Response(200, json={"ok": True})

        ctx = make_ctx(config={
            "url": "https://hooks.example.com/daily",
            "payload": {"event": "daily_report"},
        })

        with mock_http(respond):
            result = await make_webhook_handler()(ctx)

        assert seen["method"] == "POST"
        assert seen["payload"] == {"event": "daily_report"}
        assert seen["content_type"] == "application/json"
        assert result == {"status": 200, "response": {"ok": True}}


class TestCleanupHandler:
    """Tests for the CLEANUP_HISTORY handler."""

    def test_deletes_old_history(self, store) -> None:
        job = Job(name="Sync", job_type="ECHO", trigger=IntervalSpec(5))
        store.save_job(job)
        old = utcnow() - timedelta(days=10)
        store.create_execution(Execution(
            job_id=job.job_id, status=ExecutionStatus.SUCCESS, started_at=old,
        ))
        store.append_log(JobLogEntry(job_id=job.job_id, message="old", timestamp=old))

        handler = make_cleanup_handler(store, default_days=30)
        assert handler(make_ctx()) == {"executions_deleted": 0, "logs_deleted": 0}
        assert handler(make_ctx(config={"days": 7})) == {
            "executions_deleted": 1,
            "logs_deleted": 1,
        }

    def test_rejects_non_positive_days(self, store) -> None:
        with pytest.raises(ValueError):
            make_cleanup_handler(store)(make_ctx(config={"days": 0}))


class TestFunctionCallHandler:
    """Tests for the FUNCTION_CALL handler."""

    @pytest.mark.asyncio
    async def test_dispatches_by_function_name(self) -> None:
        registry = HandlerRegistry()
        entries = []

        @registry.handler("syncAllShopsOrders")
        async def sync_orders(ctx):
            ctx.log("syncing")
            return {"shops": ctx.config["shops"], "job": ctx.job.name}

        handler = make_function_call_handler(registry)
        ctx = make_ctx(
            config={"functionName": "syncAllShopsOrders", "params": {"shops": 3}},
            log_writer=lambda message, level, data: entries.append(message),
        )

        result = await handler(ctx)

        assert result == {"shops": 3, "job": "Test job"}
        assert entries == [
            "Calling function: syncAllShopsOrders",
            "syncing",
            "Function completed successfully",
        ]
        # The outer job keeps its own config
        assert ctx.config["functionName"] == "syncAllShopsOrders"

    @pytest.mark.asyncio
    async def test_alias_runs_cleanup(self, store) -> None:
        registry = HandlerRegistry()
        register_builtin_handlers(registry, store)

        result = await registry.get(FUNCTION_CALL)(
            make_ctx(config={"functionName": "cleanupOldExecutions", "params": {"days": 7}})
        )

        assert result == {"executions_deleted": 0, "logs_deleted": 0}

    @pytest.mark.asyncio
    async def test_unknown_function(self) -> None:
        registry = HandlerRegistry()
        handler = make_function_call_handler(registry)
        registry.register(FUNCTION_CALL, handler)

        with pytest.raises(HandlerError, match="Function not found: missing"):
            await handler(make_ctx(config={"functionName": "missing"}))
        with pytest.raises(HandlerError, match="Function not found"):
            await handler(make_ctx(config={"functionName": FUNCTION_CALL}))

    @pytest.mark.asyncio
    async def test_missing_function_name(self) -> None:
        handler = make_function_call_handler(HandlerRegistry())

        with pytest.raises(ValueError):
            await handler(make_ctx())


class TestRegisterBuiltins:
    def test_registers_builtin_types(self, store) -> None:
        registry = HandlerRegistry()
        custom = MagicMock()
        registry.register(API_CALL, custom)

        register_builtin_handlers(registry, store)

        assert registry.get(API_CALL) is custom
        assert registry.has(WEBHOOK_TRIGGER)
        assert registry.has(CLEANUP_HISTORY)
        assert registry.has(FUNCTION_CALL)
