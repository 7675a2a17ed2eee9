"""Built-in job types.

- ``API_CALL``: make an HTTP request and record status and body.
- ``WEBHOOK_TRIGGER``: POST a JSON payload to a webhook.
- ``CLEANUP_HISTORY``: delete old executions and job log entries.
- ``FUNCTION_CALL``: run another registered handler by name, for jobs
  defined as ``{"functionName": ..., "params": {...}}``.

HTTP handlers read their request from the job config:

    {"url": "https://example.com/hook", "method": "POST",
     "headers": {...}, "body": {...}, "timeout": 10}

Non-2xx responses raise, so the execution is recorded as FAILED and becomes
eligible for retry.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Any, Dict

import httpx

from opsdeck.scheduler.exceptions import HandlerError
from opsdeck.scheduler.handlers import Handler, HandlerContext, HandlerRegistry, invoke_handler
from opsdeck.scheduler.models import utcnow
from opsdeck.scheduler.store import JobStore

logger = logging.getLogger(__name__)

API_CALL = "API_CALL"
WEBHOOK_TRIGGER = "WEBHOOK_TRIGGER"
CLEANUP_HISTORY = "CLEANUP_HISTORY"
FUNCTION_CALL = "FUNCTION_CALL"

# Maintenance function names used by older job definitions
FUNCTION_ALIASES = {
    "cleanupOldExecutions": CLEANUP_HISTORY,
}

DEFAULT_HTTP_TIMEOUT = 30.0  # seconds


def _require_url(config: Dict[str, Any]) -> str:
    url = config.get("url")
    if not url:
        raise ValueError("Job config must include a 'url'")
    return str(url)


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def make_api_call_handler(default_timeout: float = DEFAULT_HTTP_TIMEOUT) -> Handler:
    """Build the ``API_CALL`` handler."""

    async def api_call(ctx: HandlerContext) -> Dict[str, Any]:
        config = ctx.config
        url = _require_url(config)
        method = str(config.get("method", "GET")).upper()
        body = config.get("body")

        ctx.log(f"Making API call: {method} {url}")

        async with httpx.AsyncClient(timeout=config.get("timeout", default_timeout)) as client:
            response = await client.request(
                method,
                url,
                headers=config.get("headers") or {},
                json=body if isinstance(body, (dict, list)) else None,
                content=body if isinstance(body, (str, bytes)) else None,
            )
            response.raise_for_status()

        ctx.log(f"API call completed with status: {response.status_code}")

        return {
            "status": response.status_code,
            "data": _response_body(response),
            "headers": dict(response.headers),
        }

    return api_call


def make_webhook_handler(default_timeout: float = DEFAULT_HTTP_TIMEOUT) -> Handler:
    """Build the ``WEBHOOK_TRIGGER`` handler."""

    async def trigger_webhook(ctx: HandlerContext) -> Dict[str, Any]:
        config = ctx.config
        url = _require_url(config)
        method = str(config.get("method", "POST")).upper()
        headers = {"Content-Type": "application/json", **(config.get("headers") or {})}

        ctx.log(f"Triggering webhook: {method} {url}")

        async with httpx.AsyncClient(timeout=config.get("timeout", default_timeout)) as client:
            response = await client.request(
                method,
                url,
                headers=headers,
                json=config.get("payload", {}),
            )
            response.raise_for_status()

        ctx.log("Webhook triggered successfully", data={"status": response.status_code})

        return {
            "status": response.status_code,
            "response": _response_body(response),
        }

    return trigger_webhook


def make_cleanup_handler(store: JobStore, default_days: int = 30) -> Handler:
    """Build the ``CLEANUP_HISTORY`` handler.

    The job config may override the retention window with ``days``.
    """

    def cleanup_history(ctx: HandlerContext) -> Dict[str, int]:
        days = int(ctx.config.get("days", default_days))
        if days <= 0:
            raise ValueError("Retention 'days' must be greater than zero")

        cutoff = utcnow() - timedelta(days=days)
        executions, logs = store.delete_history_before(cutoff)
        ctx.log(
            f"Deleted {executions} executions and {logs} log entries older than {days} days"
        )
        return {"executions_deleted": executions, "logs_deleted": logs}

    return cleanup_history


def make_function_call_handler(registry: HandlerRegistry) -> Handler:
    """Build the ``FUNCTION_CALL`` handler.

    ``functionName`` names a registered job type (or one of
    ``FUNCTION_ALIASES``); that handler runs with ``params`` as its config.
    """

    async def function_call(ctx: HandlerContext) -> Any:
        name = ctx.config.get("functionName")
        if not name:
            raise ValueError("Job config must include a 'functionName'")

        job_type = FUNCTION_ALIASES.get(name, name)
        if job_type == FUNCTION_CALL or not registry.has(job_type):
            raise HandlerError(f"Function not found: {name}")

        params = ctx.config.get("params") or {}
        ctx.log(f"Calling function: {name}")

        inner = HandlerContext(
            job=replace(ctx.job, config=dict(params)),
            execution_id=ctx.execution_id,
            cancel_event=ctx.cancel_event,
            log_writer=ctx.log_writer,
        )
        result = await invoke_handler(registry.get(job_type), inner)

        ctx.log("Function completed successfully")
        return result

    return function_call


def register_builtin_handlers(
    registry: HandlerRegistry,
    store: JobStore,
    http_timeout: float = DEFAULT_HTTP_TIMEOUT,
    retention_days: int = 30,
) -> None:
    """Register every built-in job type that is not already registered."""
    builtins = {
        API_CALL: make_api_call_handler(http_timeout),
        WEBHOOK_TRIGGER: make_webhook_handler(http_timeout),
        CLEANUP_HISTORY: make_cleanup_handler(store, retention_days or 30),
        FUNCTION_CALL: make_function_call_handler(registry),
    }
    for job_type, handler in builtins.items():
        if not registry.has(job_type):
            registry.register(job_type, handler)
