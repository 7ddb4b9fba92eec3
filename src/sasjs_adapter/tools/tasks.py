# SASjs Python Adapter
# File: tools/tasks.py
# Version: v3
#
# NOTE: This module is the single place where adapter operations are exposed
# as MCP tools. The stdio transport simply calls `register_tools(server)`.

from __future__ import annotations

import asyncio
import os
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Set

from ..client import SASjs
from ..config import SASjsConfig
from ..errors import (
    ContextNotFoundError,
    JobNotFoundError,
    MalformedResponseError,
    RetryLimitExceededError,
    SASjsError,
    SASjsHTTPError,
    SerializationError,
    ServerLogError,
    UnsupportedServerTypeError,
)

# ---------------------------------------------------------------------------
# Internal helpers (client lifecycle, error shape)
# ---------------------------------------------------------------------------

_ERROR_CODES = {
    SerializationError: "SERIALIZATION_ERROR",
    RetryLimitExceededError: "RETRY_LIMIT_EXCEEDED",
    ServerLogError: "SERVER_LOG_ERROR",
    MalformedResponseError: "MALFORMED_RESPONSE",
    ContextNotFoundError: "CONTEXT_NOT_FOUND",
    JobNotFoundError: "JOB_NOT_FOUND",
    UnsupportedServerTypeError: "UNSUPPORTED_SERVER_TYPE",
    SASjsHTTPError: "HTTP_ERROR",
}


def _make_error(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Small, LLM-friendly error shape shared by all tools."""
    err: Dict[str, Any] = {"code": code, "message": message}
    if details:
        err["details"] = details
    return {"ok": False, "error": err}


def _error_from_exception(exc: SASjsError) -> Dict[str, Any]:
    code = _ERROR_CODES.get(type(exc), "SASJS_ERROR")
    return _make_error(code, exc.message)


_CLIENT: SASjs | None = None

# Requests parked while waiting for a login; kept referenced until replayed.
_PARKED: Set["asyncio.Task[Any]"] = set()


def _make_client(cfg: Optional[SASjsConfig] = None) -> SASjs:
    """Create a SASjs client from the environment.

    Kept separate from _get_client so tests can monkeypatch it with a fake.
    """
    return SASjs(cfg or SASjsConfig.from_env())


def _get_client() -> SASjs:
    """Lazily create the process-wide client so the login cookie survives between tools."""
    global _CLIENT
    if _CLIENT is None:
        _CLIENT = _make_client()
    return _CLIENT


def _discard_parked(task: "asyncio.Task[Any]") -> None:
    _PARKED.discard(task)
    if not task.cancelled():
        # outcome is visible through sasjs_recent_requests
        task.exception()


# ---------------------------------------------------------------------------
# Tool implementations
# ---------------------------------------------------------------------------


async def check_session() -> Dict[str, Any]:
    client = _get_client()
    status = await client.check_session()
    return {"ok": True, "is_logged_in": status.is_logged_in, "user_name": status.user_name}


async def log_in(username: Optional[str] = None, password: Optional[str] = None) -> Dict[str, Any]:
    """Log in with explicit credentials or SASJS_USERNAME / SASJS_PASSWORD."""
    username = username or os.getenv("SASJS_USERNAME")
    password = password or os.getenv("SASJS_PASSWORD")
    if not username or not password:
        return _make_error(
            "MISSING_CREDENTIALS",
            "Pass username and password or set SASJS_USERNAME and SASJS_PASSWORD.",
        )

    client = _get_client()
    status = await client.log_in(username, password)
    return {
        "ok": status.is_logged_in,
        "is_logged_in": status.is_logged_in,
        "user_name": status.user_name,
    }


async def log_out() -> Dict[str, Any]:
    client = _get_client()
    return {"ok": await client.log_out()}


async def request_program(
    program_name: str,
    data: Optional[Dict[str, List[Dict[str, Any]]]] = None,
    params: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Run a SAS program. If a login is needed the call is queued, not lost."""
    client = _get_client()
    login_required = asyncio.Event()

    task = asyncio.ensure_future(
        client.request(
            program_name,
            data,
            params,
            on_login_required=lambda _: login_required.set(),
        )
    )
    waiter = asyncio.ensure_future(login_required.wait())

    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()

    if not task.done():
        _PARKED.add(task)
        task.add_done_callback(_discard_parked)
        return _make_error(
            "LOGIN_REQUIRED",
            "The server requires a login. The request was queued and will run "
            "after sasjs_log_in succeeds.",
            {"program": program_name, "queued": client.waiting_request_count},
        )

    try:
        payload = task.result()
    except SASjsError as exc:
        return _error_from_exception(exc)

    return {"ok": True, "program": program_name, "result": payload}


async def list_contexts(access_token: Optional[str] = None) -> Dict[str, Any]:
    client = _get_client()
    try:
        contexts = await client.get_all_contexts(access_token)
    except SASjsError as exc:
        return _error_from_exception(exc)

    return {"ok": True, "count": len(contexts), "contexts": [asdict(c) for c in contexts]}


async def executable_contexts(access_token: Optional[str] = None) -> Dict[str, Any]:
    client = _get_client()
    try:
        contexts = await client.get_executable_contexts(access_token)
    except SASjsError as exc:
        return _error_from_exception(exc)

    return {"ok": True, "count": len(contexts), "contexts": [asdict(c) for c in contexts]}


async def execute_script(
    file_name: str,
    lines_of_code: List[str],
    context_name: str,
    access_token: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    client = _get_client()
    try:
        result = await client.execute_script_sas_viya(
            file_name,
            lines_of_code,
            context_name,
            access_token,
            session_id,
            silent=True,
        )
    except SASjsError as exc:
        return _error_from_exception(exc)

    if result is None:
        return _make_error(
            "CONTEXT_NOT_FOUND", f"Execution context {context_name} not found."
        )

    return {
        "ok": True,
        "job_status": result.job_status,
        "timed_out": result.timed_out,
        "log": result.log,
    }


async def recent_requests(limit: int = 20, include_log: bool = False) -> Dict[str, Any]:
    client = _get_client()
    entries = client.get_sas_requests()[: max(int(limit), 0)]

    items = []
    for entry in entries:
        item: Dict[str, Any] = {
            "program": entry.service_link,
            "timestamp": entry.timestamp.isoformat(),
            "source_code": entry.source_code,
            "generated_code": entry.generated_code,
            "work": entry.sas_work,
        }
        if include_log:
            item["log"] = entry.log_file
        items.append(item)

    return {"ok": True, "count": len(items), "requests": items}


async def get_config() -> Dict[str, Any]:
    client = _get_client()
    cfg = client.get_config()
    return {
        "ok": True,
        "config": {
            "server_url": cfg.server_url,
            "server_type": cfg.server_type.value,
            "app_loc": cfg.app_loc,
            "jobs_path": cfg.jobs_path,
            "debug": cfg.debug,
            "verify_tls": cfg.verify_tls,
        },
        "user_name": client.get_user_name(),
        "csrf_cached": client.get_csrf() is not None,
    }


# ---------------------------------------------------------------------------
# MCP tool registration
# ---------------------------------------------------------------------------


def register_tools(server: Any) -> None:
    """Register MCP tools on an MCP Server-like instance."""
    if server is None or not hasattr(server, "tool"):
        raise ValueError(
            "register_tools(server) expects an MCP Server-like object that exposes a .tool() decorator."
        )

    @server.tool(name="sasjs_check_session", description="Check whether the SASLogon session is signed in.")
    async def mcp_check_session() -> Dict[str, Any]:
        return await check_session()

    @server.tool(
        name="sasjs_log_in",
        description="Log in to SASLogon (falls back to SASJS_USERNAME / SASJS_PASSWORD) and replay queued requests.",
    )
    async def mcp_log_in(username: Optional[str] = None, password: Optional[str] = None) -> Dict[str, Any]:
        return await log_in(username=username, password=password)

    @server.tool(name="sasjs_log_out", description="Log out of the SAS server.")
    async def mcp_log_out() -> Dict[str, Any]:
        return await log_out()

    @server.tool(
        name="sasjs_request",
        description="Run a SAS program under the configured appLoc, sending tables as lists of row objects.",
    )
    async def mcp_request(
        program_name: str,
        data: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return await request_program(program_name=program_name, data=data, params=params)

    @server.tool(name="sasjs_list_contexts", description="List SAS Viya compute contexts.")
    async def mcp_list_contexts(access_token: Optional[str] = None) -> Dict[str, Any]:
        return await list_contexts(access_token=access_token)

    @server.tool(
        name="sasjs_executable_contexts",
        description="List SAS Viya compute contexts the current user can run code in.",
    )
    async def mcp_executable_contexts(access_token: Optional[str] = None) -> Dict[str, Any]:
        return await executable_contexts(access_token=access_token)

    @server.tool(
        name="sasjs_execute_script",
        description="Run SAS code in a Viya compute context and return the job status and log.",
    )
    async def mcp_execute_script(
        file_name: str,
        lines_of_code: List[str],
        context_name: str,
        access_token: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await execute_script(
            file_name=file_name,
            lines_of_code=lines_of_code,
            context_name=context_name,
            access_token=access_token,
            session_id=session_id,
        )

    @server.tool(
        name="sasjs_recent_requests",
        description="Show the most recent program requests with parsed source and generated code.",
    )
    async def mcp_recent_requests(limit: int = 20, include_log: bool = False) -> Dict[str, Any]:
        return await recent_requests(limit=limit, include_log=include_log)

    @server.tool(name="sasjs_get_config", description="Return the adapter configuration (no secrets).")
    async def mcp_get_config() -> Dict[str, Any]:
        return await get_config()
