# SASjs Python Adapter
# File: client.py
# Version: v6
"""High-level SASjs client.

Implements:

- request() to run a SAS program (stored process on SAS9, job on Viya) with
  tables attached, including CSRF and login handling
- log_in() / check_session() / log_out() for the SASLogon cookie session
- passthroughs to the Viya compute / OAuth clients and the SAS9 API client
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple
import asyncio
import inspect
import logging

import httpx

from .auth import OAuthClient, SASLogonClient
from .compute import SAS9ApiClient, ViyaComputeClient
from .config import SASjsConfig, ServerType
from .errors import RetryLimitExceededError, UnsupportedServerTypeError
from .models import Context, JobResult, LoginStatus, SASjsRequest, Session
from .responses import (
    USERNAME_FIELDS,
    get_decoder,
    parse_generated_code,
    parse_sas_work,
    parse_source_code,
)
from .scraping import is_login_required, needs_retry
from .serializer import CHUNK_SIZE, serialize_tables, split_chunks
from .state import ClientState, WaitingRequest

logger = logging.getLogger(__name__)

REQUEST_RETRY_LIMIT = 5
SAS_DEBUG_LEVEL = 131

Table = Sequence[Mapping[str, Any]]
TableData = Mapping[str, Table]
FormPart = Tuple[str, Tuple[Optional[str], bytes, Optional[str]]]


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _forward_outcome(target: "asyncio.Future[Any]", task: "asyncio.Future[Any]") -> None:
    """Settle a parked request's future with the outcome of its replay."""
    if target.done():
        return
    if task.cancelled():
        target.cancel()
        return
    exc = task.exception()
    if exc is not None:
        target.set_exception(exc)
    else:
        target.set_result(task.result())


class SASjs:
    """Client for SAS9 and SAS Viya servers.

    One instance owns one httpx.AsyncClient (and so one cookie jar) and one
    ClientState holding the CSRF token, user name, parked requests and the
    log of recent requests.

    Examples
    --------
    >>> async with SASjs(server_url="https://sas.example.com") as sasjs:
    ...     await sasjs.log_in("user", "secret")
    ...     res = await sasjs.request("common/sendArr", {"table1": [{"col1": 1}]})
    """

    def __init__(
        self,
        config: Optional[SASjsConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        **overrides: Any,
    ) -> None:
        base = config or SASjsConfig()
        if overrides:
            base = replace(base, **overrides)

        self.state = ClientState()
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=base.timeout_seconds,
            verify=base.verify_tls,
            follow_redirects=True,
        )
        self._replays: Set["asyncio.Future[Any]"] = set()

        self._setup_configuration(base)

    @classmethod
    def from_env(cls, http_client: Optional[httpx.AsyncClient] = None) -> "SASjs":
        return cls(SASjsConfig.from_env(), http_client=http_client)

    def _setup_configuration(self, config: SASjsConfig) -> None:
        server_url = (config.server_url or "").rstrip("/")
        if not server_url:
            raise ValueError(
                "Missing server_url. Set SASJS_SERVER_URL environment variable "
                "or pass server_url."
            )

        self.config = replace(config, server_url=server_url)
        self.logon = SASLogonClient(self.config, self._http, self.state)
        self.oauth = OAuthClient(self.config, self._http)

        self.viya: Optional[ViyaComputeClient] = None
        self.sas9: Optional[SAS9ApiClient] = None
        if self.config.server_type == ServerType.SASVIYA:
            self.viya = ViyaComputeClient(
                self.config,
                self._http,
                self.state,
                poll_interval=self.config.poll_interval_seconds,
            )
        else:
            self.sas9 = SAS9ApiClient(self.config, self._http)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "SASjs":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Configuration and state accessors
    # ------------------------------------------------------------------

    def get_config(self) -> SASjsConfig:
        return self.config

    def set_config(self, config: Optional[SASjsConfig] = None, **changes: Any) -> None:
        """Merge ``changes`` (or a whole config) into the current configuration."""
        merged = replace(config or self.config, **changes)
        self._setup_configuration(merged)

    def set_debug_state(self, value: bool) -> None:
        self.config.debug = bool(value)

    def get_user_name(self) -> str:
        return self.state.user_name

    def get_csrf(self) -> Optional[str]:
        return self.state.csrf.value if self.state.csrf else None

    @property
    def waiting_request_count(self) -> int:
        return len(self.state.waiting_requests)

    def get_sas_requests(self) -> List[SASjsRequest]:
        """Recent requests, newest first."""
        return list(reversed(self.state.requests))

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def check_session(self) -> LoginStatus:
        return await self.logon.check_session()

    async def log_in(self, username: str, password: str) -> LoginStatus:
        """Log in and replay any requests that were waiting for it."""
        status = await self.logon.log_in(username, password)
        if status.is_logged_in:
            self._resend_waiting_requests()
        return status

    async def log_out(self) -> bool:
        return await self.logon.log_out()

    def _resend_waiting_requests(self) -> None:
        waiting = self.state.take_waiting_requests()
        if waiting:
            logger.info("Replaying %s request(s) parked during login", len(waiting))

        for item in waiting:
            task = asyncio.ensure_future(
                self.request(item.program_name, item.data, item.params)
            )
            self._replays.add(task)
            task.add_done_callback(self._replays.discard)
            task.add_done_callback(partial(_forward_outcome, item.future))

    # ------------------------------------------------------------------
    # Program requests
    # ------------------------------------------------------------------

    def _program_path(self, program_name: str) -> str:
        app_loc = self.config.app_loc
        if not app_loc:
            return program_name
        return app_loc.rstrip("/") + "/" + program_name.lstrip("/")

    def _get_request_params(self) -> Dict[str, Any]:
        request_params: Dict[str, Any] = {}

        # Read at build time so a token harvested by an earlier response is used.
        if self.state.csrf:
            request_params["_csrf"] = self.state.csrf.value

        if self.config.debug:
            request_params["_omittextlog"] = "false"
            request_params["_omitsessionresults"] = "false"
            request_params["_debug"] = SAS_DEBUG_LEVEL

        return request_params

    def _build_form(
        self,
        tables: Mapping[str, str],
        params: Optional[Mapping[str, Any]],
    ) -> List[FormPart]:
        parts: List[FormPart] = []
        request_params: Dict[str, Any] = dict(params or {})

        if self.config.server_type == ServerType.SAS9:
            # SAS9 stored processes receive tables as uploaded files
            for table_name, csv in tables.items():
                parts.append(
                    (table_name, (f"{table_name}.csv", csv.encode("utf-8"), "application/csv"))
                )
        else:
            for index, (table_name, csv) in enumerate(tables.items(), start=1):
                key = f"sasjs{index}data"
                if len(csv) > CHUNK_SIZE:
                    for chunk in split_chunks(csv):
                        parts.append((key, (None, chunk.encode("utf-8"), None)))
                else:
                    request_params[key] = csv
            if tables:
                request_params["sasjs_tables"] = " ".join(tables)

        request_params.update(self._get_request_params())

        for key, value in request_params.items():
            parts.append((key, (None, _form_value(value).encode("utf-8"), None)))

        return parts

    async def request(
        self,
        program_name: str,
        data: Optional[TableData] = None,
        params: Optional[Dict[str, Any]] = None,
        on_login_required: Optional[Callable[[bool], Any]] = None,
    ) -> Any:
        """Run ``program_name`` with ``data`` and return the decoded JSON payload.

        ``data`` maps table names to lists of row dicts. When the server asks
        for a login the call waits until log_in() succeeds and is then sent
        again; ``on_login_required(True)`` is called when that happens.
        """
        return await self._send(program_name, data, params, on_login_required, retries=0)

    async def _send(
        self,
        program_name: str,
        data: Optional[TableData],
        params: Optional[Dict[str, Any]],
        on_login_required: Optional[Callable[[bool], Any]],
        retries: int,
    ) -> Any:
        program = self._program_path(program_name)

        # Serialize before any I/O so an oversized value never reaches SAS.
        tables = serialize_tables(data) if data else {}
        parts = self._build_form(tables, params)

        response = await self._http.post(
            f"{self.config.server_url}{self.config.jobs_path}/",
            params={"_program": program},
            files=parts,
        )

        self.state.harvest_csrf(response)

        redirected = bool(response.history) and self.config.server_type == ServerType.SAS9
        text = response.text
        login_required = is_login_required(text)

        if (needs_retry(text) or redirected) and not login_required:
            if retries < REQUEST_RETRY_LIMIT:
                logger.debug("Retrying %s (retry %s)", program, retries + 1)
                return await self._send(
                    program_name, data, params, on_login_required, retries + 1
                )
            raise RetryLimitExceededError(text, retries)

        await self._append_request_log(text, program)

        if login_required:
            return await self._park(program_name, data, params, on_login_required)

        decode = get_decoder(self.config.server_type, self.config.debug)
        payload = await decode(text, self._fetch_text)
        self._update_user_name(payload)
        return payload

    async def _park(
        self,
        program_name: str,
        data: Optional[TableData],
        params: Optional[Dict[str, Any]],
        on_login_required: Optional[Callable[[bool], Any]],
    ) -> Any:
        future: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        self.state.waiting_requests.append(
            WaitingRequest(program_name=program_name, data=data, params=params, future=future)
        )
        logger.info("Login required; %s is waiting for log_in()", program_name)

        if on_login_required is not None:
            result = on_login_required(True)
            if inspect.isawaitable(result):
                await result

        return await future

    async def _fetch_text(self, url: str) -> str:
        if not url.startswith(("http://", "https://")):
            url = f"{self.config.server_url}{url}"
        response = await self._http.get(url)
        return response.text

    def _update_user_name(self, payload: Any) -> None:
        field = USERNAME_FIELDS[self.config.server_type]
        if isinstance(payload, dict) and payload.get(field):
            self.state.user_name = str(payload[field])

    async def _append_request_log(self, response_text: str, program: str) -> None:
        log = response_text if self.config.debug else None

        source_code = ""
        generated_code = ""
        sas_work = None
        if log:
            source_code = parse_source_code(log)
            generated_code = parse_generated_code(log, self.config.server_type)
            sas_work = await parse_sas_work(log, self.config.server_type, self._fetch_text)

        self.state.append_request(
            SASjsRequest(
                service_link=program,
                timestamp=datetime.now(),
                log_file=log,
                source_code=source_code,
                generated_code=generated_code,
                sas_work=sas_work,
            )
        )

    # ------------------------------------------------------------------
    # Platform specific operations
    # ------------------------------------------------------------------

    def _require_viya(self) -> ViyaComputeClient:
        if self.config.server_type != ServerType.SASVIYA or self.viya is None:
            raise UnsupportedServerTypeError(
                "This operation is only supported on SAS Viya servers."
            )
        return self.viya

    def _require_sas9(self) -> SAS9ApiClient:
        if self.config.server_type != ServerType.SAS9 or self.sas9 is None:
            raise UnsupportedServerTypeError(
                "This operation is only supported on SAS9 servers."
            )
        return self.sas9

    async def execute_script_sas9(
        self,
        lines_of_code: Sequence[str],
        server_name: str,
        repository_name: str,
    ) -> str:
        return await self._require_sas9().execute_script(
            lines_of_code, server_name, repository_name
        )

    async def get_all_contexts(self, access_token: Optional[str] = None) -> List[Context]:
        return await self._require_viya().get_all_contexts(access_token)

    async def get_executable_contexts(
        self, access_token: Optional[str] = None
    ) -> List[Context]:
        return await self._require_viya().get_executable_contexts(access_token)

    async def create_session(self, context_name: str, access_token: str) -> Session:
        return await self._require_viya().create_session(context_name, access_token)

    async def execute_script_sas_viya(
        self,
        file_name: str,
        lines_of_code: Sequence[str],
        context_name: str,
        access_token: Optional[str] = None,
        session_id: Optional[str] = None,
        silent: bool = False,
    ) -> Optional[JobResult]:
        return await self._require_viya().execute_script(
            file_name, lines_of_code, context_name, access_token, session_id, silent
        )

    async def post_job(
        self,
        job_path: str,
        data: Optional[TableData] = None,
        access_token: Optional[str] = None,
    ) -> JobResult:
        return await self._require_viya().post_job(
            self.config.app_loc, job_path, data, access_token
        )

    async def get_auth_code(self, client_id: str) -> Optional[str]:
        self._require_viya()
        return await self.oauth.get_auth_code(client_id)

    async def get_access_token(
        self, client_id: str, client_secret: str, auth_code: str
    ) -> Dict[str, Any]:
        self._require_viya()
        return await self.oauth.get_access_token(client_id, client_secret, auth_code)

    async def refresh_tokens(
        self, client_id: str, client_secret: str, refresh_token: str
    ) -> Dict[str, Any]:
        self._require_viya()
        return await self.oauth.refresh_tokens(client_id, client_secret, refresh_token)

    async def delete_client(self, client_id: str, access_token: str) -> str:
        self._require_viya()
        return await self.oauth.delete_client(client_id, access_token)
