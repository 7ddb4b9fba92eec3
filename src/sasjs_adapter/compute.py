# SASjs Python Adapter
# File: compute.py
# Version: v5
"""Clients for running code directly on SAS servers.

Implements:

- ViyaComputeClient: compute contexts, sessions and jobs on SAS Viya, plus
  job definitions run through the job execution service
- SAS9ApiClient: command execution against a SAS9 workspace server
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
import asyncio
import logging
import posixpath

import httpx

from .config import SASjsConfig
from .errors import (
    ContextNotFoundError,
    JobNotFoundError,
    MalformedResponseError,
    SASjsHTTPError,
)
from .models import NON_TERMINAL_JOB_STATES, Context, Job, JobResult, Link, Session
from .serializer import convert_to_csv
from .state import ClientState

logger = logging.getLogger(__name__)

# 100 polls at the default 3 s interval is roughly five minutes.
MAX_POLL_COUNT = 100
LOG_LINE_LIMIT = 100000

SYSUSERID_PROBE = ["%put &=sysuserid;"]
SYSUSERID_PREFIX = "SYSUSERID="


def _poll_timed_out(job_status: str) -> bool:
    return job_status in NON_TERMINAL_JOB_STATES and job_status != ""


def _find_sys_user_id(log: Any) -> str:
    items = log.get("items") if isinstance(log, dict) else None
    for item in items or []:
        line = item.get("line", "") if isinstance(item, dict) else ""
        if line.startswith(SYSUSERID_PREFIX):
            return line[len(SYSUSERID_PREFIX):]
    return ""


@dataclass
class ViyaComputeClient:
    """Wrapper around the SAS Viya compute, folders, files and job execution APIs."""

    config: SASjsConfig
    http: httpx.AsyncClient
    state: ClientState
    poll_interval: float = 3.0
    job_map: Dict[str, List[Job]] = field(default_factory=dict)

    @property
    def base_url(self) -> str:
        return self.config.server_url

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _headers(self, access_token: Optional[str]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        if self.state.csrf:
            headers[self.state.csrf.header_name] = self.state.csrf.value
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        access_token: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        raise_for_status: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, retrying once with the CSRF token a 403 hands out."""
        request_headers = self._headers(access_token)
        request_headers.update(headers or {})

        response = await self.http.request(method, url, headers=request_headers, **kwargs)

        token = self.state.harvest_csrf(response)
        if token is not None:
            request_headers[token.header_name] = token.value
            response = await self.http.request(
                method, url, headers=request_headers, **kwargs
            )

        if raise_for_status and response.is_error:
            raise SASjsHTTPError(
                response.status_code, response.text, url, dict(response.headers)
            )

        return response

    async def _request_json(
        self,
        method: str,
        url: str,
        access_token: Optional[str] = None,
        **kwargs: Any,
    ) -> Any:
        response = await self._request(method, url, access_token, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(response.text) from exc

    async def _fetch_log(self, link: Link, access_token: Optional[str]) -> Any:
        response = await self._request(
            "GET",
            f"{self.base_url}{link.href}",
            access_token,
            params={"limit": LOG_LINE_LIMIT},
        )
        try:
            return response.json()
        except ValueError:
            return response.text

    # ------------------------------------------------------------------
    # Contexts and sessions
    # ------------------------------------------------------------------

    async def get_all_contexts(self, access_token: Optional[str] = None) -> List[Context]:
        """List the compute contexts defined on the server."""
        data = await self._request_json(
            "GET", f"{self.base_url}/compute/contexts", access_token
        )
        raw_items = data.get("items") if isinstance(data, dict) else None

        contexts: List[Context] = []
        if isinstance(raw_items, list):
            for item in raw_items:
                if isinstance(item, dict):
                    contexts.append(Context.from_dict(item))
        return contexts

    async def get_executable_contexts(
        self, access_token: Optional[str] = None
    ) -> List[Context]:
        """Return the contexts this user can actually run code in.

        A tiny probe script is run in every context; contexts whose probe
        fails or does not complete are left out.
        """
        contexts = await self.get_all_contexts(access_token)

        results = await asyncio.gather(
            *(
                self._execute_in_context(
                    context,
                    f"test-{context.name}",
                    SYSUSERID_PROBE,
                    access_token,
                    silent=True,
                )
                for context in contexts
            ),
            return_exceptions=True,
        )

        executable: List[Context] = []
        for context, result in zip(contexts, results):
            if isinstance(result, BaseException):
                logger.debug("Probe failed in context %s: %s", context.name, result)
                continue
            if result.job_status != "completed":
                continue

            executable.append(
                Context(
                    id=context.id,
                    name=context.name,
                    version=context.version,
                    created_by=context.created_by,
                    attributes={"sysUserId": _find_sys_user_id(result.log)},
                )
            )

        return executable

    async def _find_context(
        self, context_name: str, access_token: Optional[str]
    ) -> Optional[Context]:
        contexts = await self.get_all_contexts(access_token)
        return next((c for c in contexts if c.name == context_name), None)

    async def _create_session(
        self, context: Context, access_token: Optional[str]
    ) -> Session:
        data = await self._request_json(
            "POST",
            f"{self.base_url}/compute/contexts/{context.id}/sessions",
            access_token,
        )
        return Session(
            id=str(data.get("id", "")),
            context_name=context.name,
            links=Job.from_dict(data).links,
            raw=data,
        )

    async def create_session(
        self, context_name: str, access_token: Optional[str] = None
    ) -> Session:
        context = await self._find_context(context_name, access_token)
        if context is None:
            raise ContextNotFoundError(context_name)
        return await self._create_session(context, access_token)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def execute_script(
        self,
        file_name: str,
        lines_of_code: Sequence[str],
        context_name: str,
        access_token: Optional[str] = None,
        session_id: Optional[str] = None,
        silent: bool = False,
    ) -> Optional[JobResult]:
        """Run code in a compute session and return its final state and log.

        Returns None when ``context_name`` does not exist.
        """
        context = await self._find_context(context_name, access_token)
        if context is None:
            logger.error(
                "Unable to find execution context %s. "
                "Please check the context name and try again.",
                context_name,
            )
            return None

        return await self._execute_in_context(
            context, file_name, lines_of_code, access_token, session_id, silent
        )

    async def _execute_in_context(
        self,
        context: Context,
        file_name: str,
        lines_of_code: Sequence[str],
        access_token: Optional[str] = None,
        session_id: Optional[str] = None,
        silent: bool = False,
    ) -> JobResult:
        if not session_id:
            session_id = (await self._create_session(context, access_token)).id

        data = await self._request_json(
            "POST",
            f"{self.base_url}/compute/sessions/{session_id}/jobs",
            access_token,
            json={
                "name": file_name,
                "description": "Powered by SASjs",
                "code": list(lines_of_code),
            },
        )
        job = Job.from_dict(data, code=list(lines_of_code))

        if not silent:
            logger.info("Job has been submitted for %s", file_name)
            state_link = job.link("state")
            if state_link:
                logger.info(
                    "You can monitor the job progress at %s%s",
                    self.base_url,
                    state_link.href,
                )

        job_status = await self.poll_job_state(job, access_token, silent)

        log = None
        log_link = job.link("log")
        if log_link:
            log = await self._fetch_log(log_link, access_token)

        return JobResult(
            job_status=job_status, log=log, timed_out=_poll_timed_out(job_status)
        )

    async def poll_job_state(
        self,
        job: Job,
        access_token: Optional[str] = None,
        silent: bool = False,
    ) -> str:
        """Poll the job's state link until it leaves pending/running.

        Gives up after MAX_POLL_COUNT polls and returns whatever state was
        seen last.
        """
        state_link = job.link("state")
        if state_link is None:
            return ""

        url = f"{self.base_url}{state_link.href}"
        job_state = ""

        for _ in range(MAX_POLL_COUNT):
            await asyncio.sleep(self.poll_interval)

            if not silent:
                logger.info("Polling job status...")

            # An error body is read as a terminal state, not raised.
            response = await self._request(
                "GET", url, access_token, raise_for_status=False
            )
            if response.is_error:
                logger.warning(
                    "State request for job %s returned HTTP %s",
                    job.name,
                    response.status_code,
                )
            job_state = response.text.strip()

            if not silent:
                logger.info("Current state: %s", job_state)

            if job_state not in NON_TERMINAL_JOB_STATES:
                return job_state

        logger.warning(
            "Stopped polling job %s after %s polls; last state was '%s'",
            job.name,
            MAX_POLL_COUNT,
            job_state,
        )
        return job_state

    # ------------------------------------------------------------------
    # Job execution service (job definitions stored in folders)
    # ------------------------------------------------------------------

    async def populate_job_map(
        self, folder_name: str, access_token: Optional[str] = None
    ) -> Dict[str, List[Job]]:
        """Index job definitions under ``folder_name`` and its direct sub-folders.

        Keys are sub-folder names; jobs at the root are stored under ``""``.
        """
        folder = await self._request_json(
            "GET",
            f"{self.base_url}/folders/folders/@item",
            access_token,
            params={"path": folder_name},
        )
        members = await self._request_json(
            "GET",
            f"{self.base_url}/folders/folders/{folder['id']}/members",
            access_token,
        )
        items = [i for i in members.get("items", []) if isinstance(i, dict)]

        def job_definitions(entries: Iterable[Dict[str, Any]]) -> List[Job]:
            return [
                Job.from_dict(e) for e in entries if e.get("contentType") == "jobDefinition"
            ]

        async def load_subfolder(member: Dict[str, Any]) -> tuple[str, List[Job]]:
            detail = await self._request_json(
                "GET",
                f"{self.base_url}/folders/folders/@item",
                access_token,
                params={"path": f"{folder_name}/{member['name']}"},
            )
            members_link = next(
                (l for l in detail.get("links", []) if l.get("rel") == "members"), None
            )
            if members_link is None:
                return member["name"], []

            contents = await self._request_json(
                "GET", f"{self.base_url}{members_link['href']}", access_token
            )
            return member["name"], job_definitions(contents.get("items", []))

        job_map: Dict[str, List[Job]] = {"": job_definitions(items)}
        subfolders = await asyncio.gather(
            *(load_subfolder(m) for m in items if m.get("contentType") == "folder")
        )
        job_map.update(dict(subfolders))

        self.job_map = job_map
        return job_map

    async def upload_tables(
        self,
        data: Mapping[str, Sequence[Mapping[str, Any]]],
        access_token: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Upload every table as a CSV file; returns ``[{"tableName", "file"}]``."""
        uploaded: List[Dict[str, Any]] = []
        for table_name, table in data.items():
            csv, error = convert_to_csv(table)
            if error is not None:
                raise error

            file_info = await self._request_json(
                "POST",
                f"{self.base_url}/files/files",
                access_token,
                content=csv.encode("utf-8"),
                headers={"Content-Type": "text/csv"},
            )
            uploaded.append({"tableName": table_name, "file": file_info})
        return uploaded

    async def post_job(
        self,
        app_loc: str,
        job_path: str,
        data: Optional[Mapping[str, Sequence[Mapping[str, Any]]]] = None,
        access_token: Optional[str] = None,
        context_name: str = "SharedCompute",
    ) -> JobResult:
        """Run the job definition at ``app_loc/job_path`` with ``data`` attached."""
        if not self.job_map:
            await self.populate_job_map(app_loc, access_token)

        job_name = posixpath.basename(job_path)
        job_folder = posixpath.dirname(job_path)
        job_entry = next(
            (j for j in self.job_map.get(job_folder, []) if j.name == job_name), None
        )
        definition_link = job_entry.link("getResource") if job_entry else None
        if definition_link is None:
            raise JobNotFoundError(job_path, app_loc)

        files = await self.upload_tables(data, access_token) if data else []

        job_definition = await self._request_json(
            "GET", f"{self.base_url}{definition_link.href}", access_token
        )

        arguments: Dict[str, Any] = {
            "_contextName": context_name,
            "_program": f"{app_loc}/{job_path}",
            "_webin_file_count": len(files),
            "_debug": True,
        }
        for index, file_info in enumerate(files, start=1):
            arguments[f"_webin_fileuri{index}"] = f"/files/files/{file_info['file']['id']}"
            arguments[f"_webin_name{index}"] = file_info["tableName"]

        posted = await self._request_json(
            "POST",
            f"{self.base_url}/jobExecution/jobs",
            access_token,
            json={
                "name": f"exec-{job_name}",
                "description": "Powered by SASjs",
                "jobDefinition": job_definition,
                "arguments": arguments,
            },
        )
        job = Job.from_dict(posted)

        job_status = await self.poll_job_state(job, access_token)

        log = None
        log_link = job.link("log")
        if log_link:
            log = await self._fetch_log(log_link, access_token)

        return JobResult(
            job_status=job_status, log=log, timed_out=_poll_timed_out(job_status)
        )


@dataclass
class SAS9ApiClient:
    """Runs code through the SAS9 workspace server REST endpoint."""

    config: SASjsConfig
    http: httpx.AsyncClient

    async def execute_script(
        self,
        lines_of_code: Sequence[str],
        server_name: str,
        repository_name: str,
    ) -> str:
        payload = "\n".join(lines_of_code)
        response = await self.http.put(
            f"{self.config.server_url}/sas/servers/{server_name}/cmd",
            params={"repositoryName": repository_name},
            headers={"Accept": "application/json"},
            content=f"command={payload}",
        )
        return response.text
