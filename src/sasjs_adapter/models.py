# SASjs Python Adapter
# File: models.py
# Version: v2

"""Domain models used by the SASjs adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

# Job states that keep the poller going. Anything else is terminal.
NON_TERMINAL_JOB_STATES = frozenset({"", "pending", "running"})


@dataclass
class CsrfToken:
    """Header name / value pair a SAS server asks for after a 403."""

    header_name: str
    value: str


@dataclass
class Link:
    """A REST link as returned by the Viya APIs."""

    rel: str
    href: str
    method: Optional[str] = None
    uri: Optional[str] = None

    @classmethod
    def from_dict(cls, item: Dict[str, Any]) -> "Link":
        return cls(
            rel=str(item.get("rel", "")),
            href=str(item.get("href", "")),
            method=item.get("method"),
            uri=item.get("uri"),
        )


def _parse_links(raw: Any) -> List[Link]:
    if not isinstance(raw, list):
        return []
    return [Link.from_dict(item) for item in raw if isinstance(item, dict)]


@dataclass
class Context:
    """A Viya compute context, reduced to the fields the adapter uses."""

    id: str
    name: str
    version: Optional[int] = None
    created_by: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, item: Dict[str, Any]) -> "Context":
        return cls(
            id=str(item.get("id", "")),
            name=str(item.get("name", "")),
            version=item.get("version"),
            created_by=item.get("createdBy"),
        )


@dataclass
class Session:
    """A live compute session bound to one context."""

    id: str
    context_name: Optional[str] = None
    links: List[Link] = field(default_factory=list)

    # Raw JSON payload from the API, for debugging / advanced use.
    raw: Optional[Dict[str, Any]] = None


@dataclass
class Job:
    """One code submission against a session or the job execution service."""

    id: str
    name: str
    links: List[Link] = field(default_factory=list)
    code: List[str] = field(default_factory=list)
    state: str = ""

    # Raw JSON payload from the API, for debugging / advanced use.
    raw: Optional[Dict[str, Any]] = None

    def link(self, rel: str) -> Optional[Link]:
        return next((l for l in self.links if l.rel == rel), None)

    @classmethod
    def from_dict(cls, item: Dict[str, Any], code: Optional[List[str]] = None) -> "Job":
        return cls(
            id=str(item.get("id", "")),
            name=str(item.get("name", "")),
            links=_parse_links(item.get("links")),
            code=list(code or []),
            state=str(item.get("state", "") or ""),
            raw=item,
        )


@dataclass
class JobResult:
    """Outcome of an executed script.

    ``timed_out`` is True when polling hit its ceiling while the job was still
    in a non-terminal state; ``job_status`` then holds the last state seen.
    """

    job_status: str
    log: Any = None
    timed_out: bool = False


@dataclass
class LoginStatus:
    is_logged_in: bool
    user_name: str


@dataclass
class SASjsRequest:
    """One entry of the request log kept for debugging front-ends."""

    service_link: str
    timestamp: datetime
    log_file: Optional[str] = None
    source_code: str = ""
    generated_code: str = ""
    sas_work: Any = None
