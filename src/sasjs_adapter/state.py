# SASjs Python Adapter
# File: state.py
# Version: v1

"""Mutable per-client state shared by the request engine and its helpers."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence

from .models import CsrfToken, SASjsRequest

MAX_REQUEST_LOG_ENTRIES = 20

# Response header naming the header that carries the CSRF token.
CSRF_HEADER_POINTER = "X-CSRF-HEADER"


@dataclass
class WaitingRequest:
    """A program call parked until the user logs in."""

    program_name: str
    data: Optional[Mapping[str, Sequence[Mapping[str, Any]]]]
    params: Optional[Dict[str, Any]]
    future: "asyncio.Future[Any]"


@dataclass
class ClientState:
    """Everything a SASjs instance remembers between calls.

    The CSRF token is read each time a request is built, so a token harvested
    from one response is used by the next request sent.
    """

    csrf: Optional[CsrfToken] = None
    user_name: str = ""
    waiting_requests: List[WaitingRequest] = field(default_factory=list)
    requests: Deque[SASjsRequest] = field(
        default_factory=lambda: deque(maxlen=MAX_REQUEST_LOG_ENTRIES)
    )

    def append_request(self, entry: SASjsRequest) -> None:
        # deque(maxlen=...) drops the oldest entry on overflow
        self.requests.append(entry)

    def take_waiting_requests(self) -> List[WaitingRequest]:
        waiting, self.waiting_requests = self.waiting_requests, []
        return waiting

    def harvest_csrf(self, response: Any) -> Optional[CsrfToken]:
        """Cache the CSRF pair advertised by a 403 response, if any."""
        if getattr(response, "status_code", None) != 403:
            return None

        header_name = response.headers.get(CSRF_HEADER_POINTER)
        if not header_name:
            return None

        token = CsrfToken(header_name=header_name, value=response.headers.get(header_name) or "")
        self.csrf = token
        return token
