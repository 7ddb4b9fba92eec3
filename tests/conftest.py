# SASjs Python Adapter
# File: tests/conftest.py
# Version: v1

"""Shared fixtures: a SASjs client wired to an httpx.MockTransport."""

from __future__ import annotations

import re
from typing import Callable, List, Optional, Tuple

import httpx
import pytest

from sasjs_adapter import SASjs, SASjsConfig

SERVER_URL = "https://sas.example.com"

_NAME_RE = re.compile(rb'name="([^"]*)"')
_FILENAME_RE = re.compile(rb'filename="([^"]*)"')
_CONTENT_TYPE_RE = re.compile(rb"Content-Type: ([^\r\n]+)", re.IGNORECASE)

# (field name, filename or None, content type or None, value)
FormField = Tuple[str, Optional[str], Optional[str], str]


def _parse_multipart(request: httpx.Request) -> List[FormField]:
    content_type = request.headers.get("content-type", "")
    if "boundary=" not in content_type:
        return []

    boundary = content_type.split("boundary=", 1)[1].encode("ascii")
    fields: List[FormField] = []
    for piece in request.content.split(b"--" + boundary):
        if not piece or piece.startswith(b"--"):
            continue
        headers, _, body = piece[2:].partition(b"\r\n\r\n")
        name = _NAME_RE.search(headers)
        filename = _FILENAME_RE.search(headers)
        part_type = _CONTENT_TYPE_RE.search(headers)
        fields.append(
            (
                name.group(1).decode() if name else "",
                filename.group(1).decode() if filename else None,
                part_type.group(1).decode() if part_type else None,
                body[:-2].decode("utf-8"),
            )
        )
    return fields


@pytest.fixture
def multipart() -> Callable[[httpx.Request], List[FormField]]:
    return _parse_multipart


@pytest.fixture
def make_sasjs() -> Callable[..., SASjs]:
    """Build a SASjs client whose HTTP traffic goes to ``handler``."""

    def factory(handler: Callable[[httpx.Request], httpx.Response], **overrides) -> SASjs:
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(handler), follow_redirects=True
        )
        config = SASjsConfig(server_url=SERVER_URL, poll_interval_seconds=0.0)
        return SASjs(config, http_client=http, **overrides)

    return factory
