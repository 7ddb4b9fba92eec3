# SASjs Python Adapter
# File: responses.py
# Version: v2

"""Parsing of SAS program responses and logs.

SAS wraps program output differently depending on the server type and on
whether debug output was requested:

- SAS9 + debug: the log is returned as text with the JSON payload between
  ``>>weboutBEGIN<<`` and ``>>weboutEND<<``.
- Viya + debug: an HTML page whose iframe points at the JSON result.
- no debug: the body is the JSON payload.

``DECODERS`` maps ``(server_type, debug)`` to the coroutine that turns a raw
body into the payload.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from .config import ServerType
from .errors import MalformedResponseError, ServerLogError

logger = logging.getLogger(__name__)

WEBOUT_BEGIN = ">>weboutBEGIN<<"
WEBOUT_END = ">>weboutEND<<"

USERNAME_FIELDS = {
    ServerType.SAS9: "_METAUSER",
    ServerType.SASVIYA: "SYSUSERID",
}

GENERATED_CODE_MARKERS = {
    ServerType.SAS9: "MPRINT",
    ServerType.SASVIYA: "normal:",
}

_IFRAME_SRC_RE = re.compile(r'<iframe[^>]*\ssrc="([^"]*)"', re.IGNORECASE)
_LEADING_DIGIT_RE = re.compile(r"^\d")

FetchText = Callable[[str], Awaitable[str]]
Decoder = Callable[[str, FetchText], Awaitable[Any]]


# ---------------------------------------------------------------------------
# Log parsing
# ---------------------------------------------------------------------------


def parse_source_code(log: str) -> str:
    """Return the numbered source lines SAS echoes into the log."""

    def is_source_line(line: str) -> bool:
        return bool(_LEADING_DIGIT_RE.match(line.strip()[:10].lstrip()))

    return "\r\n".join(line for line in log.split("\n") if is_source_line(line))


def parse_generated_code(log: str, server_type: ServerType) -> str:
    """Return macro-generated code lines (``MPRINT`` on SAS9, ``normal:`` on Viya)."""
    marker = GENERATED_CODE_MARKERS[server_type]
    return "\r\n".join(
        line for line in log.split("\n") if line.strip().startswith(marker)
    )


def parse_sas9_response(text: str) -> str:
    """Cut the webout JSON out of a SAS9 debug response, or return ``""``."""
    if WEBOUT_BEGIN not in text:
        return ""
    return text.split(WEBOUT_BEGIN, 1)[1].split(WEBOUT_END, 1)[0]


def parse_sas9_error_response(text: str) -> str:
    """Return the 21 log lines centred on the first real error line."""
    lines = text.split("\n")
    first_error = -1
    for index, line in enumerate(lines):
        lowered = line.lower()
        if "error" in lowered and "this request completed with errors." not in lowered:
            first_error = index
            break

    window = []
    for i in range(first_error - 10, first_error + 11):
        window.append(lines[i] if 0 <= i < len(lines) else "")
    return ", ".join(window)


def extract_debug_url(text: str) -> Optional[str]:
    match = _IFRAME_SRC_RE.search(text or "")
    return match.group(1) if match else None


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as exc:
        raise MalformedResponseError(text) from exc


# ---------------------------------------------------------------------------
# Decoding strategies
# ---------------------------------------------------------------------------


async def decode_sas9_debug(text: str, fetch_text: FetchText) -> Any:
    segment = parse_sas9_response(text)
    if not segment:
        raise ServerLogError(parse_sas9_error_response(text))
    return _loads(segment)


async def decode_viya_debug(text: str, fetch_text: FetchText) -> Any:
    json_url = extract_debug_url(text)
    if not json_url:
        raise MalformedResponseError(text)
    return _loads(await fetch_text(json_url))


async def decode_plain(text: str, fetch_text: FetchText) -> Any:
    return _loads(text)


DECODERS: Dict[Tuple[ServerType, bool], Decoder] = {
    (ServerType.SAS9, True): decode_sas9_debug,
    (ServerType.SASVIYA, True): decode_viya_debug,
    (ServerType.SAS9, False): decode_plain,
    (ServerType.SASVIYA, False): decode_plain,
}


def get_decoder(server_type: ServerType, debug: bool) -> Decoder:
    return DECODERS[(server_type, bool(debug))]


async def parse_sas_work(
    text: str,
    server_type: ServerType,
    fetch_text: FetchText,
) -> Any:
    """Best-effort extraction of the ``WORK`` library listing from a debug response."""
    try:
        payload = await DECODERS[(server_type, True)](text, fetch_text)
    except Exception as exc:  # noqa: BLE001 - diagnostics only
        logger.debug("Could not extract WORK metadata: %s", exc)
        return None

    if isinstance(payload, dict):
        return payload.get("WORK")
    return None
