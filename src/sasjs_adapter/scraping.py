# SASjs Python Adapter
# File: scraping.py
# Version: v2

"""Regex based scraping of SASLogon HTML pages and response markers.

SASLogon does not offer a machine readable login API, so the adapter reads
the forms it renders. Everything that depends on SASLogon markup lives here so
it can be tested without a server.
"""

from __future__ import annotations

import html
import re
from typing import Dict, Optional, Pattern

LOGIN_FORM_RE = re.compile(r'<form.+action="(.*Logon[^"]*).*>')
AUTHORIZE_FORM_RE = re.compile(r'<form.+action="(.*Logon/oauth/authorize[^"]*).*>')
LOGIN_SUCCESS_RE = re.compile(r"You have signed in")

_FORM_BLOCK_RE = re.compile(r"<form\b[^>]*>.*?</form>", re.IGNORECASE | re.DOTALL)
_INPUT_RE = re.compile(r"<input\b[^>]*>", re.IGNORECASE)
_HIDDEN_INPUT_RE = re.compile(r'<input.*"hidden"[^>]*>')
_NAME_VALUE_RE = re.compile(r'name="([^"]*)"\svalue="([^"]*)')
_ATTR_RE = re.compile(r'([\w:-]+)\s*=\s*"([^"]*)"')
_INFOBOX_CODE_RE = re.compile(
    r'class="[^"]*\binfobox\b[^"]*"[^>]*>.*?<h4[^>]*>(.*?)</h4>',
    re.IGNORECASE | re.DOTALL,
)
_TAG_RE = re.compile(r"<[^>]+>")


def extract_form_action(text: str, pattern: Pattern[str] = LOGIN_FORM_RE) -> Optional[str]:
    """Return the action URL of the first form matching ``pattern``."""
    match = pattern.search(text or "")
    if not match:
        return None
    return html.unescape(match.group(1))


def extract_hidden_fields(text: str) -> Dict[str, str]:
    """Collect ``name -> value`` for every hidden input on the page."""
    fields: Dict[str, str] = {}
    for input_tag in _HIDDEN_INPUT_RE.findall(text or ""):
        match = _NAME_VALUE_RE.search(input_tag)
        if match:
            fields[match.group(1)] = html.unescape(match.group(2))
    return fields


def extract_form_inputs(text: str, pattern: Pattern[str] = AUTHORIZE_FORM_RE) -> Dict[str, str]:
    """Collect every named input of the form whose action matches ``pattern``.

    Attribute order does not matter here, unlike ``extract_hidden_fields``.
    """
    for block in _FORM_BLOCK_RE.findall(text or ""):
        if not pattern.search(block):
            continue
        fields: Dict[str, str] = {}
        for input_tag in _INPUT_RE.findall(block):
            attrs = dict(_ATTR_RE.findall(input_tag))
            name = attrs.get("name")
            if name:
                fields[name] = html.unescape(attrs.get("value", ""))
        return fields
    return {}


def extract_auth_code(text: str) -> Optional[str]:
    """Read the authorization code SASLogon prints in ``.infobox h4``."""
    match = _INFOBOX_CODE_RE.search(text or "")
    if not match:
        return None
    code = html.unescape(_TAG_RE.sub("", match.group(1))).strip()
    return code or None


def is_login_required(text: str) -> bool:
    return bool(LOGIN_FORM_RE.search(text or ""))


def is_authorize_form_required(text: str) -> bool:
    return bool(AUTHORIZE_FORM_RE.search(text or ""))


def is_login_success(text: str) -> bool:
    return bool(LOGIN_SUCCESS_RE.search(text or ""))


def needs_retry(text: str) -> bool:
    """True when the server says "try again" after a CSRF or auth hiccup.

    Different SAS releases phrase this differently; any of the known markers
    counts.
    """
    text = text or ""
    return (
        (
            '"errorCode":403' in text
            and "_csrf" in text
            and "X-CSRF-TOKEN" in text
        )
        or ('"status":403' in text and '"error":"Forbidden"' in text)
        or (
            '"status":449' in text
            and "Authentication success, retry original request" in text
        )
    )
