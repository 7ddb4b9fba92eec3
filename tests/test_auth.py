# SASjs Python Adapter
# File: tests/test_auth.py
# Version: v1

"""Tests for the SASLogon handshake and the OAuth2 grants."""

from __future__ import annotations

import base64
from typing import Dict, List
from urllib.parse import parse_qs

import httpx
import pytest

from sasjs_adapter import ServerType
from sasjs_adapter.errors import SASjsHTTPError, UnsupportedServerTypeError

LOGIN_PAGE = """
<html><body>
<form id="fm1" action="/SASLogon/login.do" method="post">
  <input type="hidden" name="lt" value="LT-1" />
  <input type="hidden" name="execution" value="e1s1" />
</form>
</body></html>
"""

AUTHORIZE_PAGE = """
<html><body>
<form id="application_authorization" action="/SASLogon/oauth/authorize" method="POST">
  <input name="X-Uaa-Csrf" type="hidden" value="tok123"/>
</form>
</body></html>
"""

SIGNED_IN = "<h3>You have signed in.</h3>"


def _form(request: httpx.Request) -> Dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class _LogonServer:
    """Tiny SASLogon stand-in that records the calls it receives."""

    def __init__(self, after_login: str = SIGNED_IN, signed_in: bool = False) -> None:
        self.after_login = after_login
        self.signed_in = signed_in
        self.calls: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path

        if request.method == "GET" and path == "/SASLogon/login":
            return httpx.Response(200, text=SIGNED_IN if self.signed_in else LOGIN_PAGE)

        if request.method == "POST" and path.startswith("/SASLogon/login"):
            if self.after_login == SIGNED_IN:
                self.signed_in = True
            return httpx.Response(200, text=self.after_login)

        if request.method == "POST" and path == "/SASLogon/oauth/authorize":
            self.signed_in = True
            return httpx.Response(200, text="<p>approved</p>")

        if path.startswith("/SASLogon/logout"):
            self.signed_in = False
            return httpx.Response(200, text="bye")

        return httpx.Response(404, text="not found")

    def posts(self) -> List[httpx.Request]:
        return [c for c in self.calls if c.method == "POST"]


@pytest.mark.asyncio
async def test_log_in_posts_credentials_with_hidden_fields(make_sasjs) -> None:
    server = _LogonServer()
    sasjs = make_sasjs(server)

    status = await sasjs.log_in("sasdemo", "Orion123")

    assert status.is_logged_in is True
    assert status.user_name == "sasdemo"
    assert sasjs.get_user_name() == "sasdemo"

    (post,) = server.posts()
    assert post.url.path == "/SASLogon/login.do"
    assert _form(post) == {
        "_service": "default",
        "username": "sasdemo",
        "password": "Orion123",
        "lt": "LT-1",
        "execution": "e1s1",
    }


@pytest.mark.asyncio
async def test_log_in_on_sas9_drops_do_suffix(make_sasjs) -> None:
    server = _LogonServer()
    sasjs = make_sasjs(server, server_type=ServerType.SAS9)

    status = await sasjs.log_in("sasdemo", "Orion123")

    assert status.is_logged_in is True
    (post,) = server.posts()
    assert post.url.path == "/SASLogon/login"


@pytest.mark.asyncio
async def test_log_in_skips_form_when_already_signed_in(make_sasjs) -> None:
    server = _LogonServer(signed_in=True)
    sasjs = make_sasjs(server)

    status = await sasjs.log_in("sasdemo", "Orion123")

    assert status.is_logged_in is True
    assert server.posts() == []


@pytest.mark.asyncio
async def test_log_in_approves_authorize_form(make_sasjs) -> None:
    server = _LogonServer(after_login=AUTHORIZE_PAGE)
    sasjs = make_sasjs(server)

    status = await sasjs.log_in("sasdemo", "Orion123")

    assert status.is_logged_in is True
    login_post, approve_post = server.posts()
    assert approve_post.url.path == "/SASLogon/oauth/authorize"
    assert _form(approve_post) == {"X-Uaa-Csrf": "tok123", "user_oauth_approval": "true"}


@pytest.mark.asyncio
async def test_failed_log_in_reports_not_logged_in(make_sasjs) -> None:
    server = _LogonServer(after_login="<p>Invalid credentials</p>")
    sasjs = make_sasjs(server)

    status = await sasjs.log_in("sasdemo", "wrong")

    assert status.is_logged_in is False


@pytest.mark.asyncio
async def test_check_session_and_log_out(make_sasjs) -> None:
    server = _LogonServer(signed_in=True)
    sasjs = make_sasjs(server)

    assert (await sasjs.check_session()).is_logged_in is True
    assert await sasjs.log_out() is True
    assert server.calls[-1].url.path == "/SASLogon/logout.do"
    assert (await sasjs.check_session()).is_logged_in is False


@pytest.mark.asyncio
async def test_access_token_uses_basic_auth(make_sasjs) -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"access_token": "a", "refresh_token": "r"})

    sasjs = make_sasjs(handler)

    tokens = await sasjs.get_access_token("cid", "secret", "code-1")

    assert tokens == {"access_token": "a", "refresh_token": "r"}
    (request,) = seen
    assert request.url.path == "/SASLogon/oauth/token"
    expected = base64.b64encode(b"cid:secret").decode("ascii")
    assert request.headers["Authorization"] == f"Basic {expected}"
    assert _form(request) == {"grant_type": "authorization_code", "code": "code-1"}


@pytest.mark.asyncio
async def test_refresh_tokens_sends_refresh_grant(make_sasjs) -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"access_token": "a2"})

    sasjs = make_sasjs(handler)

    assert await sasjs.refresh_tokens("cid", "secret", "r1") == {"access_token": "a2"}
    assert _form(seen[0]) == {"grant_type": "refresh_token", "refresh_token": "r1"}


@pytest.mark.asyncio
async def test_token_error_raises_http_error(make_sasjs) -> None:
    sasjs = make_sasjs(lambda request: httpx.Response(401, text="bad client"))

    with pytest.raises(SASjsHTTPError) as excinfo:
        await sasjs.get_access_token("cid", "secret", "code-1")

    assert excinfo.value.status == 401
    assert excinfo.value.body == "bad client"


@pytest.mark.asyncio
async def test_get_auth_code_reads_infobox(make_sasjs) -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text='<div class="infobox"><h4>XyZ12</h4></div>')

    sasjs = make_sasjs(handler)

    assert await sasjs.get_auth_code("cid") == "XyZ12"
    assert seen[0].url.params["client_id"] == "cid"
    assert seen[0].url.params["response_type"] == "code"


@pytest.mark.asyncio
async def test_delete_client_sends_bearer_token(make_sasjs) -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="deleted")

    sasjs = make_sasjs(handler)

    assert await sasjs.delete_client("cid", "tok") == "deleted"
    assert seen[0].method == "DELETE"
    assert seen[0].url.path == "/oauth/clients/cid"
    assert seen[0].headers["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
async def test_oauth_is_viya_only(make_sasjs) -> None:
    sasjs = make_sasjs(lambda request: httpx.Response(200), server_type=ServerType.SAS9)

    with pytest.raises(UnsupportedServerTypeError):
        await sasjs.get_auth_code("cid")
