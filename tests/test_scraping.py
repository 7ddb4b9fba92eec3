# SASjs Python Adapter
# File: tests/test_scraping.py
# Version: v1

"""Tests for SASLogon page scraping and response markers."""

from __future__ import annotations

from sasjs_adapter.scraping import (
    AUTHORIZE_FORM_RE,
    extract_auth_code,
    extract_form_action,
    extract_form_inputs,
    extract_hidden_fields,
    is_authorize_form_required,
    is_login_required,
    is_login_success,
    needs_retry,
)

LOGIN_PAGE = """
<html><body>
<form id="fm1" class="fm-v" action="/SASLogon/login?service=x&amp;y=1" method="post">
  <input type="text" name="username" />
  <input type="hidden" name="lt" value="LT-42-abc" />
  <input type="hidden" name="execution" value="e1s1" />
  <input type="hidden" name="_eventId" value="submit" />
</form>
</body></html>
"""

AUTHORIZE_PAGE = """
<html><body>
<form id="application_authorization" action="/SASLogon/oauth/authorize" method="POST">
  <input name="X-Uaa-Csrf" type="hidden" value="tok123"/>
  <input type="hidden" value="openid" name="scope.0"/>
  <button type="submit" name="user_oauth_approval" value="true">Authorize</button>
</form>
</body></html>
"""


def test_login_form_action_is_unescaped() -> None:
    assert extract_form_action(LOGIN_PAGE) == "/SASLogon/login?service=x&y=1"
    assert is_login_required(LOGIN_PAGE) is True


def test_hidden_fields_are_collected() -> None:
    assert extract_hidden_fields(LOGIN_PAGE) == {
        "lt": "LT-42-abc",
        "execution": "e1s1",
        "_eventId": "submit",
    }


def test_authorize_form_inputs_ignore_attribute_order() -> None:
    assert is_authorize_form_required(AUTHORIZE_PAGE) is True
    assert extract_form_action(AUTHORIZE_PAGE, AUTHORIZE_FORM_RE) == "/SASLogon/oauth/authorize"
    assert extract_form_inputs(AUTHORIZE_PAGE) == {"X-Uaa-Csrf": "tok123", "scope.0": "openid"}


def test_form_inputs_empty_without_matching_form() -> None:
    assert extract_form_inputs(LOGIN_PAGE) == {}


def test_auth_code_from_infobox() -> None:
    page = '<div class="infobox big"><h4> Ab3dE </h4></div>'
    assert extract_auth_code(page) == "Ab3dE"
    assert extract_auth_code("<p>nothing</p>") is None


def test_login_success_marker() -> None:
    assert is_login_success("<h3>You have signed in.</h3>") is True
    assert is_login_success(LOGIN_PAGE) is False
    assert is_login_required('{"status": "ok"}') is False


def test_needs_retry_markers() -> None:
    csrf = '{"errorCode":403,"message":"_csrf missing","details":"X-CSRF-TOKEN"}'
    forbidden = '{"status":403,"error":"Forbidden"}'
    auth_retry = '{"status":449,"message":"Authentication success, retry original request"}'

    assert needs_retry(csrf) is True
    assert needs_retry(forbidden) is True
    assert needs_retry(auth_retry) is True
    assert needs_retry('{"status":403}') is False
    assert needs_retry("") is False
