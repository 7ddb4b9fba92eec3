# SASjs Python Adapter
# File: auth.py
# Version: v3

"""SASLogon login handshake and OAuth2 grants for SAS servers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import urljoin
import base64
import logging

import httpx

from .config import SASjsConfig, ServerType
from .errors import MalformedResponseError, SASjsHTTPError
from .models import LoginStatus
from .scraping import (
    AUTHORIZE_FORM_RE,
    LOGIN_FORM_RE,
    extract_auth_code,
    extract_form_action,
    extract_form_inputs,
    extract_hidden_fields,
    is_authorize_form_required,
    is_login_success,
)
from .state import ClientState

logger = logging.getLogger(__name__)


async def submit_authorize_form(
    http: httpx.AsyncClient,
    page: str,
    server_url: str,
) -> Optional[str]:
    """Approve the SASLogon OAuth authorization form found on ``page``.

    Returns the text of the response, or None when the page holds no
    authorization form.
    """
    action = extract_form_action(page, AUTHORIZE_FORM_RE)
    if not action:
        return None

    fields = extract_form_inputs(page, AUTHORIZE_FORM_RE)
    fields["user_oauth_approval"] = "true"

    auth_url = urljoin(f"{server_url}/", action)
    response = await http.post(auth_url, data=fields)
    return response.text


@dataclass
class SASLogonClient:
    """Cookie based SASLogon session handling.

    Moves from anonymous to authenticated by replaying the SASLogon web form:
    the login page is fetched to discover the real form action and its hidden
    fields, and the credentials are posted alongside them. Some servers then
    show an OAuth approval page which is approved automatically.
    """

    config: SASjsConfig
    http: httpx.AsyncClient
    state: ClientState
    login_url: str = field(init=False, default="")

    def __post_init__(self) -> None:
        self.reset_login_url()

    def reset_login_url(self) -> None:
        self.login_url = f"{self.config.server_url}/SASLogon/login"

    async def check_session(self) -> LoginStatus:
        """Probe SASLogon and report whether the cookie session is signed in."""
        response = await self.http.get(self.login_url.replace(".do", ""))
        return LoginStatus(
            is_logged_in=is_login_success(response.text),
            user_name=self.state.user_name,
        )

    def _set_login_url(self, action: str) -> None:
        path = action.split("?", 1)[0]
        if not path.startswith("/"):
            return

        login_url = f"{self.config.server_url}{path}"
        if self.config.server_type == ServerType.SAS9:
            login_url = login_url.replace(".do", "")
        self.login_url = login_url

    async def get_login_form(self) -> Dict[str, str]:
        """Fetch the login page and return its hidden fields.

        Also updates ``login_url`` from the form action. An empty dict means
        no login form was found.
        """
        response = await self.http.get(self.login_url)
        page = response.text

        action = extract_form_action(page, LOGIN_FORM_RE)
        if action is None:
            return {}

        self._set_login_url(action)
        return extract_hidden_fields(page)

    async def log_in(self, username: str, password: str) -> LoginStatus:
        self.state.user_name = username

        status = await self.check_session()
        if status.is_logged_in:
            return status

        login_params: Dict[str, Any] = {
            "_service": "default",
            "username": username,
            "password": password,
        }
        login_params.update(await self.get_login_form())

        response = await self.http.post(self.login_url, data=login_params)
        page = response.text

        logged_in = False
        if is_authorize_form_required(page):
            await submit_authorize_form(self.http, page, self.config.server_url)
        else:
            logged_in = is_login_success(page)

        if not logged_in:
            logged_in = (await self.check_session()).is_logged_in

        if logged_in:
            logger.info("Logged in to %s as %s", self.config.server_url, username)
        else:
            logger.warning("Login to %s failed for %s", self.config.server_url, username)

        return LoginStatus(is_logged_in=logged_in, user_name=self.state.user_name)

    async def log_out(self) -> bool:
        await self.http.get(f"{self.config.server_url}{self.config.logout_path}")
        return True


@dataclass
class OAuthClient:
    """OAuth2 client for the SAS Viya SASLogon authorization server.

    Supports the authorization-code and refresh-token grants. Client
    credentials are sent via HTTP Basic authentication and the body only
    contains the grant parameters.
    """

    config: SASjsConfig
    http: httpx.AsyncClient

    @property
    def token_url(self) -> str:
        return f"{self.config.server_url}/SASLogon/oauth/token"

    @staticmethod
    def _basic_auth_headers(client_id: str, client_secret: str) -> Dict[str, str]:
        # Build HTTP Basic Authorization header: base64(client_id:client_secret)
        raw_credentials = f"{client_id}:{client_secret}"
        basic_token = base64.b64encode(raw_credentials.encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {basic_token}"}

    async def get_auth_code(self, client_id: str) -> Optional[str]:
        """Run the browser side of the authorization-code flow.

        Relies on an existing SASLogon cookie session. Returns None when the
        page does not show a code (e.g. the user is not logged in).
        """
        response = await self.http.get(
            f"{self.config.server_url}/SASLogon/oauth/authorize",
            params={"client_id": client_id, "response_type": "code"},
        )
        page: Optional[str] = response.text

        if is_authorize_form_required(page or ""):
            page = await submit_authorize_form(self.http, page or "", self.config.server_url)
            if page is None:
                return None

        return extract_auth_code(page or "")

    async def _grant(
        self,
        client_id: str,
        client_secret: str,
        form: Dict[str, str],
    ) -> Dict[str, Any]:
        response = await self.http.post(
            self.token_url,
            data=form,
            headers=self._basic_auth_headers(client_id, client_secret),
        )

        if response.is_error:
            raise SASjsHTTPError(
                response.status_code,
                response.text,
                self.token_url,
                dict(response.headers),
            )

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(response.text) from exc

    async def get_access_token(
        self,
        client_id: str,
        client_secret: str,
        auth_code: str,
    ) -> Dict[str, Any]:
        """Exchange an authorization code for access and refresh tokens."""
        return await self._grant(
            client_id,
            client_secret,
            {"grant_type": "authorization_code", "code": auth_code},
        )

    async def refresh_tokens(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
    ) -> Dict[str, Any]:
        """Exchange a refresh token for a new token pair."""
        return await self._grant(
            client_id,
            client_secret,
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
        )

    async def delete_client(self, client_id: str, access_token: str) -> str:
        url = f"{self.config.server_url}/oauth/clients/{client_id}"
        response = await self.http.delete(
            url, headers={"Authorization": f"Bearer {access_token}"}
        )

        if response.is_error:
            raise SASjsHTTPError(
                response.status_code, response.text, url, dict(response.headers)
            )

        return response.text
