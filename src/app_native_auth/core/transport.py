"""HTTP client for the identity server's app-native authentication API.

Each public coroutine performs exactly **one** request/response exchange and
never retries; interpretation of failures is left to the caller:

* a non-2xx answer raises :class:`TransportError` (status + raw body)
* a connection-level failure raises :class:`NetworkError`

Logging
-------
Only endpoint paths, status codes and (masked) identifiers are logged.  Form
values such as passwords, one-time codes, authorization codes and tokens are
*never* written to logs.
"""

from __future__ import annotations

import logging
from typing import Any, Final, Mapping

import httpx

from app_native_auth.core.config import AuthConfig
from app_native_auth.core.errors import NetworkError, TransportError
from app_native_auth.core.models import TokenSet
from app_native_auth.utils.logging import mask_sensitive

_LOG = logging.getLogger("app-native-auth.core.transport")

AUTHORIZE_PATH: Final[str] = "/oauth2/authorize"
AUTHN_PATH: Final[str] = "/oauth2/authn"
TOKEN_PATH: Final[str] = "/oauth2/token"
LOGOUT_PATH: Final[str] = "/oidc/logout"

DEFAULT_SCOPE: Final[str] = "openid address email groups phone profile roles"

_FORM_HEADERS: Final[dict[str, str]] = {
    "Accept": "application/json",
    "Content-Type": "application/x-www-form-urlencoded",
}
_JSON_HEADERS: Final[dict[str, str]] = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}


class IdentityServerClient:
    """Thin async façade over the authorize, authn, token and logout endpoints."""

    def __init__(
        self,
        config: AuthConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.http_timeout, connect=5.0)
        )

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #
    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "IdentityServerClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Protocol calls                                                     #
    # ------------------------------------------------------------------ #
    async def init(self) -> dict[str, Any]:
        """Start a new flow (``POST /oauth2/authorize`` with ``response_mode=direct``)."""
        form = {
            "client_id": self.config.client_id,
            "response_type": "code",
            "redirect_uri": self.config.callback_url,
            "scope": DEFAULT_SCOPE,
            "response_mode": "direct",
        }
        response = await self._post(AUTHORIZE_PATH, data=form, headers=_FORM_HEADERS)
        return self._json(response)

    async def continue_flow(
        self,
        flow_id: str,
        authenticator_id: str,
        params: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        """Advance *flow_id* with the selected authenticator and its parameters."""
        body = {
            "flowId": flow_id,
            "selectedAuthenticator": {
                "authenticatorId": authenticator_id,
                "params": dict(params or {}),
            },
        }
        _LOG.debug(
            "Continuing flow=%s authenticator=%s param_names=%s",
            mask_sensitive(flow_id, 6),
            authenticator_id,
            sorted(body["selectedAuthenticator"]["params"]),
        )
        response = await self._post(AUTHN_PATH, json=body, headers=_JSON_HEADERS)
        return self._json(response)

    async def exchange_token(self, code: str) -> TokenSet:
        """Swap an authorization *code* for a :class:`TokenSet`."""
        form: dict[str, str] = {
            "client_id": self.config.client_id,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.config.callback_url,
        }
        if self.config.client_secret:
            form["client_secret"] = self.config.client_secret  # noqa: S105
        response = await self._post(TOKEN_PATH, data=form, headers=_FORM_HEADERS)
        tokens = TokenSet.from_json(self._json(response))
        _LOG.info(
            "Exchanged authorization code (refresh_token=%s, expires_in=%s)",
            tokens.refresh_token is not None,
            tokens.expires_in,
        )
        return tokens

    async def logout(self, id_token: str) -> None:
        """End the server-side session identified by *id_token*."""
        form = {"id_token_hint": id_token, "response_mode": "direct"}
        await self._post(LOGOUT_PATH, data=form, headers=_FORM_HEADERS)
        _LOG.info("Server-side logout completed")

    # ---------------- internal helpers --------------------------------- #
    async def _post(self, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.config.base_url}{path}"
        try:
            response = await self._http.post(url, **kwargs)
        except httpx.RequestError as exc:
            _LOG.warning("Request to %s failed: %s", path, exc.__class__.__name__)
            raise NetworkError(f"Network error calling {path}: {exc}") from exc

        if not response.is_success:
            _LOG.warning("%s returned HTTP %s", path, response.status_code)
            raise TransportError(response.status_code, response.text, url=url)
        _LOG.debug("%s returned HTTP %s", path, response.status_code)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise TransportError(response.status_code, response.text, url=str(response.request.url)) from exc
        return data if isinstance(data, dict) else {}
