"""OAuth 2.0 bearer tokens for collector requests.

Tokens come from the password grant and are renewed through the
refresh_token grant when the server issued a refresh token. Renewal
starts 60 seconds before expiry, and concurrent callers share a single
in-flight token request.
"""

import asyncio
import json
import logging
import time
from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx

from rpclient.core.errors import OAuthError

logger = logging.getLogger(__name__)

TOKEN_REFRESH_THRESHOLD = 60.0
DEFAULT_TOKEN_LIFETIME = 3600.0
FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


def _response_detail(response: httpx.Response) -> str:
    try:
        return json.dumps(response.json(), separators=(",", ":"))
    except ValueError:
        return json.dumps(response.text)


class OAuthTokenProvider:
    """Obtains and caches an access token.

    Args:
        token_endpoint: OAuth token endpoint URL.
        username: Username for the password grant.
        password: Password for the password grant.
        client_id: OAuth client id.
        client_secret: Optional OAuth client secret.
        scope: Optional OAuth scope.
        transport: httpx transport for token requests, normally the
            proxy-aware routing transport shared with the REST client.
        timeout: Token request timeout in seconds.
        clock: Monotonic clock in seconds, replaceable in tests.
    """

    def __init__(
        self,
        token_endpoint: str,
        username: str,
        password: str,
        client_id: str,
        client_secret: str | None = None,
        scope: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.token_endpoint = token_endpoint
        self.username = username
        self.password = password
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.clock = clock

        self.transport = transport
        self.timeout = timeout

        self._http_client: httpx.AsyncClient | None = None
        self._access_token: str | None = None
        self._refresh_token: str | None = None
        self._expires_at: float | None = None
        self._refresh_task: asyncio.Task[str] | None = None

    async def get_access_token(self) -> str:
        """Return a token valid for at least the refresh threshold."""
        if self._refresh_task is not None:
            logger.debug("Waiting for ongoing token refresh")
            return await asyncio.shield(self._refresh_task)

        if self._access_token and self._expires_at is not None:
            if self._expires_at - self.clock() > TOKEN_REFRESH_THRESHOLD:
                return self._access_token
            logger.debug("Token expiring soon, refreshing")

        task = asyncio.get_running_loop().create_task(self._obtain_token())
        self._refresh_task = task
        task.add_done_callback(self._clear_refresh_task)
        return await asyncio.shield(task)

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _clear_refresh_task(self, task: "asyncio.Task[str]") -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _obtain_token(self) -> str:
        if not self._refresh_token:
            return await self._request_token(self._password_grant())

        try:
            return await self._request_token(self._refresh_grant())
        except OAuthError:
            self._refresh_token = None
            logger.warning(
                "Refresh token expired or invalid, re-authenticating with password grant"
            )

        try:
            return await self._request_token(self._password_grant())
        except OAuthError as e:
            raise OAuthError(f"OAuth password grant fallback failed: {e}") from e

    def _password_grant(self) -> dict[str, str]:
        return self._with_client(
            {
                "grant_type": "password",
                "username": self.username,
                "password": self.password,
            }
        )

    def _refresh_grant(self) -> dict[str, str]:
        return self._with_client(
            {"grant_type": "refresh_token", "refresh_token": self._refresh_token or ""}
        )

    def _with_client(self, form: dict[str, str]) -> dict[str, str]:
        form["client_id"] = self.client_id
        if self.client_secret:
            form["client_secret"] = self.client_secret
        if self.scope:
            form["scope"] = self.scope
        return form

    async def _request_token(self, form: dict[str, str]) -> str:
        logger.debug(f"Requesting access token with {form['grant_type']} grant")
        try:
            response = await self._client().post(
                self.token_endpoint, data=form, headers=FORM_HEADERS
            )
            response.raise_for_status()
            body: dict[str, Any] = response.json()
            access_token = body.get("access_token")
            if not access_token:
                raise ValueError("No access token received from OAuth server")
        except httpx.HTTPStatusError as e:
            message = (
                f"OAuth token request failed: {e.response.status_code} - "
                f"{_response_detail(e.response)}"
            )
            logger.error(message)
            raise OAuthError(message) from e
        except (httpx.HTTPError, ValueError) as e:
            message = f"OAuth token request failed: {e}"
            logger.error(message)
            raise OAuthError(message) from e

        expires_in = body.get("expires_in")
        lifetime = float(expires_in) if expires_in else DEFAULT_TOKEN_LIFETIME
        self._access_token = access_token
        self._expires_at = self.clock() + lifetime
        if body.get("refresh_token"):
            self._refresh_token = body["refresh_token"]
        logger.debug(f"Token obtained, expires in {lifetime:.0f} seconds")
        return access_token

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                transport=self.transport,
                timeout=self.timeout,
                trust_env=self.transport is None,
            )
        return self._http_client


class OAuthBearerAuth(httpx.Auth):
    """httpx auth flow attaching ``Authorization: Bearer <token>``.

    A token failure aborts the request with OAuthError instead of sending
    it unauthenticated.
    """

    def __init__(self, provider: OAuthTokenProvider):
        self.provider = provider

    def sync_auth_flow(self, request: httpx.Request):
        raise RuntimeError("OAuthBearerAuth can only be used with httpx.AsyncClient")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self.provider.get_access_token()
        request.headers["Authorization"] = f"Bearer {token}"
        yield request
