"""Tests for OAuth token handling."""

import asyncio
import logging
import re
from urllib.parse import parse_qs

import httpx
import pytest

from rpclient.adapters.transport.oauth import OAuthBearerAuth, OAuthTokenProvider
from rpclient.adapters.transport.rest import RestClient
from rpclient.core.errors import OAuthError

TOKEN_URL = "http://auth.test/oauth/token"


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TokenServer:
    """MockTransport handler for the token endpoint and a protected API."""

    def __init__(self, expires_in: int | None = 120, refresh_token: str | None = "r1"):
        self.expires_in = expires_in
        self.refresh_token = refresh_token
        self.token_requests: list[dict[str, list[str]]] = []
        self.api_requests: list[httpx.Request] = []
        self.reject_grants: set[str] = set()
        self.omit_token = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path != "/oauth/token":
            self.api_requests.append(request)
            return httpx.Response(200, json={"ok": True})

        form = parse_qs(request.content.decode())
        self.token_requests.append(form)
        grant = form["grant_type"][0]
        if grant in self.reject_grants:
            return httpx.Response(401, json={"error": "invalid_grant"})

        body: dict = {} if self.omit_token else {"access_token": f"t{len(self.token_requests)}"}
        if self.expires_in is not None:
            body["expires_in"] = self.expires_in
        if self.refresh_token:
            body["refresh_token"] = self.refresh_token
        return httpx.Response(200, json=body)


def make_provider(
    server: TokenServer, clock: FakeClock | None = None, **kwargs
) -> OAuthTokenProvider:
    return OAuthTokenProvider(
        token_endpoint=TOKEN_URL,
        username="user",
        password="secret",
        client_id="rp-client",
        transport=httpx.MockTransport(server),
        clock=clock or FakeClock(),
        **kwargs,
    )


@pytest.mark.asyncio
class TestOAuthTokenProvider:
    """Token caching, renewal and failures."""

    async def test_password_grant_form(self) -> None:
        server = TokenServer()
        provider = make_provider(server, client_secret="s3cret", scope="openid")

        assert await provider.get_access_token() == "t1"

        form = server.token_requests[0]
        assert form["grant_type"] == ["password"]
        assert form["username"] == ["user"]
        assert form["password"] == ["secret"]
        assert form["client_id"] == ["rp-client"]
        assert form["client_secret"] == ["s3cret"]
        assert form["scope"] == ["openid"]
        await provider.aclose()

    async def test_optional_fields_omitted(self) -> None:
        server = TokenServer()
        provider = make_provider(server)

        await provider.get_access_token()

        assert "client_secret" not in server.token_requests[0]
        assert "scope" not in server.token_requests[0]
        await provider.aclose()

    async def test_concurrent_callers_share_one_request(self) -> None:
        server = TokenServer()
        provider = make_provider(server)

        tokens = await asyncio.gather(*(provider.get_access_token() for _ in range(10)))

        assert set(tokens) == {"t1"}
        assert len(server.token_requests) == 1
        await provider.aclose()

    async def test_token_renewed_near_expiry(self) -> None:
        """A 120s token is reused at 30s and renewed once less than 60s remain."""
        server = TokenServer(expires_in=120)
        clock = FakeClock()
        provider = make_provider(server, clock)

        assert await provider.get_access_token() == "t1"
        clock.now = 30
        assert await provider.get_access_token() == "t1"
        assert len(server.token_requests) == 1

        clock.now = 61
        assert await provider.get_access_token() == "t2"
        assert server.token_requests[1]["grant_type"] == ["refresh_token"]
        assert server.token_requests[1]["refresh_token"] == ["r1"]
        await provider.aclose()

    async def test_default_lifetime_without_expires_in(self) -> None:
        server = TokenServer(expires_in=None, refresh_token=None)
        clock = FakeClock()
        provider = make_provider(server, clock)

        await provider.get_access_token()
        clock.now = 3500
        await provider.get_access_token()
        assert len(server.token_requests) == 1

        clock.now = 3541
        assert await provider.get_access_token() == "t2"
        assert server.token_requests[1]["grant_type"] == ["password"]
        await provider.aclose()

    async def test_refresh_failure_falls_back_to_password(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        server = TokenServer(expires_in=120)
        clock = FakeClock()
        provider = make_provider(server, clock)
        await provider.get_access_token()
        server.reject_grants.add("refresh_token")
        clock.now = 100

        with caplog.at_level(logging.WARNING):
            assert await provider.get_access_token() == "t3"

        grants = [form["grant_type"][0] for form in server.token_requests]
        assert grants == ["password", "refresh_token", "password"]
        assert "Refresh token expired or invalid" in caplog.text
        await provider.aclose()

    async def test_fallback_failure_message(self) -> None:
        server = TokenServer(expires_in=120)
        clock = FakeClock()
        provider = make_provider(server, clock)
        await provider.get_access_token()
        server.reject_grants.update({"refresh_token", "password"})
        clock.now = 100

        with pytest.raises(OAuthError) as exc_info:
            await provider.get_access_token()

        assert str(exc_info.value) == (
            "OAuth password grant fallback failed: "
            'OAuth token request failed: 401 - {"error":"invalid_grant"}'
        )
        await provider.aclose()

    async def test_status_error_message(self) -> None:
        server = TokenServer()
        server.reject_grants.add("password")
        provider = make_provider(server)

        with pytest.raises(
            OAuthError,
            match=re.escape('OAuth token request failed: 401 - {"error":"invalid_grant"}'),
        ):
            await provider.get_access_token()
        await provider.aclose()

    async def test_transport_error_message(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = OAuthTokenProvider(
            TOKEN_URL, "user", "secret", "rp-client", transport=httpx.MockTransport(handler)
        )

        with pytest.raises(OAuthError, match="OAuth token request failed: connection refused"):
            await provider.get_access_token()
        await provider.aclose()

    async def test_missing_access_token(self) -> None:
        server = TokenServer()
        server.omit_token = True
        provider = make_provider(server)

        with pytest.raises(OAuthError, match="No access token received from OAuth server"):
            await provider.get_access_token()
        await provider.aclose()

    async def test_failure_is_shared_then_retried(self) -> None:
        """A failed refresh is not cached; the next call asks again."""
        server = TokenServer()
        server.reject_grants.add("password")
        provider = make_provider(server)

        results = await asyncio.gather(
            *(provider.get_access_token() for _ in range(3)), return_exceptions=True
        )
        assert all(isinstance(result, OAuthError) for result in results)
        assert len(server.token_requests) == 1

        server.reject_grants.clear()
        assert await provider.get_access_token() == "t2"
        await provider.aclose()


@pytest.mark.asyncio
class TestOAuthBearerAuth:
    """Bearer header on collector requests."""

    async def test_requests_carry_bearer_token(self) -> None:
        server = TokenServer()
        transport = httpx.MockTransport(server)
        provider = OAuthTokenProvider(
            TOKEN_URL, "user", "secret", "rp-client", transport=transport
        )
        client = RestClient(
            "http://collector.test/api/v2/proj",
            auth=OAuthBearerAuth(provider),
            transport=transport,
        )

        await client.retrieve("launch")
        await client.retrieve("launch")

        assert [r.headers["Authorization"] for r in server.api_requests] == [
            "Bearer t1",
            "Bearer t1",
        ]
        assert len(server.token_requests) == 1
        await client.close()
        await provider.aclose()

    async def test_token_failure_aborts_request(self) -> None:
        server = TokenServer()
        server.reject_grants.add("password")
        transport = httpx.MockTransport(server)
        provider = OAuthTokenProvider(
            TOKEN_URL, "user", "secret", "rp-client", transport=transport
        )
        client = RestClient(
            "http://collector.test/api/v2/proj",
            auth=OAuthBearerAuth(provider),
            transport=transport,
        )

        with pytest.raises(OAuthError):
            await client.retrieve("launch")
        assert server.api_requests == []
        await client.close()
        await provider.aclose()
