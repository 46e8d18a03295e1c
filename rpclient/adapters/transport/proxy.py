"""Per-request proxy routing.

The proxy decision is made for every request URL rather than once per
client, so that ``no_proxy`` is honored even when a proxy is configured
globally. The environment is consulted by this module only; httpx
itself runs with ``trust_env=False``.
"""

import logging
import os
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import httpx

logger = logging.getLogger(__name__)

NO_PROXY_KEY = "no-proxy"

CONNECTION_LIMITS = httpx.Limits(
    max_connections=50,
    max_keepalive_connections=10,
    keepalive_expiry=3.0,
)


def sanitize_url_for_logging(url: str) -> str:
    """Replace credentials embedded in a URL with ``[REDACTED]``."""
    try:
        parts = urlsplit(url)
        if not (parts.username or parts.password):
            return url
        host = parts.hostname or ""
        if parts.port is not None:
            host = f"{host}:{parts.port}"
        return urlunsplit(parts._replace(netloc=f"[REDACTED]@{host}"))
    except ValueError:
        return url


def should_bypass_proxy(url: str, no_proxy: str | None) -> bool:
    """Match the URL's host against a comma separated bypass list.

    ``*`` bypasses everything, ``.example.com`` matches subdomains only
    and ``example.com`` matches the domain and its subdomains. Matching
    is case-insensitive; a URL that does not parse is never bypassed.
    """
    if not no_proxy:
        return False
    try:
        hostname = (urlsplit(url).hostname or "").lower()
    except ValueError:
        return False
    if not hostname:
        return False

    patterns = [entry.strip().lower() for entry in no_proxy.split(",")]
    for pattern in filter(None, patterns):
        if pattern == "*":
            return True
        if pattern.startswith("."):
            if hostname.endswith(pattern):
                return True
            continue
        if hostname == pattern or hostname.endswith(f".{pattern}"):
            return True
    return False


class ProxyResolver:
    """Decides the proxy for a URL and caches one transport per route.

    Args:
        proxy: ``False`` disables proxies, a string is a proxy URL and a
            mapping with ``host``, ``port`` and optional ``protocol`` and
            ``auth`` (``username``/``password``) describes one. ``None``
            defers to the environment.
        no_proxy: Bypass list; falls back to ``NO_PROXY``/``no_proxy``.
        environ: Environment to read, ``os.environ`` by default.
        verify: Verify TLS certificates of the collector.
    """

    def __init__(
        self,
        proxy: bool | str | Mapping[str, Any] | None = None,
        no_proxy: str | None = None,
        environ: Mapping[str, str] | None = None,
        verify: bool = True,
    ):
        self.proxy = proxy
        self.no_proxy = no_proxy
        self.environ = os.environ if environ is None else environ
        self.verify = verify
        self._transports: dict[tuple[str, str], httpx.AsyncHTTPTransport] = {}

    def get_proxy_url(self, url: str) -> str | None:
        """Return the proxy URL to use for ``url``, or None to go direct."""
        no_proxy = (
            self.no_proxy
            or self.environ.get("NO_PROXY")
            or self.environ.get("no_proxy")
            or ""
        )
        if should_bypass_proxy(url, no_proxy):
            logger.debug(f"Proxy bypassed for {url}")
            return None

        if self.proxy is False:
            return None

        if isinstance(self.proxy, Mapping):
            proxy_url = self._proxy_url_from_mapping(self.proxy)
            if proxy_url:
                return proxy_url

        if isinstance(self.proxy, str) and self.proxy:
            return self.proxy

        return self._proxy_url_from_env(url)

    def transport_for(self, url: str) -> httpx.AsyncHTTPTransport:
        """Return the pooled transport routing ``url``."""
        scheme = urlsplit(url).scheme.lower() or "http"
        proxy_url = self.get_proxy_url(url)
        key = (scheme, proxy_url or NO_PROXY_KEY)

        transport = self._transports.get(key)
        if transport is not None:
            return transport

        if proxy_url:
            logger.debug(
                f"Creating proxy transport for {scheme} via "
                f"{sanitize_url_for_logging(proxy_url)}"
            )
            transport = httpx.AsyncHTTPTransport(
                proxy=proxy_url, limits=CONNECTION_LIMITS, verify=self.verify
            )
        else:
            transport = httpx.AsyncHTTPTransport(limits=CONNECTION_LIMITS, verify=self.verify)
        self._transports[key] = transport
        return transport

    async def aclose(self) -> None:
        transports = list(self._transports.values())
        self._transports.clear()
        for transport in transports:
            await transport.aclose()

    @staticmethod
    def _proxy_url_from_mapping(proxy: Mapping[str, Any]) -> str | None:
        host = proxy.get("host")
        port = proxy.get("port")
        if not host or not port:
            return None
        protocol = proxy.get("protocol") or "http"
        auth = proxy.get("auth")
        if auth:
            return f"{protocol}://{auth['username']}:{auth['password']}@{host}:{port}"
        return f"{protocol}://{host}:{port}"

    def _proxy_url_from_env(self, url: str) -> str | None:
        scheme = urlsplit(url).scheme.lower()
        for name in (f"{scheme}_proxy", f"{scheme.upper()}_PROXY", "all_proxy", "ALL_PROXY"):
            value = self.environ.get(name)
            if value:
                return value
        return None


class ProxyRoutingTransport(httpx.AsyncBaseTransport):
    """httpx transport that delegates each request to the resolved route."""

    def __init__(self, resolver: ProxyResolver):
        self.resolver = resolver

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        transport = self.resolver.transport_for(str(request.url))
        return await transport.handle_async_request(request)

    async def aclose(self) -> None:
        await self.resolver.aclose()
