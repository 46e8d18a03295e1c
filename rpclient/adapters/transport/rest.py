"""HTTP client for the collector's REST API.

Wraps httpx.AsyncClient with tenacity-driven retries, per-request proxy
routing and optional bearer authentication. Every verb returns the decoded
JSON body or raises NetworkError / HTTPError.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from rpclient.core.errors import HTTPError, NetworkError

from .proxy import ProxyResolver, ProxyRoutingTransport, sanitize_url_for_logging
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

Files = list[tuple[str, tuple[str | None, bytes, str]]]


async def _log_request(request: httpx.Request) -> None:
    logger.debug(
        f"Request method={request.method} url={sanitize_url_for_logging(str(request.url))}"
    )


async def _log_response(response: httpx.Response) -> None:
    request = response.request
    logger.debug(
        f"Response method={request.method} "
        f"url={sanitize_url_for_logging(str(request.url))} status={response.status_code}"
    )


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return response.text


class RestClient:
    """Thin REST client bound to one collector base URL.

    Args:
        base_url: Base URL including API version and project,
            e.g. ``https://rp.example.com/api/v2/project``.
        headers: Headers sent with every request.
        timeout: Per-attempt timeout in seconds.
        retry_policy: Retry policy for transport failures.
        auth: Optional httpx auth flow (OAuth bearer).
        transport: httpx transport; defaults to proxy-aware routing.
        debug: Trace each request and response at DEBUG level.
        sleep: Awaitable sleep used between retries.
    """

    def __init__(
        self,
        base_url: str,
        headers: Mapping[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        retry_policy: RetryPolicy | None = None,
        auth: httpx.Auth | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        debug: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

        event_hooks: dict[str, list[Callable[..., Any]]] = {}
        if debug:
            event_hooks = {"request": [_log_request], "response": [_log_response]}

        self._client = httpx.AsyncClient(
            headers=dict(headers or {}),
            timeout=timeout,
            auth=auth,
            transport=transport or ProxyRoutingTransport(ProxyResolver()),
            trust_env=False,
            event_hooks=event_hooks,
        )

    def build_path(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    def build_path_to_sync_api(self, path: str) -> str:
        return f"{self.base_url.replace('/v2', '/v1')}/{path}"

    async def request(
        self,
        method: str,
        url: str,
        json: Any = None,
        files: Files | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send one logical request, retrying transport failures."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        policy = self.retry_policy

        def is_retryable(error: BaseException) -> bool:
            return isinstance(error, (httpx.TransportError, OSError)) and policy.retry_condition(
                error
            )

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.debug(
                f"Retry {retry_state.attempt_number}/{policy.retries} of {method} {url} "
                f"in {retry_state.upcoming_sleep:.2f}s after: {error!r}"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.retries + 1),
            retry=retry_if_exception(is_retryable),
            wait=lambda retry_state: policy.delay(retry_state.attempt_number),
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    timeout = self.timeout
                    if not policy.reset_timeout:
                        timeout = deadline - loop.time()
                        if timeout <= 0:
                            raise NetworkError(
                                f"timeout of {self.timeout * 1000:.0f}ms exceeded", url, method
                            )
                    response = await self._client.request(
                        method, url, json=json, files=files, params=params, timeout=timeout
                    )
        except (httpx.TransportError, OSError) as e:
            raise NetworkError(str(e) or type(e).__name__, url, method) from e

        if response.is_error:
            raise HTTPError(response.status_code, _decode(response), url, method)
        return _decode(response)

    async def create(
        self, path: str, data: Any = None, files: Files | None = None
    ) -> Any:
        return await self.request("POST", self.build_path(path), json=data, files=files)

    async def retrieve(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        return await self.request("GET", self.build_path(path), params=params)

    async def update(self, path: str, data: Any = None) -> Any:
        return await self.request("PUT", self.build_path(path), json=data)

    async def delete(self, path: str, data: Any = None) -> Any:
        return await self.request("DELETE", self.build_path(path), json=data)

    async def retrieve_sync_api(
        self, path: str, params: Mapping[str, Any] | None = None
    ) -> Any:
        return await self.request("GET", self.build_path_to_sync_api(path), params=params)

    async def close(self) -> None:
        await self._client.aclose()
