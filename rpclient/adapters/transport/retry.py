"""Retry policy for collector requests.

Only transport-level failures are retried: timeouts, refused or reset
connections and protocol errors. A response with an error status is an
answer from the collector and is never retried.
"""

import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

DEFAULT_RETRIES = 6
BASE_DELAY = 0.2
MAX_DELAY = 5.0
JITTER = 0.4

_RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    TimeoutError,
    ConnectionError,
)


def exponential_delay(attempt: int, rand: Callable[[], float] = random.random) -> float:
    """Delay in seconds before retry number ``attempt`` (1-based).

    ``min(5.0, 0.2 * 2 ** (attempt - 1))`` shortened by up to 40% jitter.
    """
    base = min(MAX_DELAY, BASE_DELAY * 2 ** (attempt - 1))
    return base * (1 - JITTER * rand())


def is_retryable_error(error: BaseException) -> bool:
    """True for failures where the request never produced a response."""
    if isinstance(error, httpx.HTTPStatusError):
        return False
    if isinstance(error, _RETRYABLE_EXCEPTIONS):
        return True
    return "timeout" in str(error).lower()


@dataclass
class RetryPolicy:
    """How many times and how long to wait when a request fails.

    Attributes:
        retries: Number of retries after the first attempt.
        reset_timeout: Restart the per-request timeout on every attempt.
        retry_delay: Delay function taking the 1-based retry number.
        retry_condition: Predicate deciding whether an error is retried.
    """

    retries: int = DEFAULT_RETRIES
    reset_timeout: bool = True
    retry_delay: Callable[[int], float] = exponential_delay
    retry_condition: Callable[[BaseException], bool] = is_retryable_error

    def __post_init__(self) -> None:
        if isinstance(self.retries, bool) or not isinstance(self.retries, int):
            raise ValueError(f"retries must be an integer, got {self.retries!r}")
        if self.retries < 0:
            raise ValueError("retries must not be negative")
        if not isinstance(self.reset_timeout, bool):
            raise ValueError(f"reset_timeout must be a boolean, got {self.reset_timeout!r}")
        if not callable(self.retry_delay) or not callable(self.retry_condition):
            raise ValueError("retry_delay and retry_condition must be callables")

    def delay(self, attempt: int) -> float:
        return self.retry_delay(attempt)


def resolve_retry_policy(options: "int | Mapping[str, Any] | RetryPolicy | None") -> RetryPolicy:
    """Build a RetryPolicy from a retry count, a partial mapping or a policy.

    A mapping overrides the defaults field by field; unknown keys are
    rejected so typos surface early.
    """
    if options is None:
        return RetryPolicy()
    if isinstance(options, RetryPolicy):
        return options
    if isinstance(options, bool):
        raise ValueError("retry options must be a count, a mapping or a RetryPolicy")
    if isinstance(options, int):
        return RetryPolicy(retries=options)
    if not isinstance(options, Mapping):
        raise ValueError("retry options must be a count, a mapping or a RetryPolicy")
    known = {"retries", "reset_timeout", "retry_delay", "retry_condition"}
    unknown = set(options) - known
    if unknown:
        raise ValueError(f"Unknown retry options: {sorted(unknown)}")
    return RetryPolicy(**dict(options))
