"""Error taxonomy for the reporting client.

All errors derive from ReportingError so that callers can catch the
whole family with a single except clause. Structural registry errors
(NotFoundError, AlreadyFinishedError) never escape synchronously: they
are delivered through the failed signal returned by an operation.
"""

from typing import Any


class ReportingError(Exception):
    """Base class for all reporting client errors."""


class ReportingValidationError(ReportingError):
    """Client configuration is malformed."""

    def __init__(self, message: str):
        super().__init__(
            f"Validation failed. Please, check the specified parameters: {message}"
        )


class RequiredOptionError(ReportingValidationError):
    """A required configuration option is missing or empty."""

    def __init__(self, option_name: str):
        self.option_name = option_name
        super().__init__(f"Property '{option_name}' must not be empty.")


class NotFoundError(ReportingError):
    """A local id does not reference a live record."""

    def __init__(self, kind: str, local_id: str):
        self.kind = kind
        self.local_id = local_id
        super().__init__(f'{kind} with tempId "{local_id}" not found')


class AlreadyFinishedError(ReportingError):
    """An item was added to a launch whose finish was already requested."""

    def __init__(self, launch_id: str):
        self.launch_id = launch_id
        super().__init__(
            f'Launch with tempId "{launch_id}" is already finished, '
            "you can not add an item to it"
        )


class NetworkError(ReportingError):
    """The collector could not be reached after all retry attempts."""

    def __init__(self, message: str, url: str = "", method: str = ""):
        self.url = url
        self.method = method
        super().__init__(f"{message}\nURL: {url}\nmethod: {method}")


class HTTPError(ReportingError):
    """The collector answered with an HTTP error status."""

    def __init__(
        self,
        status_code: int,
        body: Any,
        url: str = "",
        method: str = "",
    ):
        self.status_code = status_code
        self.body = body
        self.url = url
        self.method = method
        detail = f": {body}" if body else ""
        super().__init__(
            f"Request failed with status code {status_code}{detail}"
            f"\nURL: {url}\nmethod: {method}"
        )


class OAuthError(ReportingError):
    """An OAuth token request failed, including the fallback grant."""
