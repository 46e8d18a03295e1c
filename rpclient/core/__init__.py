"""Core domain logic for the reporting client.

This package contains zero external dependencies: the item registry,
the ordering engine, retry chains and log batching. Network access goes
through the ports defined in ports.py.
"""

from .errors import (
    AlreadyFinishedError,
    HTTPError,
    NetworkError,
    NotFoundError,
    OAuthError,
    ReportingError,
    ReportingValidationError,
    RequiredOptionError,
)
from .models import (
    FileAttachment,
    ItemHandle,
    ItemStatus,
    LogLevel,
    LogRequest,
)

__all__ = [
    "AlreadyFinishedError",
    "FileAttachment",
    "HTTPError",
    "ItemHandle",
    "ItemStatus",
    "LogLevel",
    "LogRequest",
    "NetworkError",
    "NotFoundError",
    "OAuthError",
    "ReportingError",
    "ReportingValidationError",
    "RequiredOptionError",
]
