"""Domain models for the reporting client.

All models in this module use only Python standard library types,
ensuring zero external dependencies in the core domain.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple, TypeAlias

Payload: TypeAlias = dict[str, Any]
AttachmentContent: TypeAlias = bytes | bytearray | memoryview | str | Sequence[int]

DEFAULT_LAUNCH_NAME = "Test launch name"


class ItemStatus(str, Enum):
    """Final statuses understood by the collector."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    STOPPED = "STOPPED"
    SKIPPED = "SKIPPED"
    INTERRUPTED = "INTERRUPTED"
    CANCELLED = "CANCELLED"
    INFO = "INFO"
    WARN = "WARN"


class LogLevel(str, Enum):
    """Log levels accepted by the collector."""

    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


class ItemHandle(NamedTuple):
    """Returned synchronously by every lifecycle operation.

    The signal settles later with the collector's response, or with the
    error that prevented the operation. Unpacks as ``local_id, signal``.
    """

    local_id: str
    signal: "asyncio.Future[Any]"


class RetryChainKey(NamedTuple):
    """Identifies one logical test slot across repeated attempts."""

    launch_id: str
    parent_id: str | None
    name: str
    unique_id: str = ""


@dataclass
class ItemRecord:
    """Registry entry for a launch, test item or log.

    ``start`` settles once the collector acknowledged the entity (and
    ``remote_id`` is filled in); ``finish`` settles once the finish call
    returned. Children are kept in start order.
    """

    local_id: str
    launch_id: str
    parent_id: str | None
    start: "asyncio.Future[Any]"
    finish: "asyncio.Future[Any]"
    remote_id: str | None = None
    children: list[str] = field(default_factory=list)
    finish_requested: bool = False

    @property
    def is_launch(self) -> bool:
        return self.parent_id is None and self.launch_id == self.local_id


@dataclass(frozen=True)
class FileAttachment:
    """A file attached to a log entry."""

    name: str
    content: AttachmentContent
    mime_type: str = "application/octet-stream"

    def __post_init__(self) -> None:
        """Validate attachment invariants on creation."""
        if not self.name or not self.name.strip():
            raise ValueError("name must be a non-empty string")

    def to_bytes(self) -> bytes:
        """Return the attachment body regardless of its representation."""
        content = self.content
        if isinstance(content, (bytes, bytearray, memoryview)):
            return bytes(content)
        if isinstance(content, str):
            return content.encode("utf-8")
        return bytes(content)


@dataclass
class LogRequest:
    """A log entry waiting to be delivered, optionally with a file."""

    payload: Payload
    file: FileAttachment | None = None
    local_id: str = ""
