"""Port interfaces for the reporting client.

These abstract base classes define the boundaries between core
domain logic and external adapters. Implementations live in the
adapters/ package.

Port Interface Categories:

1. **Driven Ports** (core calls out to adapters)
   - ReportingApiPort: Wire calls to the remote collector
   - LaunchIdSink: Surfaces the launch's remote id once known

2. **Driving Ports** (test framework agents call into core)
   - ReportingPort: Lifecycle calls issued by a test runner
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TypeAlias

from .models import FileAttachment, ItemHandle, LogRequest, Payload

LaunchIdSink: TypeAlias = Callable[[str], None]


# ============================================================================
# DRIVEN PORTS (Core calls out to adapters)
# ============================================================================


class ReportingApiPort(ABC):
    """Port for the remote collector's REST API.

    Every method performs exactly one logical call and returns the decoded
    response body. Adapters own retries, authentication and proxies; the
    core never retries.

    Implementations must raise:
    - NetworkError when the collector stays unreachable
    - HTTPError when the collector answers with an error status
    - OAuthError when a bearer token cannot be obtained
    """

    @abstractmethod
    async def start_launch(self, payload: Payload) -> Payload:
        """Create a launch. The response carries its ``id``."""

    @abstractmethod
    async def finish_launch(self, launch_uuid: str, payload: Payload) -> Payload:
        """Finish a launch. The response may carry a ``link``."""

    @abstractmethod
    async def update_launch(self, launch_uuid: str, payload: Payload) -> Payload:
        """Update launch attributes, description or mode."""

    @abstractmethod
    async def start_test_item(
        self, parent_uuid: str | None, payload: Payload
    ) -> Payload:
        """Create a root item (``parent_uuid`` None) or a child item."""

    @abstractmethod
    async def finish_test_item(self, item_uuid: str, payload: Payload) -> Payload:
        """Finish a test item."""

    @abstractmethod
    async def save_log(self, payload: Payload) -> Payload:
        """Save a single log entry without attachment."""

    @abstractmethod
    async def save_log_batch(self, log_requests: list[LogRequest]) -> Payload:
        """Save several log entries, with their attachments, in one call."""

    @abstractmethod
    async def get_launch(self, launch_uuid: str) -> Payload:
        """Read back a launch by its remote id."""

    @abstractmethod
    async def get_test_item(self, item_uuid: str) -> Payload:
        """Read back a test item by its remote id."""

    @abstractmethod
    async def find_launches(self, launch_uuids: list[str], mode: str | None) -> Payload:
        """Search launches by remote id through the synchronous API."""

    @abstractmethod
    async def merge_launches(self, payload: Payload) -> Payload:
        """Merge several launches into one."""

    @abstractmethod
    async def check_connect(self) -> Payload:
        """Issue a cheap authenticated read to validate connectivity."""

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""


# ============================================================================
# DRIVING PORTS (Agents call into core)
# ============================================================================


class ReportingPort(ABC):
    """Port for test framework agents reporting an execution tree.

    Lifecycle methods are synchronous: they return an ItemHandle right
    away and never raise. Failures, including unknown ids, are delivered
    through the handle's signal.
    """

    @abstractmethod
    def start_launch(self, launch: Payload | None = None) -> ItemHandle:
        """Start a launch, or attach to an existing one when ``id`` is given."""

    @abstractmethod
    def finish_launch(self, launch_id: str, finish: Payload | None = None) -> ItemHandle:
        """Finish a launch once all of its children settled."""

    @abstractmethod
    def update_launch(self, launch_id: str, data: Payload) -> ItemHandle:
        """Update a launch after its finish settled."""

    @abstractmethod
    def start_test_item(
        self, item: Payload, launch_id: str, parent_id: str | None = None
    ) -> ItemHandle:
        """Start a suite, test or step under a launch or a parent item."""

    @abstractmethod
    def finish_test_item(self, item_id: str, finish: Payload | None = None) -> ItemHandle:
        """Finish an item once all of its children settled."""

    @abstractmethod
    def send_log(
        self,
        item_id: str,
        log: Payload | None = None,
        file: FileAttachment | None = None,
    ) -> ItemHandle:
        """Attach a log entry to a launch or an item."""

    @abstractmethod
    async def aclose(self) -> None:
        """Deliver pending logs and release resources."""


__all__ = [
    "LaunchIdSink",
    "ReportingApiPort",
    "ReportingPort",
]
