"""Log batching engine.

Accumulates outbound log entries and decides when a batch is ready to
be sent. The engine is pure: it never performs I/O, the caller ships
whatever batch ``append`` or ``flush`` hands back.

Sizes are estimated from fixed multipart overheads rather than an exact
encoder; the estimate only has to produce stable flush boundaries.
"""

import json
from typing import Any

from .models import FileAttachment, LogRequest

MAX_LOG_BATCH_SIZE = 20
MAX_LOG_BATCH_PAYLOAD_SIZE = 65_000_000

JSON_PART_OVERHEAD = 100
FILE_PART_OVERHEAD = 150
FINAL_BOUNDARY_OVERHEAD = 50


def calculate_json_part_size(payload: dict[str, Any] | None) -> int:
    """Size of the JSON part including its multipart headers."""
    if not payload:
        return 0
    encoded = json.dumps(payload, separators=(",", ":"), default=str)
    return len(encoded.encode("utf-8")) + JSON_PART_OVERHEAD


def calculate_file_part_size(file: FileAttachment | None) -> int:
    """Size of the file part including boundary, headers and filename."""
    if file is None or not file.content:
        return 0
    return len(file.to_bytes()) + FILE_PART_OVERHEAD


def calculate_multipart_size(
    payload: dict[str, Any] | None, file: FileAttachment | None = None
) -> int:
    """Total estimated size of one log entry in a multipart request."""
    return (
        calculate_json_part_size(payload)
        + calculate_file_part_size(file)
        + FINAL_BOUNDARY_OVERHEAD
    )


class LogBatcher:
    """Groups log requests under an entry-count and a payload-size ceiling.

    A batch never holds more than ``entry_num`` entries. It only exceeds
    ``payload_limit`` when a single entry is larger than the limit, and
    such an entry is never merged with others.
    """

    def __init__(
        self,
        entry_num: int = MAX_LOG_BATCH_SIZE,
        payload_limit: int = MAX_LOG_BATCH_PAYLOAD_SIZE,
    ):
        if entry_num <= 0:
            raise ValueError("entry_num must be positive")
        if payload_limit <= 0:
            raise ValueError("payload_limit must be positive")
        self.entry_num = entry_num
        self.payload_limit = payload_limit
        self._batch: list[LogRequest] = []
        self._payload_size = 0

    @property
    def batch_size(self) -> int:
        """Number of pending entries."""
        return len(self._batch)

    @property
    def payload_size(self) -> int:
        """Estimated byte size of the pending entries."""
        return self._payload_size

    def append(self, log_request: LogRequest) -> list[LogRequest] | None:
        """Add an entry; return a batch when one is ready to be sent."""
        size = calculate_multipart_size(log_request.payload, log_request.file)
        return self._append(size, log_request)

    def flush(self) -> list[LogRequest] | None:
        """Return and clear whatever is pending, or None when empty."""
        if not self._batch:
            return None
        return self._take([], 0)

    def _append(self, size: int, log_request: LogRequest) -> list[LogRequest] | None:
        if size >= self.payload_limit:
            if self._batch:
                # The oversized entry waits alone; the next append or
                # flush ships it as a singleton.
                return self._take([log_request], size)
            return [log_request]

        if self._payload_size + size >= self.payload_limit and self._batch:
            return self._take([log_request], size)

        self._batch.append(log_request)
        self._payload_size += size
        if len(self._batch) < self.entry_num:
            return None
        return self._take([], 0)

    def _take(self, pending: list[LogRequest], size: int) -> list[LogRequest]:
        batch = self._batch
        self._batch = pending
        self._payload_size = size
        return batch
