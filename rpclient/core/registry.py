"""Owned table of live launch, item and log records.

Records are keyed by a generated local id and removed explicitly once
their parent has consumed their finish settlement, which keeps memory
bounded over a long run.
"""

import asyncio
import uuid
from collections.abc import Iterable, Iterator

from .models import ItemRecord


class ItemRegistry:
    """Local id to ItemRecord table."""

    def __init__(self) -> None:
        self._records: dict[str, ItemRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, local_id: object) -> bool:
        return local_id in self._records

    def __iter__(self) -> Iterator[ItemRecord]:
        return iter(list(self._records.values()))

    def new_local_id(self) -> str:
        local_id = uuid.uuid4().hex
        while local_id in self._records:
            local_id = uuid.uuid4().hex
        return local_id

    def create(
        self,
        launch_id: str | None = None,
        parent_id: str | None = None,
    ) -> ItemRecord:
        """Create and register a record with unsettled start/finish signals.

        A record created without ``launch_id`` is a launch: it is its own
        launch and has no parent.
        """
        loop = asyncio.get_running_loop()
        local_id = self.new_local_id()
        record = ItemRecord(
            local_id=local_id,
            launch_id=launch_id or local_id,
            parent_id=parent_id,
            start=loop.create_future(),
            finish=loop.create_future(),
        )
        self._records[local_id] = record
        return record

    def get(self, local_id: str | None) -> ItemRecord | None:
        if local_id is None:
            return None
        return self._records.get(local_id)

    def remove(self, local_ids: Iterable[str]) -> None:
        for local_id in local_ids:
            self._records.pop(local_id, None)
