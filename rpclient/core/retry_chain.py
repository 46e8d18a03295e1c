"""Serializes repeated attempts of the same test slot.

Every started item publishes its start signal under its retry-chain
key. A start flagged as a retry first acquires the signal published by
the previous attempt and waits for it to settle, so the collector sees
attempts in execution order and never overlapping.
"""

import asyncio
import logging
from typing import Any

from .models import RetryChainKey

logger = logging.getLogger(__name__)


class RetryChainDeduplicator:
    """Map of retry-chain key to the start signal of the latest attempt."""

    def __init__(self) -> None:
        self._chain: dict[RetryChainKey, asyncio.Future[Any]] = {}
        self._owners: dict[RetryChainKey, str] = {}
        self._keys_by_owner: dict[str, RetryChainKey] = {}

    def __len__(self) -> int:
        return len(self._chain)

    @staticmethod
    def make_key(
        launch_id: str,
        parent_id: str | None,
        name: str,
        unique_id: str | None = None,
    ) -> RetryChainKey:
        return RetryChainKey(launch_id, parent_id, name, unique_id or "")

    def acquire(self, key: RetryChainKey) -> "asyncio.Future[Any] | None":
        """Return the start signal of the previous attempt, if any."""
        return self._chain.get(key)

    def publish(
        self, key: RetryChainKey, signal: "asyncio.Future[Any]", owner: str
    ) -> None:
        """Make ``signal`` the one the next attempt under ``key`` waits on."""
        previous_owner = self._owners.get(key)
        if previous_owner is not None and previous_owner != owner:
            self._keys_by_owner.pop(previous_owner, None)
        self._chain[key] = signal
        self._owners[key] = owner
        self._keys_by_owner[owner] = key

    def release(self, key: RetryChainKey) -> None:
        """Forget the chain entry for ``key``."""
        self._chain.pop(key, None)
        owner = self._owners.pop(key, None)
        if owner is not None:
            self._keys_by_owner.pop(owner, None)

    def release_owners(self, owners: list[str]) -> None:
        """Drop the entries published by the given items.

        An entry is only removed while it still belongs to one of the
        owners; a later attempt that replaced it keeps its entry.
        """
        for owner in owners:
            key = self._keys_by_owner.pop(owner, None)
            if key is not None and self._owners.get(key) == owner:
                self._chain.pop(key, None)
                self._owners.pop(key, None)

    def purge_launch(self, launch_id: str) -> int:
        """Drop every entry recorded under a launch. Returns the count."""
        keys = [key for key in self._chain if key.launch_id == launch_id]
        for key in keys:
            self.release(key)
        if keys:
            logger.debug(f"Purged {len(keys)} retry chain entries of launch {launch_id}")
        return len(keys)
