"""
Raw Listen Row Cache

Memoizes the full validated listen log per store handle so every locally
computed metric in a session shares a single fetch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from listen_analytics.db.listen_store import ListenStore
from listen_analytics.services.analytics_types import ListenEvent
from listen_analytics.services.local_engine import parse_listen_rows

logger = logging.getLogger(__name__)


@dataclass
class CacheSlot:
    """An in-flight or resolved fetch for one store handle."""

    store: ListenStore
    task: asyncio.Task
    created_at: float = field(default_factory=time.time)

    def is_resolved(self) -> bool:
        return (
            self.task.done()
            and not self.task.cancelled()
            and self.task.exception() is None
        )


class RawRowCache:
    """
    One cache slot per store handle.

    Features:
    - At most one fetch in flight per handle; late callers join it
    - Failed fetches are evicted so the next call retries
    - Callers that are cancelled never abort the shared fetch
    - Hit/miss tracking for monitoring
    """

    def __init__(self) -> None:
        # Keyed by id(store); the slot keeps the store alive so ids are not reused
        self._slots: dict[int, CacheSlot] = {}
        self._hits = 0
        self._misses = 0
        self._fetches = 0
        self._failures = 0

    async def _load(self, store: ListenStore) -> list[ListenEvent]:
        started = time.perf_counter()
        rows = await store.fetch_listens()
        events = parse_listen_rows(rows)
        elapsed = (time.perf_counter() - started) * 1000
        logger.debug(
            f"Loaded {len(events)} valid listens of {len(rows)} rows in {elapsed:.1f}ms"
        )
        return events

    def _on_done(self, key: int, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is not None:
            self._evict(key, task)

    def _evict(self, key: int, task: asyncio.Task) -> None:
        slot = self._slots.get(key)
        if slot is not None and slot.task is task:
            del self._slots[key]
            self._failures += 1
            logger.info("Evicted failed listen fetch from cache")

    async def get_listens(self, store: ListenStore) -> list[ListenEvent]:
        """
        Get the validated listen log for a store, fetching at most once.

        Args:
            store: Store handle exposing ``fetch_listens``

        Returns:
            Valid listen events sorted by timestamp

        Raises:
            Whatever the store raised; the slot is cleared first
        """
        key = id(store)
        slot = self._slots.get(key)

        if slot is not None and slot.is_resolved():
            self._hits += 1
            return slot.task.result()

        if slot is None:
            self._misses += 1
            self._fetches += 1
            logger.debug("Listen cache miss, fetching rows")
            task = asyncio.ensure_future(self._load(store))
            slot = CacheSlot(store=store, task=task)
            self._slots[key] = slot
            task.add_done_callback(partial(self._on_done, key))
        else:
            self._hits += 1
            logger.debug("Joining in-flight listen fetch")

        try:
            return await asyncio.shield(slot.task)
        except Exception:
            self._evict(key, slot.task)
            raise

    def invalidate(self, store: ListenStore) -> bool:
        """
        Drop the slot for a store handle.

        Returns:
            True if a slot was found and removed
        """
        return self._slots.pop(id(store), None) is not None

    def invalidate_all(self) -> int:
        count = len(self._slots)
        self._slots.clear()
        logger.info(f"Cleared listen cache ({count} entries)")
        return count

    def get_stats(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dict with slot, hit, miss and fetch counts
        """
        total = self._hits + self._misses
        hit_ratio = self._hits / total if total > 0 else 0
        return {
            "size": len(self._slots),
            "hits": self._hits,
            "misses": self._misses,
            "fetches": self._fetches,
            "failures": self._failures,
            "hit_ratio": round(hit_ratio, 4),
            "total_requests": total,
        }
