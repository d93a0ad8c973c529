"""Short-lived cache for one-shot recent-block requests."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import List, Optional

from ..models import BlockSource, RecentBlock
from ..providers.base import BlockProvider, fetch_with_fallback


@dataclass(slots=True)
class CacheEntry:
    expires_at: float
    blocks: List[RecentBlock]
    source: BlockSource


class RecentBlocksCache:
    """TTL cache with in-flight coalescing.

    Concurrent misses share a single provider load. The cache holds one entry
    regardless of the requested limit.
    """

    def __init__(
        self,
        fallback: BlockProvider,
        primary: Optional[BlockProvider] = None,
        *,
        ttl_ms: int = 800,
        primary_enabled: bool = False,
    ) -> None:
        self._fallback = fallback
        self._primary = primary if primary_enabled else None
        self._ttl = ttl_ms / 1000
        self._entry: Optional[CacheEntry] = None
        self._in_flight: Optional[asyncio.Future[CacheEntry]] = None

    def peek(self) -> Optional[CacheEntry]:
        entry = self._entry
        if entry is not None and entry.expires_at > time.monotonic():
            return entry
        return None

    async def get(self, limit: int) -> tuple[CacheEntry, bool]:
        """Return ``(entry, cached)``; provider errors propagate."""
        entry = self.peek()
        if entry is not None:
            return entry, True

        if self._in_flight is None:
            self._in_flight = asyncio.ensure_future(self._load(limit))
            self._in_flight.add_done_callback(self._clear_in_flight)
        # a cancelled waiter must not cancel the shared load
        entry = await asyncio.shield(self._in_flight)
        self._entry = entry
        return entry, False

    def _clear_in_flight(self, future: asyncio.Future) -> None:
        if self._in_flight is future:
            self._in_flight = None
        if not future.cancelled():
            future.exception()  # mark retrieved; waiters re-raise it

    async def _load(self, limit: int) -> CacheEntry:
        blocks, source = await fetch_with_fallback(self._primary, self._fallback, limit)
        return CacheEntry(expires_at=time.monotonic() + self._ttl, blocks=blocks, source=source)
