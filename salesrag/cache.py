"""Bounded in-process cache with TTL-based eviction."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .config import config

if TYPE_CHECKING:
    from collections.abc import Callable

logger = config.get_logger(__name__)


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """Key/value cache whose entries expire after a time-to-live.

    Expired entries are dropped lazily on access and, once
    ``start_cleanup`` has been called inside a running event loop, by a
    periodic sweep. When ``max_entries`` is reached the oldest entry is
    evicted to make room. The owner that creates the cache controls its
    lifecycle; there is no module-level instance.
    """

    def __init__(
        self,
        default_ttl: float | None = None,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create an empty cache.

        Args:
            default_ttl: Seconds an entry lives when ``set`` gets no ttl.
                If None, uses config.CACHE_TTL_SECONDS.
            max_entries: Upper bound on stored entries. If None, uses
                config.CACHE_MAX_ENTRIES.
            clock: Monotonic time source, injectable for tests.
        """
        self.default_ttl = (
            default_ttl if default_ttl is not None else config.CACHE_TTL_SECONDS
        )
        self.max_entries = max(
            1, max_entries if max_entries is not None else config.CACHE_MAX_ENTRIES
        )
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._cleanup_task: asyncio.Task[None] | None = None

    @staticmethod
    def create_key(*parts: str | int | float) -> str:
        """Join key parts with colons."""  # noqa: DOC201
        return ":".join(str(part) for part in parts)

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:  # noqa: ANN401
        """Store a value for ``ttl`` seconds (the default TTL when omitted)."""
        ttl = self.default_ttl if ttl is None else ttl
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_entries:
            evicted, _entry = self._entries.popitem(last=False)
            logger.debug("Cache full, evicted %s", evicted)
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def get(self, key: str) -> Any | None:  # noqa: ANN401
        """Return a cached value, or None if it is missing or expired."""  # noqa: DOC201
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry.value

    def has(self, key: str) -> bool:
        """Check whether a key is present and not expired."""  # noqa: DOC201
        return self.get(key) is not None

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def evict_expired(self) -> int:
        """Drop every expired entry.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("Cache cleanup removed %d expired entries", len(expired))
        return len(expired)

    def stats(self) -> dict[str, Any]:
        """Report cache size and keys."""  # noqa: DOC201
        return {"size": len(self._entries), "entries": list(self._entries)}

    async def _sweep(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.evict_expired()

    def start_cleanup(self, interval: float | None = None) -> None:
        """Start the periodic sweep in the running event loop; no-op if running."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        interval = (
            interval if interval is not None else config.CACHE_SWEEP_INTERVAL_SECONDS
        )
        self._cleanup_task = asyncio.get_running_loop().create_task(
            self._sweep(interval)
        )

    async def stop_cleanup(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        task = self._cleanup_task
        self._cleanup_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def __len__(self) -> int:
        return len(self._entries)
