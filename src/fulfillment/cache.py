"""Short-TTL memoization for read-only catalog lookups.

One TTL for the whole cache; entries expire lazily on read. Only slowly
changing catalog data goes through here, never order calls.
"""

import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from src.fulfillment.config import CacheSettings


@dataclass
class CacheEntry:
    """A cached value and the clock reading when it was stored."""

    key: str
    value: Any
    stored_at: float


class ResponseCache:
    """In-process TTL cache keyed by request identity (``catalog:variant:<id>``)."""

    def __init__(
        self,
        settings: CacheSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = (settings or CacheSettings()).ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None when missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at > self._ttl:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, stored_at=self._clock())

    def invalidate(self, pattern: str | re.Pattern[str]) -> int:
        """Drop every entry whose key matches ``pattern`` (``re.search``).

        Returns:
            Number of entries removed.
        """
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        doomed = [key for key in self._entries if regex.search(key)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
