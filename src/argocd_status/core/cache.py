# ABOUTME: In-memory TTL cache shared by the detection and query services
# ABOUTME: Lazy expiry on read, explicit invalidation, stale reads for fallbacks

"""
Time-to-live key/value cache.

Entries are never mutated: set() replaces the entry for a key wholesale, and
expired entries stay in storage until they are overwritten or invalidated.
get() treats them as absent; get_stale() still returns them, which is what
the application list uses when a refetch fails transiently.

All methods are synchronous. Under a single event loop no other coroutine can
run between a read and a write, so no locking is needed.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

DETECTION_PREFIX = "detection:"
APPLICATIONS_PREFIX = "applications:"
OPERATOR_PREFIX = "operator:"


def _context_part(context: str | None) -> str:
    return context or "current"


def detection_key(context: str | None) -> str:
    return f"{DETECTION_PREFIX}{_context_part(context)}"


def applications_key(context: str | None) -> str:
    return f"{APPLICATIONS_PREFIX}{_context_part(context)}"


def operator_key(context: str | None) -> str:
    return f"{OPERATOR_PREFIX}{_context_part(context)}"


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    written_at: float
    ttl_seconds: float

    def is_valid(self, now: float) -> bool:
        return now - self.written_at < self.ttl_seconds


class TTLCache:
    """
    Cache with a per-entry time-to-live.

    Args:
        clock: Returns the current time in seconds. Defaults to time.monotonic;
               tests pass a manual clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None when missing or expired."""
        entry = self._entries.get(key)
        if entry is None or not entry.is_valid(self._clock()):
            return None
        return entry.value

    def get_stale(self, key: str) -> Any | None:
        """Return the last value written for key, ignoring expiry."""
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        self._entries[key] = CacheEntry(value=value, written_at=self._clock(), ttl_seconds=ttl_seconds)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> None:
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
