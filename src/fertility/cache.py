"""In-memory TTL cache for record reads.

The cache is a disposable view over the record store, owned by a single
DataManager.  It is never a source of truth: every write invalidates the
affected keys before returning.

Cache keys:
    - dayRecord_<date>                  one DayRecord
    - dayRecordsRange_<start>_<end>     sparse list of DayRecords in a range
    - cycles                            list of MenstrualCycle
    - userSettings                      UserSettings
"""

from __future__ import annotations

import copy
import logging
import time
from typing import Any, Callable

logger = logging.getLogger("fertility.cache")

CYCLES_KEY = "cycles"
USER_SETTINGS_KEY = "userSettings"
_DAY_PREFIX = "dayRecord_"
_RANGE_PREFIX = "dayRecordsRange_"


def day_record_key(day: str) -> str:
    """Cache key for a single DayRecord.

    Args:
        day: ISO date (YYYY-MM-DD).

    Returns:
        Key string, e.g. ``dayRecord_2025-01-06``.
    """
    return f"{_DAY_PREFIX}{day}"


def range_key(start: str, end: str) -> str:
    """Cache key for an inclusive date range query."""
    return f"{_RANGE_PREFIX}{start}_{end}"


def range_covers(key: str, day: str) -> bool:
    """Return True if ``key`` is a range key whose range includes ``day``.

    ISO dates compare correctly as strings.
    """
    if not key.startswith(_RANGE_PREFIX):
        return False
    start, _, end = key[len(_RANGE_PREFIX):].partition("_")
    return start <= day <= end


class TTLCache:
    """Per-key expiring cache.

    Expired entries are dropped when read.  When ``max_entries`` is set, the
    entry closest to expiry is evicted to make room for a new key.  Values
    are deep-copied on the way in and out so callers cannot mutate cached
    state.

    Usage::

        cache = TTLCache(ttl_seconds=300)
        cache.set(day_record_key("2025-01-06"), record)
        hit = cache.get(day_record_key("2025-01-06"))
        cache.invalidate_where(lambda key: range_covers(key, "2025-01-06"))
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be non-negative")
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: str) -> Any | None:
        """Return a copy of the cached value, or None on a miss or expiry.

        Args:
            key: Cache key.

        Returns:
            Deep copy of the value, or None.
        """
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Cache miss: %s", key)
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            logger.debug("Cache expired: %s", key)
            return None
        logger.debug("Cache hit: %s", key)
        return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store a copy of ``value`` under ``key``.

        Args:
            key:         Cache key.
            value:       Value to cache (deep-copied).
            ttl_seconds: Override the default time-to-live for this entry.
        """
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        now = self._clock()
        if self._max_entries is not None and key not in self._entries:
            self._purge_expired(now)
            while len(self._entries) >= self._max_entries:
                victim = min(self._entries, key=lambda k: self._entries[k][0])
                del self._entries[victim]
                logger.debug("Cache evicted: %s", victim)
        self._entries[key] = (now + ttl, copy.deepcopy(value))

    def invalidate(self, key: str) -> bool:
        """Drop one key.  Returns True if it was present."""
        removed = self._entries.pop(key, None) is not None
        if removed:
            logger.debug("Cache invalidated: %s", key)
        return removed

    def invalidate_where(self, predicate: Callable[[str], bool]) -> int:
        """Drop every key matching ``predicate``.

        Args:
            predicate: Called with each key; True means drop it.

        Returns:
            Number of keys dropped.
        """
        doomed = [k for k in self._entries if predicate(k)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug("Cache invalidated %d key(s)", len(doomed))
        return len(doomed)

    def clear(self) -> None:
        """Reset the cache."""
        self._entries.clear()

    def _purge_expired(self, now: float) -> None:
        for key in [k for k, (exp, _) in self._entries.items() if now >= exp]:
            del self._entries[key]

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and self._clock() < entry[0]

    def __len__(self) -> int:
        self._purge_expired(self._clock())
        return len(self._entries)
