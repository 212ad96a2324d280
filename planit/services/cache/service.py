"""Place cache store.

Maps a CacheKey (rounded location + radius + category) to a CacheEntry of
de-duplicated place records, with TTL freshness and a ceiling on the total
number of records held in memory.

Entries are immutable: every write installs a new CacheEntry. All methods are
synchronous and are called from the event loop, which serializes mutations;
remote fetches happen elsewhere and publish their results through ``put``.

Invariants:
- A record never appears twice in one entry (see ``PlaceRecord.is_same_place``).
- An entry older than the TTL is evicted before it can be returned.
- A write for a location other than the active one is dropped.
- After ``trim_to_ceiling`` the total record count is at most ``max_records``.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Mapping

from planit.models import CacheEntry, CacheKey, LocationKey, PlaceCategory, PlaceRecord

logger = logging.getLogger(__name__)


class ChangeReason(str, Enum):
    """Why a cache key changed."""

    WRITTEN = "written"
    REPLACED = "replaced"
    LOADED = "loaded"
    EXPIRED = "expired"
    TRIMMED = "trimmed"
    CLEARED = "cleared"


@dataclass(frozen=True)
class CacheChange:
    """Change event delivered to cache subscribers."""
    key: CacheKey
    reason: ChangeReason


CacheListener = Callable[[CacheChange], None]


def merge_unique(
    existing: Iterable[PlaceRecord], incoming: Iterable[PlaceRecord]
) -> tuple[tuple[PlaceRecord, ...], int]:
    """Append the records of ``incoming`` not already present.

    Returns the merged tuple and the number of records added. Duplicates
    inside ``incoming`` itself are dropped as well.
    """
    merged = list(existing)
    added = 0
    for record in incoming:
        if any(record.is_same_place(other) for other in merged):
            continue
        merged.append(record)
        added += 1
    return tuple(merged), added


class PlaceCacheStore:
    """In-memory place cache with TTL and a record ceiling.

    Attributes:
        _entries: Entries ordered from least to most recently written.
        _active_location: Location whose results may currently be written.
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        max_records: int = 500,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            ttl_seconds: Freshness window for entries. Defaults to 1 hour.
            max_records: Ceiling on records across all entries.
            clock: Source of epoch seconds, injectable for tests.
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_records <= 0:
            raise ValueError("max_records must be positive")
        self._ttl = ttl_seconds
        self._max_records = max_records
        self._clock = clock
        self._entries: OrderedDict[CacheKey, CacheEntry] = OrderedDict()
        self._active_location: LocationKey | None = None
        self._listeners: list[CacheListener] = []

    # ── Notifications ─────────────────────────────────────────────────

    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            A callable that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, key: CacheKey, reason: ChangeReason) -> None:
        change = CacheChange(key=key, reason=reason)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception(f"[CACHE] Listener failed for {key} ({reason.value})")

    # ── Active location ───────────────────────────────────────────────

    @property
    def active_location(self) -> LocationKey | None:
        return self._active_location

    def set_active_location(self, location: LocationKey | None) -> None:
        """Mark the location whose results may be written from now on."""
        self._active_location = location

    def _accepts(self, key: CacheKey) -> bool:
        # Checked when the write happens, not when the fetch was issued.
        if self._active_location is not None and key.location != self._active_location:
            logger.debug(f"[CACHE] Discarding stale write for {key}")
            return False
        return True

    # ── Reads ─────────────────────────────────────────────────────────

    def is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.timestamp < self._ttl

    def get(self, key: CacheKey) -> CacheEntry | None:
        """Return the entry for ``key`` if it is still fresh.

        A stale entry is evicted and None is returned. A cold miss has no
        side effect.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not self.is_fresh(entry):
            del self._entries[key]
            logger.debug(f"[CACHE] Expired {key}")
            self._emit(key, ChangeReason.EXPIRED)
            return None
        return entry

    # ── Writes ────────────────────────────────────────────────────────

    def put(
        self,
        key: CacheKey,
        records: Iterable[PlaceRecord],
        cursor: str | None = None,
    ) -> CacheEntry | None:
        """Create or extend the entry for ``key``.

        Only records not already present are appended; cursor and timestamp
        are updated either way. An expired entry is not extended, it is
        started over.

        Returns:
            The entry as stored, or None if the write was for a stale key.
        """
        if not self._accepts(key):
            return None
        existing = self._entries.get(key)
        base = existing.records if existing is not None and self.is_fresh(existing) else ()
        merged, added = merge_unique(base, records)
        self._install(key, CacheEntry(records=merged, timestamp=self._clock(), next_cursor=cursor))
        logger.debug(f"[CACHE] {key}: +{added} records ({len(merged)} total)")
        self._emit(key, ChangeReason.WRITTEN)
        self.trim_to_ceiling()
        return self._entries.get(key)

    def replace(
        self,
        key: CacheKey,
        records: Iterable[PlaceRecord],
        cursor: str | None = None,
    ) -> CacheEntry | None:
        """Replace the entry for ``key`` wholesale (forced refresh)."""
        if not self._accepts(key):
            return None
        merged, _ = merge_unique((), records)
        self._install(key, CacheEntry(records=merged, timestamp=self._clock(), next_cursor=cursor))
        self._emit(key, ChangeReason.REPLACED)
        self.trim_to_ceiling()
        return self._entries.get(key)

    def _install(self, key: CacheKey, entry: CacheEntry) -> None:
        self._entries[key] = entry
        self._entries.move_to_end(key)

    def load(self, entries: Mapping[CacheKey, CacheEntry]) -> int:
        """Install entries read back from persistent storage.

        Entries are installed oldest first so write order follows their
        timestamps. Already expired entries are skipped, and an entry never
        overwrites a newer one held in memory.

        Returns:
            Number of entries installed.
        """
        loaded = 0
        for key, entry in sorted(entries.items(), key=lambda item: item[1].timestamp):
            if not self.is_fresh(entry):
                continue
            current = self._entries.get(key)
            if current is not None and current.timestamp >= entry.timestamp:
                continue
            deduped, _ = merge_unique((), entry.records)
            self._install(key, entry.model_copy(update={"records": deduped}))
            self._emit(key, ChangeReason.LOADED)
            loaded += 1
        self.trim_to_ceiling()
        return loaded

    # ── Eviction ──────────────────────────────────────────────────────

    def evict_expired(self) -> int:
        """Remove every entry past its TTL.  Safe to call at any time."""
        expired = [key for key, entry in self._entries.items() if not self.is_fresh(entry)]
        for key in expired:
            del self._entries[key]
            self._emit(key, ChangeReason.EXPIRED)
        if expired:
            logger.info(f"[CACHE] Cleared {len(expired)} expired cache entries")
        return len(expired)

    def trim_to_ceiling(self) -> int:
        """Drop least-recently-written entries until under the ceiling.

        If the most recent entry alone exceeds the ceiling, its oldest
        records are dropped instead of the whole entry.

        Returns:
            Number of records removed.
        """
        removed = 0
        while self.total_records > self._max_records and len(self._entries) > 1:
            key, entry = self._entries.popitem(last=False)
            removed += len(entry.records)
            self._emit(key, ChangeReason.TRIMMED)
        if self.total_records > self._max_records:
            key, entry = next(iter(self._entries.items()))
            kept = entry.records[-self._max_records:]
            removed += len(entry.records) - len(kept)
            self._entries[key] = entry.model_copy(update={"records": kept})
            self._emit(key, ChangeReason.TRIMMED)
        if removed:
            logger.info(f"[CACHE] Trimmed {removed} records to stay under {self._max_records}")
        return removed

    def clear(self, location: LocationKey | None = None) -> int:
        """Remove all entries, or only those of ``location``.

        Returns:
            Number of entries removed.
        """
        keys = [
            key for key in self._entries
            if location is None or key.location == location
        ]
        for key in keys:
            del self._entries[key]
            self._emit(key, ChangeReason.CLEARED)
        return len(keys)

    # ── Introspection ─────────────────────────────────────────────────

    def snapshot(self) -> dict[CacheKey, CacheEntry]:
        """Copy of the key → entry map, in write order."""
        return dict(self._entries)

    @property
    def total_records(self) -> int:
        return sum(len(entry.records) for entry in self._entries.values())

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    @property
    def max_records(self) -> int:
        return self._max_records

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
