"""Persistence adapter: save and restore the place cache.

The whole key → entry map (records, cursors and timestamps) is written as a
single JSON blob to a KeyValueStore when the host calls ``flush()``, and read
back by ``restore()`` on the next cold start.

Persistence is best-effort:
- a failed save is logged and reported as ``False``, never raised;
- an unreadable blob restores nothing;
- an entry that fails validation is skipped, the rest are restored.

Restored entries still go through the normal TTL check before being served.
"""

import asyncio
import json
import logging
import time
from typing import Callable, Mapping

from pydantic import BaseModel, ValidationError

from planit.models import CacheEntry, CacheKey, SerializationFailure
from planit.services.cache import PlaceCacheStore
from planit.services.storage import KeyValueStore

logger = logging.getLogger(__name__)

CACHE_BLOB_KEY = "allPlacesCache_v4"
SNAPSHOT_VERSION = 1


class PersistedEntry(BaseModel):
    """One serialized cache entry with its key."""

    key: CacheKey
    entry: CacheEntry


def encode_snapshot(entries: Mapping[CacheKey, CacheEntry], saved_at: float) -> bytes:
    """Serialize a key → entry map.

    Raises:
        SerializationFailure: If the map cannot be serialized.
    """
    try:
        payload = {
            "version": SNAPSHOT_VERSION,
            "saved_at": saved_at,
            "entries": [
                PersistedEntry(key=key, entry=entry).model_dump(mode="json")
                for key, entry in entries.items()
            ],
        }
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise SerializationFailure(f"Could not encode cache snapshot: {e}") from e


def decode_snapshot(blob: bytes) -> dict[CacheKey, CacheEntry]:
    """Deserialize a blob written by ``encode_snapshot``.

    Never raises: a corrupt blob decodes to an empty map and invalid entries
    are skipped.
    """
    try:
        payload = json.loads(blob.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        logger.warning(f"[PERSIST] Ignoring unreadable cache blob: {e}")
        return {}
    if not isinstance(payload, dict) or payload.get("version") != SNAPSHOT_VERSION:
        logger.warning("[PERSIST] Ignoring cache blob with unknown format")
        return {}
    raw_entries = payload.get("entries")
    if not isinstance(raw_entries, list):
        logger.warning("[PERSIST] Ignoring cache blob without entries")
        return {}

    entries: dict[CacheKey, CacheEntry] = {}
    skipped = 0
    for raw in raw_entries:
        try:
            item = PersistedEntry.model_validate(raw)
        except ValidationError:
            skipped += 1
            continue
        entries[item.key] = item.entry
    if skipped:
        logger.info(f"[PERSIST] Skipped {skipped} unreadable cache entries")
    return entries


class PersistenceAdapter:
    """Saves and restores a PlaceCacheStore through a KeyValueStore.

    Flushes run one at a time, in the order they were requested, and each
    one snapshots the store only when its turn comes, so a later flush never
    loses to an earlier one.
    """

    def __init__(
        self,
        kv_store: KeyValueStore,
        blob_key: str = CACHE_BLOB_KEY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._kv = kv_store
        self._blob_key = blob_key
        self._clock = clock
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()

    @property
    def kv_store(self) -> KeyValueStore:
        return self._kv

    @property
    def pending(self) -> int:
        """Number of background flushes not yet finished."""
        return len(self._pending)

    async def flush(self, store: PlaceCacheStore) -> bool:
        """Write the current cache contents.

        Returns:
            True if the snapshot was written, False otherwise.
        """
        async with self._lock:
            # Taken under the lock, so it is never older than a blob already written.
            entries = store.snapshot()
            try:
                blob = encode_snapshot(entries, saved_at=self._clock())
                await self._kv.write_blob(self._blob_key, blob)
            except Exception as e:
                logger.warning(f"[PERSIST] Cache save failed: {e}")
                return False
        records = sum(len(entry.records) for entry in entries.values())
        logger.info(f"[PERSIST] Saved {records} places in {len(entries)} cache entries")
        return True

    def flush_in_background(self, store: PlaceCacheStore) -> asyncio.Task:
        """Schedule ``flush`` without waiting for it."""
        task = asyncio.create_task(self.flush(store))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every background flush scheduled so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def read(self) -> dict[CacheKey, CacheEntry]:
        """Read back the last saved map.  Empty if nothing usable is stored."""
        try:
            blob = await self._kv.read_blob(self._blob_key)
            if not blob:
                return {}
            return decode_snapshot(blob)
        except Exception as e:
            logger.warning(f"[PERSIST] Cache read failed: {e}")
            return {}

    async def restore(self, store: PlaceCacheStore) -> int:
        """Load the saved map into ``store``.

        Returns:
            Number of fresh entries restored.
        """
        entries = await self.read()
        loaded = store.load(entries)
        logger.info(f"[PERSIST] Restored {loaded} of {len(entries)} cached entries")
        return loaded
