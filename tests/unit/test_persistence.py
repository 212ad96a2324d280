"""Unit tests for cache persistence and the blob stores."""

import asyncio
import json

import pytest

from planit.models import CacheEntry, LocationKey, PlaceCategory, SerializationFailure
from planit.services.cache import PlaceCacheStore
from planit.services.persistence import (
    CACHE_BLOB_KEY,
    PersistenceAdapter,
    decode_snapshot,
    encode_snapshot,
)
from planit.services.storage import (
    FileKeyValueStore,
    InMemoryKeyValueStore,
    RedisKeyValueStore,
    create_key_value_store,
)

from fakes import CENTER, RADIUS, FailingKeyValueStore, FakeClock, make_record

LOCATION = LocationKey.build(CENTER, RADIUS)
REST_KEY = LOCATION.for_category(PlaceCategory.RESTAURANTS)
CAFE_KEY = LOCATION.for_category(PlaceCategory.CAFES)


def _entries(now: float) -> dict:
    return {
        REST_KEY: CacheEntry(
            records=(make_record("Joe's Pizza", "p1"), make_record("No Id Diner")),
            timestamp=now - 100,
            next_cursor="tok2",
        ),
        CAFE_KEY: CacheEntry(
            records=(make_record("Blue Bottle", "c1", category=PlaceCategory.CAFES),),
            timestamp=now - 50,
        ),
    }


class GatedKeyValueStore(InMemoryKeyValueStore):
    """Blob store whose first write blocks until ``gate`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.writes = 0

    async def write_blob(self, key, data):
        self.writes += 1
        if self.writes == 1:
            await self.gate.wait()
        await super().write_blob(key, data)


class TestSnapshotCodec:
    """Tests for encode_snapshot/decode_snapshot."""

    def test_round_trip_preserves_entries(self) -> None:
        entries = _entries(1_700_000_000.0)
        decoded = decode_snapshot(encode_snapshot(entries, saved_at=1_700_000_000.0))
        assert decoded == entries
        assert decoded[REST_KEY].next_cursor == "tok2"
        assert decoded[REST_KEY].records[1].place_id is None

    def test_encoded_blob_is_json(self) -> None:
        blob = encode_snapshot(_entries(1000.0), saved_at=1000.0)
        payload = json.loads(blob)
        assert payload["version"] == 1
        assert payload["saved_at"] == 1000.0
        assert len(payload["entries"]) == 2

    def test_corrupt_blob_decodes_to_empty(self) -> None:
        assert decode_snapshot(b"\x00not json{") == {}

    def test_unknown_version_decodes_to_empty(self) -> None:
        assert decode_snapshot(b'{"version": 99, "entries": []}') == {}

    def test_non_object_payload_decodes_to_empty(self) -> None:
        assert decode_snapshot(b"[1, 2, 3]") == {}

    def test_deeply_nested_blob_decodes_to_empty(self) -> None:
        assert decode_snapshot(b"[" * 100000 + b"]" * 100000) == {}

    def test_invalid_entry_is_skipped(self) -> None:
        payload = json.loads(encode_snapshot(_entries(1000.0), saved_at=1000.0))
        payload["entries"][0]["entry"]["records"][0]["name"] = ""
        decoded = decode_snapshot(json.dumps(payload).encode())
        assert list(decoded) == [CAFE_KEY]

    def test_encode_failure_raises_serialization_failure(self) -> None:
        with pytest.raises(SerializationFailure):
            encode_snapshot({REST_KEY: "not an entry"}, saved_at=1.0)


class TestPersistenceAdapter:
    """Tests for flush/restore through a blob store."""

    def setup_method(self) -> None:
        self.clock = FakeClock()
        self.kv = InMemoryKeyValueStore()
        self.adapter = PersistenceAdapter(self.kv, clock=self.clock)
        self.store = PlaceCacheStore(clock=self.clock)

    @pytest.mark.asyncio
    async def test_flush_then_restore(self) -> None:
        self.store.load(_entries(self.clock.now))
        assert await self.adapter.flush(self.store) is True
        assert await self.kv.read_blob(CACHE_BLOB_KEY) is not None

        fresh = PlaceCacheStore(clock=self.clock)
        assert await self.adapter.restore(fresh) == 2
        assert fresh.snapshot() == self.store.snapshot()

    @pytest.mark.asyncio
    async def test_restore_skips_expired_entries(self) -> None:
        self.store.load(_entries(self.clock.now))
        await self.adapter.flush(self.store)
        self.clock.advance(3520)

        fresh = PlaceCacheStore(clock=self.clock)
        assert await self.adapter.restore(fresh) == 1
        assert CAFE_KEY in fresh
        assert REST_KEY not in fresh

    @pytest.mark.asyncio
    async def test_restore_with_nothing_stored(self) -> None:
        assert await self.adapter.restore(self.store) == 0

    @pytest.mark.asyncio
    async def test_restore_corrupt_blob_restores_nothing(self) -> None:
        await self.kv.write_blob(CACHE_BLOB_KEY, b"garbage")
        assert await self.adapter.restore(self.store) == 0
        assert len(self.store) == 0

    @pytest.mark.asyncio
    async def test_restore_deeply_nested_blob_restores_nothing(self) -> None:
        await self.kv.write_blob(CACHE_BLOB_KEY, b"[" * 100000)
        assert await self.adapter.restore(self.store) == 0
        assert len(self.store) == 0

    @pytest.mark.asyncio
    async def test_flush_failure_returns_false(self) -> None:
        adapter = PersistenceAdapter(FailingKeyValueStore(), clock=self.clock)
        self.store.load(_entries(self.clock.now))
        assert await adapter.flush(self.store) is False
        assert len(self.store) == 2

    @pytest.mark.asyncio
    async def test_flush_in_background(self) -> None:
        self.store.load(_entries(self.clock.now))
        task = self.adapter.flush_in_background(self.store)
        assert await task is True
        assert await self.kv.read_blob(CACHE_BLOB_KEY) is not None

    @pytest.mark.asyncio
    async def test_overlapping_flushes_land_in_order(self) -> None:
        kv = GatedKeyValueStore()
        adapter = PersistenceAdapter(kv, clock=self.clock)
        self.store.set_active_location(LOCATION)
        self.store.load(_entries(self.clock.now))

        first = adapter.flush_in_background(self.store)
        await asyncio.sleep(0)
        self.store.put(REST_KEY, [make_record("Late Night Ramen", "p9")])
        second = adapter.flush_in_background(self.store)
        await asyncio.sleep(0)
        assert adapter.pending == 2

        kv.gate.set()
        assert await first is True
        assert await second is True
        assert kv.writes == 2
        saved = decode_snapshot(await kv.read_blob(CACHE_BLOB_KEY))
        assert "p9" in [r.place_id for r in saved[REST_KEY].records]

    @pytest.mark.asyncio
    async def test_drain_waits_for_background_flushes(self) -> None:
        kv = GatedKeyValueStore()
        adapter = PersistenceAdapter(kv, clock=self.clock)
        self.store.load(_entries(self.clock.now))
        adapter.flush_in_background(self.store)
        adapter.flush_in_background(self.store)
        kv.gate.set()

        await adapter.drain()
        assert adapter.pending == 0
        assert kv.writes == 2


class TestFileKeyValueStore:
    """Tests for the file-backed blob store."""

    @pytest.mark.asyncio
    async def test_write_read_delete(self, tmp_path) -> None:
        kv = FileKeyValueStore(tmp_path / "cache")
        assert await kv.read_blob("allPlacesCache_v4") is None
        await kv.write_blob("allPlacesCache_v4", b"one")
        await kv.write_blob("allPlacesCache_v4", b"two")
        assert await kv.read_blob("allPlacesCache_v4") == b"two"
        assert await kv.delete("allPlacesCache_v4") is True
        assert await kv.delete("allPlacesCache_v4") is False

    @pytest.mark.asyncio
    async def test_unsafe_key_stays_inside_directory(self, tmp_path) -> None:
        kv = FileKeyValueStore(tmp_path)
        await kv.write_blob("../escape", b"data")
        assert await kv.read_blob("../escape") == b"data"
        assert not (tmp_path.parent / "escape.blob").exists()

    @pytest.mark.asyncio
    async def test_concurrent_writes_to_one_key(self, tmp_path) -> None:
        kv = FileKeyValueStore(tmp_path)
        payloads = [bytes([i]) * 500_000 for i in range(8)]
        await asyncio.gather(*(kv.write_blob("allPlacesCache_v4", p) for p in payloads))
        assert await kv.read_blob("allPlacesCache_v4") in payloads
        assert list(tmp_path.glob("*.tmp")) == []

    @pytest.mark.asyncio
    async def test_persistence_through_files(self, tmp_path) -> None:
        clock = FakeClock()
        store = PlaceCacheStore(clock=clock)
        store.load(_entries(clock.now))
        await PersistenceAdapter(FileKeyValueStore(tmp_path), clock=clock).flush(store)

        restored = PlaceCacheStore(clock=clock)
        adapter = PersistenceAdapter(FileKeyValueStore(tmp_path), clock=clock)
        assert await adapter.restore(restored) == 2


class TestInMemoryKeyValueStore:
    """Tests for the in-memory blob store."""

    @pytest.mark.asyncio
    async def test_last_write_wins(self) -> None:
        kv = InMemoryKeyValueStore()
        await kv.write_blob("k", b"a")
        await kv.write_blob("k", b"b")
        assert await kv.read_blob("k") == b"b"
        assert await kv.delete("k") is True
        assert await kv.read_blob("k") is None


class TestCreateKeyValueStore:
    """Tests for the storage backend factory."""

    def test_memory(self) -> None:
        assert isinstance(create_key_value_store("memory"), InMemoryKeyValueStore)

    def test_file(self, tmp_path) -> None:
        kv = create_key_value_store("file", path=str(tmp_path))
        assert isinstance(kv, FileKeyValueStore)
        assert kv.directory == tmp_path

    def test_redis(self) -> None:
        assert isinstance(create_key_value_store("redis"), RedisKeyValueStore)

    def test_unknown_falls_back_to_file(self, tmp_path) -> None:
        assert isinstance(create_key_value_store("s3", path=str(tmp_path)), FileKeyValueStore)
