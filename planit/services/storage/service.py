"""Local key-value storage for serialized cache blobs.

This module provides an abstract blob store interface and three backends:
- FileKeyValueStore: one file per key in a local directory (device storage)
- RedisKeyValueStore: Redis strings, for hosts that already run Redis
- InMemoryKeyValueStore: process memory, for tests and ephemeral hosts

No transactional guarantees: the last write for a key wins.
"""

import asyncio
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Abstract base class for blob stores."""

    @abstractmethod
    async def read_blob(self, key: str) -> bytes | None:
        """Read the blob stored under ``key``.

        Args:
            key: The storage key.

        Returns:
            The stored bytes, or None if nothing is stored under the key.
        """
        pass

    @abstractmethod
    async def write_blob(self, key: str, data: bytes) -> None:
        """Store ``data`` under ``key``, replacing any previous value.

        Args:
            key: The storage key.
            data: The bytes to store.
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key.

        Returns:
            True if the key was deleted, False if it didn't exist.
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryKeyValueStore(KeyValueStore):
    """Dictionary-backed store."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    async def read_blob(self, key: str) -> bytes | None:
        return self._blobs.get(key)

    async def write_blob(self, key: str, data: bytes) -> None:
        self._blobs[key] = bytes(data)

    async def delete(self, key: str) -> bool:
        return self._blobs.pop(key, None) is not None


class FileKeyValueStore(KeyValueStore):
    """One file per key under a local directory.

    Writes go to a temporary file that is then renamed over the target, so a
    crash mid-write leaves the previous blob intact.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def _path_for(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self._directory / f"{safe}.blob"

    def _read(self, path: Path) -> bytes | None:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def _write(self, path: Path, data: bytes) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        # Unique per write, so concurrent writers never share a temp file.
        with tempfile.NamedTemporaryFile(
            dir=self._directory, prefix=f"{path.stem}.", suffix=".tmp", delete=False
        ) as tmp:
            tmp.write(data)
        try:
            os.replace(tmp.name, path)
        except OSError:
            Path(tmp.name).unlink(missing_ok=True)
            raise

    def _delete(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    async def read_blob(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._read, self._path_for(key))

    async def write_blob(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._write, self._path_for(key), data)

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self._delete, self._path_for(key))

    @property
    def directory(self) -> Path:
        return self._directory


class RedisKeyValueStore(KeyValueStore):
    """Redis-based blob store.

    Attributes:
        _client: The Redis async client instance.
        _key_prefix: Prefix applied to every key.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "planit:",
    ) -> None:
        """Initialize the Redis store.

        Args:
            redis_url: Redis connection URL. Defaults to localhost:6379.
            key_prefix: Namespace prefix for stored keys.
        """
        self._redis_url = redis_url
        self._key_prefix = key_prefix
        self._client: redis.Redis | None = None

    async def connect(self) -> None:
        """Establish connection to Redis.

        Blobs are raw bytes, so responses are not decoded.
        """
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=False)

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _ensure_connected(self) -> redis.Redis:
        if self._client is None:
            await self.connect()
        return self._client  # type: ignore

    async def read_blob(self, key: str) -> bytes | None:
        client = await self._ensure_connected()
        return await client.get(self._key_prefix + key)

    async def write_blob(self, key: str, data: bytes) -> None:
        client = await self._ensure_connected()
        await client.set(self._key_prefix + key, data)

    async def delete(self, key: str) -> bool:
        client = await self._ensure_connected()
        result = await client.delete(self._key_prefix + key)
        return result > 0


def create_key_value_store(
    backend: str,
    path: str = ".planit_cache",
    redis_url: str = "redis://localhost:6379",
) -> KeyValueStore:
    """Create the configured blob store.  Unknown backends fall back to files."""
    if backend == "memory":
        return InMemoryKeyValueStore()
    if backend == "redis":
        logger.info(f"[STORE] Using Redis at {redis_url}")
        return RedisKeyValueStore(redis_url=redis_url)
    if backend != "file":
        logger.warning(f"[STORE] Unknown storage backend {backend!r}, using files")
    logger.info(f"[STORE] Using file storage in {path}")
    return FileKeyValueStore(path)
