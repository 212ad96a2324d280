"""Local key-value storage: file, Redis and in-memory backends."""

from .service import (
    FileKeyValueStore,
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    create_key_value_store,
)

__all__ = [
    "FileKeyValueStore",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "RedisKeyValueStore",
    "create_key_value_store",
]
