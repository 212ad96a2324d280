"""Persistence: best-effort save/restore of the place cache."""

from .service import (
    CACHE_BLOB_KEY,
    PersistedEntry,
    PersistenceAdapter,
    decode_snapshot,
    encode_snapshot,
)

__all__ = [
    "CACHE_BLOB_KEY",
    "PersistedEntry",
    "PersistenceAdapter",
    "decode_snapshot",
    "encode_snapshot",
]
