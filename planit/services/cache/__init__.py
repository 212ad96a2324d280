"""Place cache: TTL, record ceiling and change notifications."""

from .service import (
    CacheChange,
    CacheListener,
    ChangeReason,
    PlaceCacheStore,
    merge_unique,
)

__all__ = [
    "CacheChange",
    "CacheListener",
    "ChangeReason",
    "PlaceCacheStore",
    "merge_unique",
]
