"""PlanIt Services.

Service layer components:
- Places: Google Places nearby search, details and text search
- Cache: TTL place cache with a record ceiling and change notifications
- Pagination: per-category "load next page" state for the active location
- Storage: file, Redis and in-memory blob stores
- Persistence: best-effort save/restore of the place cache
- Recommendations: Gemini (primary) + Groq (fallback) place recommendations
- Place Data: session facade tying the above together
"""

from .cache import CacheChange, ChangeReason, PlaceCacheStore
from .pagination import LoadSummary, PageResult, PaginationController, PaginationState
from .persistence import PersistenceAdapter
from .place_data import PlaceDataService, SearchResult
from .places import GooglePlacesProvider, PlacesPage, PlacesProvider
from .recommendations import (
    GeminiRecommendationOracle,
    GroqRecommendationOracle,
    Recommendation,
    RecommendationContext,
    RecommendationOracle,
    create_recommendation_oracle,
)
from .storage import (
    FileKeyValueStore,
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    create_key_value_store,
)

__all__ = [
    # Cache
    "CacheChange",
    "ChangeReason",
    "PlaceCacheStore",
    # Pagination
    "LoadSummary",
    "PageResult",
    "PaginationController",
    "PaginationState",
    # Persistence
    "PersistenceAdapter",
    # Facade
    "PlaceDataService",
    "SearchResult",
    # Places
    "GooglePlacesProvider",
    "PlacesPage",
    "PlacesProvider",
    # Recommendations
    "GeminiRecommendationOracle",
    "GroqRecommendationOracle",
    "Recommendation",
    "RecommendationContext",
    "RecommendationOracle",
    "create_recommendation_oracle",
    # Storage
    "FileKeyValueStore",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "RedisKeyValueStore",
    "create_key_value_store",
]
