"""Place data service: the one object the app talks to.

Owns the place cache, the pagination controller and the detail cache for a
single user session, and wires them to the places provider, persistence and
the recommendation oracle:

- ``set_location()``  first page of every category for a new search centre
- ``load_more()``     next page of one category (infinite scroll)
- ``load_detailed_place()``  details on demand, with a 24h LRU cache
- ``search()``        free-text search near the active location
- ``recommend()``     oracle recommendations for the current context
- ``flush()`` / ``restore()``  explicit lifecycle hooks for the host

Transport problems never escape as exceptions from here; they come back as
``failed`` flags or ``None``.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from planit.models import (
    Coordinates,
    DetailedPlaceRecord,
    LocationKey,
    PlaceCategory,
    PlaceRecord,
    TransportFailure,
)
from planit.services.cache import CacheListener, PlaceCacheStore
from planit.services.pagination import LoadSummary, PageResult, PaginationController
from planit.services.persistence import PersistenceAdapter
from planit.services.places import PlacesProvider
from planit.services.recommendations import (
    FALLBACK_RECOMMENDATIONS,
    Recommendation,
    RecommendationContext,
    RecommendationOracle,
)
from planit.utils.cache import LRUCache

logger = logging.getLogger(__name__)

NO_PLACES_MESSAGE = "No places found in this area. Try expanding your search radius."


@dataclass
class SearchResult:
    """Outcome of a free-text search."""
    query: str
    places: list[PlaceRecord] = field(default_factory=list)
    failed: bool = False
    error: Optional[str] = None


class PlaceDataService:
    """Facade over cache, pagination, details, search and recommendations."""

    def __init__(
        self,
        provider: PlacesProvider,
        store: PlaceCacheStore,
        persistence: PersistenceAdapter | None = None,
        oracle: RecommendationOracle | None = None,
        default_radius_meters: int = 3219,
        detail_cache_ttl_seconds: int = 86400,
        detail_cache_size: int = 100,
    ) -> None:
        self._provider = provider
        self._store = store
        self._persistence = persistence
        self._oracle = oracle
        self._default_radius = default_radius_meters
        self._controller = PaginationController(store, provider)
        self._details: LRUCache[DetailedPlaceRecord] = LRUCache(
            max_size=detail_cache_size, ttl_seconds=detail_cache_ttl_seconds
        )
        self.error_message: str | None = None
        self.search_results: list[PlaceRecord] = []

    # ── State ─────────────────────────────────────────────────────────

    @property
    def store(self) -> PlaceCacheStore:
        return self._store

    @property
    def controller(self) -> PaginationController:
        return self._controller

    @property
    def oracle(self) -> RecommendationOracle | None:
        return self._oracle

    @property
    def location(self) -> LocationKey | None:
        return self._controller.location

    @property
    def is_loading(self) -> bool:
        return self._controller.is_loading

    def places(self, category: PlaceCategory) -> list[PlaceRecord]:
        """Cached records of ``category`` for the active location."""
        location = self._controller.location
        if location is None:
            return []
        entry = self._store.get(location.for_category(category))
        return list(entry.records) if entry is not None else []

    def all_places(self) -> dict[PlaceCategory, list[PlaceRecord]]:
        return {c: self.places(c) for c in self._controller.categories}

    def find_place(self, place_id: str) -> PlaceRecord | None:
        """Look up a loaded or searched place by provider id."""
        for places in self.all_places().values():
            for place in places:
                if place.place_id == place_id:
                    return place
        for place in self.search_results:
            if place.place_id == place_id:
                return place
        return None

    def has_more(self, category: PlaceCategory) -> bool:
        return self._controller.state(category).has_more

    def is_exhausted(self, category: PlaceCategory) -> bool:
        return self._controller.state(category).exhausted

    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        return self._store.subscribe(listener)

    # ── Loading ───────────────────────────────────────────────────────

    async def set_location(
        self,
        coordinates: Coordinates,
        radius_meters: int | None = None,
        force_refresh: bool = False,
    ) -> LoadSummary:
        """Make ``coordinates`` the active search centre and load first pages.

        Cached entries for the location are served immediately and merged
        with the fresh first page; ``force_refresh`` replaces them instead.
        """
        radius = radius_meters or self._default_radius
        location = self._controller.change_location(coordinates, radius)
        self.error_message = None
        logger.info(
            f"[PLACES] Loading places for all categories at "
            f"{coordinates.lat:.4f},{coordinates.lng:.4f} with radius {radius}m"
        )

        summary = await self._controller.load_initial(force_refresh=force_refresh)
        if summary.stale or location != self._controller.location:
            return summary

        total = sum(len(self.places(c)) for c in self._controller.categories)
        if total == 0:
            self.error_message = NO_PLACES_MESSAGE
        elif self._persistence is not None:
            self._persistence.flush_in_background(self._store)
        return summary

    async def load_more(self, category: PlaceCategory) -> PageResult:
        """Next page of ``category``.  No-op once the category is exhausted."""
        result = await self._controller.request_page(category)
        if result.added and self._persistence is not None:
            self._persistence.flush_in_background(self._store)
        return result

    async def load_detailed_place(self, place: PlaceRecord) -> DetailedPlaceRecord | None:
        """Details for ``place``, or None if they cannot be fetched.

        The record keeps the category it was listed under. When an oracle
        is configured the record also gets a short generated description.
        """
        if not place.place_id:
            logger.debug(f"[PLACES] No place id for {place.name!r}, skipping details")
            return None
        cached = self._details.get(place.place_id)
        if cached is not None:
            return cached

        try:
            details = await self._provider.get_details(place.place_id)
        except TransportFailure as e:
            logger.warning(f"[PLACES] Details for {place.name!r} failed: {e}")
            return None

        update: dict[str, Any] = {"category": place.category}
        if not details.images and place.images:
            update["images"] = place.images
        if self._oracle is not None:
            update["description"] = await self._oracle.describe_place(details)
        details = details.model_copy(update=update)
        self._details.set(place.place_id, details)
        return details

    async def search(
        self,
        query: str,
        coordinates: Coordinates | None = None,
        radius_meters: int | None = None,
    ) -> SearchResult:
        """Free-text search around ``coordinates`` (default: active location)."""
        query = query.strip()
        if not query:
            self.search_results = []
            return SearchResult(query="")
        center = coordinates or self._controller.coordinates
        if center is None:
            raise RuntimeError("No active location; pass coordinates or call set_location() first")
        location = self._controller.location
        radius = radius_meters or (location.radius_meters if location else self._default_radius)

        try:
            places = await self._provider.search_text(query, center, radius)
        except TransportFailure as e:
            logger.warning(f"[PLACES] Search for {query!r} failed: {e}")
            return SearchResult(query=query, failed=True, error=str(e))
        self.search_results = places
        return SearchResult(query=query, places=places)

    async def recommend(self, context: RecommendationContext | None = None) -> list[Recommendation]:
        """Oracle recommendations; built-in fallbacks without an oracle."""
        if context is None:
            center = self._controller.coordinates
            if center is None:
                raise RuntimeError("No active location; call set_location() first")
            nearby = [p for places in self.all_places().values() for p in places]
            context = RecommendationContext.at(center, nearby_places=nearby)
        if self._oracle is None:
            return list(FALLBACK_RECOMMENDATIONS)
        return await self._oracle.recommend(context)

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def flush(self) -> bool:
        """Write the cache now, after any background saves already scheduled."""
        if self._persistence is None:
            return False
        await self._persistence.drain()
        return await self._persistence.flush(self._store)

    async def restore(self) -> int:
        if self._persistence is None:
            return 0
        return await self._persistence.restore(self._store)

    def evict_expired(self) -> int:
        evicted = self._store.evict_expired()
        if evicted:
            logger.info(f"[CACHE] Evicted {evicted} expired entries")
        return evicted

    def clear_detail_cache(self) -> int:
        cleared = len(self._details)
        self._details.clear()
        logger.info(f"[PLACES] Cleared {cleared} cached place details")
        return cleared

    def stats(self) -> dict[str, Any]:
        """Cache statistics for debugging screens."""
        location = self._controller.location
        snapshot = self._store.snapshot()
        return {
            "active_location": str(location) if location else None,
            "total_cached_places": sum(len(p) for p in self.all_places().values()),
            "cached_categories": sum(1 for p in self.all_places().values() if p),
            "exhausted_categories": len(self._controller.exhausted_categories()),
            "locations_cached": len({key.location for key in snapshot}),
            "cache_entries": len(snapshot),
            "total_records": self._store.total_records,
            "max_records": self._store.max_records,
            "detailed_places_cached": len(self._details),
        }

    async def close(self) -> None:
        """Release provider and storage connections."""
        if self._persistence is not None:
            await self._persistence.drain()
        results = await asyncio.gather(
            self._provider.close(),
            self._persistence.kv_store.close() if self._persistence else asyncio.sleep(0),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.warning(f"[PLACES] Error during shutdown: {result}")
