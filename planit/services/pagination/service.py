"""Pagination controller: "load next page" per category for the active location.

Each category of the active location moves through a small state machine:

    idle ──request_page()──▶ fetching
    fetching ──results + cursor──▶ idle (has_more)
    fetching ──no results or no cursor──▶ exhausted (terminal for this location)
    fetching ──TransportFailure──▶ idle (has_more unchanged, result.failed)
    any ──change_location()──▶ idle (fresh state, in-flight results discarded)

Results are published to the cache store from the event loop as soon as a
fetch completes. Every location change bumps an epoch counter; a fetch that
completes under an older epoch is dropped without touching state or cache.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Optional

from planit.models import Coordinates, LocationKey, PlaceCategory, PlaceRecord, TransportFailure
from planit.services.cache import PlaceCacheStore
from planit.services.places import PlacesProvider
from planit.utils.geo import haversine_distance

logger = logging.getLogger(__name__)


class PagePhase(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    EXHAUSTED = "exhausted"


@dataclass
class PaginationState:
    """Pagination state of one (location, category) pair."""
    phase: PagePhase = PagePhase.IDLE
    has_more: bool = True
    cursor: Optional[str] = None

    @property
    def exhausted(self) -> bool:
        return self.phase is PagePhase.EXHAUSTED

    @property
    def is_fetching(self) -> bool:
        return self.phase is PagePhase.FETCHING


@dataclass
class PageResult:
    """Outcome of one page request.

    ``failed`` is the only error signal callers see; ``stale`` and
    ``exhausted`` are normal outcomes.
    """
    category: PlaceCategory
    fetched: bool = False
    added: int = 0
    total: int = 0
    has_more: bool = True
    exhausted: bool = False
    failed: bool = False
    stale: bool = False
    error: Optional[str] = None


@dataclass
class LoadSummary:
    """Outcome of an initial load across categories."""
    location: LocationKey
    results: dict[PlaceCategory, PageResult] = field(default_factory=dict)
    stale: bool = False

    @property
    def total_added(self) -> int:
        return sum(r.added for r in self.results.values())

    @property
    def failed_categories(self) -> list[PlaceCategory]:
        return [c for c, r in self.results.items() if r.failed]


class PaginationController:
    """Drives page requests for the active location."""

    def __init__(
        self,
        store: PlaceCacheStore,
        provider: PlacesProvider,
        categories: Iterable[PlaceCategory] = tuple(PlaceCategory),
        filter_by_radius: bool = True,
    ) -> None:
        self._store = store
        self._provider = provider
        self._categories = tuple(categories)
        self._filter_by_radius = filter_by_radius
        self._location: LocationKey | None = None
        self._coordinates: Coordinates | None = None
        self._epoch = 0
        self._states: dict[PlaceCategory, PaginationState] = {}
        self._loading = False

    # ── State ─────────────────────────────────────────────────────────

    @property
    def location(self) -> LocationKey | None:
        return self._location

    @property
    def coordinates(self) -> Coordinates | None:
        return self._coordinates

    @property
    def categories(self) -> tuple[PlaceCategory, ...]:
        return self._categories

    @property
    def is_loading(self) -> bool:
        """True while an initial load for the active location is running."""
        return self._loading

    def state(self, category: PlaceCategory) -> PaginationState:
        """Copy of the state of ``category`` for the active location."""
        return replace(self._states.get(category) or PaginationState())

    def exhausted_categories(self) -> list[PlaceCategory]:
        return [c for c, s in self._states.items() if s.exhausted]

    def change_location(self, coordinates: Coordinates, radius_meters: int) -> LocationKey:
        """Make a new location active and reset every category to idle.

        Fetches still in flight for the previous location are discarded when
        they complete.
        """
        location = LocationKey.build(coordinates, radius_meters)
        self._epoch += 1
        self._location = location
        self._coordinates = coordinates
        self._states = {category: PaginationState() for category in self._categories}
        self._loading = False
        self._store.set_active_location(location)
        logger.info(f"[PAGES] Location changed to: {location}")
        return location

    def _require_location(self) -> tuple[LocationKey, Coordinates]:
        if self._location is None or self._coordinates is None:
            raise RuntimeError("No active location; call change_location() first")
        return self._location, self._coordinates

    def _snapshot(self, category: PlaceCategory, **kwargs) -> PageResult:
        state = self._states[category]
        entry = self._store.get(self._location.for_category(category))  # type: ignore[union-attr]
        return PageResult(
            category=category,
            total=len(entry.records) if entry is not None else 0,
            has_more=state.has_more,
            exhausted=state.exhausted,
            **kwargs,
        )

    # ── Fetching ──────────────────────────────────────────────────────

    async def request_page(self, category: PlaceCategory) -> PageResult:
        """Load the next page of ``category``.

        A no-op (``fetched=False``) while a fetch is running, after the
        category is exhausted, or when the provider reported no more pages.
        """
        self._require_location()
        if category not in self._states:
            raise ValueError(f"Category {category.value} is not paginated")
        state = self._states[category]
        if state.phase is not PagePhase.IDLE or not state.has_more:
            logger.debug(
                f"[PAGES] Not loading {category.value}: phase={state.phase.value}, "
                f"has_more={state.has_more}"
            )
            return self._snapshot(category)
        return await self._fetch(category, state.cursor)

    async def load_initial(
        self,
        categories: Iterable[PlaceCategory] | None = None,
        force_refresh: bool = False,
    ) -> LoadSummary:
        """First page of every category for the active location, concurrently.

        Each category is fetched without a cursor, independently of the
        others; ``is_loading`` clears once all have settled. With
        ``force_refresh`` the fetched page replaces cached entries instead of
        being merged into them.
        """
        location, _ = self._require_location()
        epoch = self._epoch
        wanted = [c for c in (categories or self._categories) if c in self._states]
        skipped = [c for c in wanted if self._states[c].exhausted]
        for category in skipped:
            logger.debug(f"[PAGES] {category.value} already exhausted for {location}")
        to_fetch = [c for c in wanted if c not in skipped]

        self._loading = True
        for category in to_fetch:
            self._states[category].phase = PagePhase.FETCHING
        try:
            outcomes = await asyncio.gather(
                *(self._fetch(c, None, force_refresh, epoch) for c in to_fetch),
                return_exceptions=True,
            )
        except BaseException:
            # Cancelled: fetches that never started must not stay marked.
            if epoch == self._epoch:
                self._loading = False
                for category in to_fetch:
                    if self._states[category].phase is PagePhase.FETCHING:
                        self._states[category].phase = PagePhase.IDLE
            raise

        summary = LoadSummary(location=location, stale=epoch != self._epoch)
        for category, outcome in zip(to_fetch, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"[PAGES] Unexpected error loading {category.value}: {outcome!r}")
                outcome = PageResult(category=category, fetched=True, failed=True, error=str(outcome))
            summary.results[category] = outcome
        for category in skipped:
            summary.results[category] = self._snapshot(category)

        if not summary.stale:
            self._loading = False
            logger.info(
                f"[PAGES] Finished loading {self._store.total_records} places "
                f"across all categories for location: {location}"
            )
        return summary

    async def _fetch(
        self,
        category: PlaceCategory,
        cursor: str | None,
        replace_entry: bool = False,
        epoch: int | None = None,
    ) -> PageResult:
        # Fetches scheduled by load_initial only start after it yields.
        if epoch is not None and epoch != self._epoch:
            return PageResult(category=category, stale=True)
        location, coordinates = self._require_location()
        epoch = self._epoch
        key = location.for_category(category)
        state = self._states[category]
        state.phase = PagePhase.FETCHING

        try:
            page = await self._provider.search_nearby(
                category, coordinates, location.radius_meters, cursor
            )
        except TransportFailure as e:
            if epoch != self._epoch:
                return PageResult(category=category, fetched=True, stale=True)
            state.phase = PagePhase.IDLE
            logger.warning(f"[PAGES] Failed to load {category.value}: {e}")
            return self._snapshot(category, fetched=True, failed=True, error=str(e))
        except BaseException:
            if epoch == self._epoch:
                state.phase = PagePhase.IDLE
            raise

        if epoch != self._epoch:
            logger.debug(f"[PAGES] Dropping {category.value} results for old location {location}")
            return PageResult(category=category, fetched=True, stale=True)

        records = self._within_radius(page.places, coordinates, location.radius_meters)
        previous = self._store.get(key)
        before = len(previous.records) if previous is not None else 0
        if replace_entry:
            entry = self._store.replace(key, records, page.next_cursor)
            before = 0
        else:
            entry = self._store.put(key, records, page.next_cursor)
        if entry is None:
            state.phase = PagePhase.IDLE
            return PageResult(category=category, fetched=True, stale=True)

        if page.result_count == 0 or page.next_cursor is None:
            state.phase = PagePhase.EXHAUSTED
            state.has_more = False
            state.cursor = None
            logger.info(f"[PAGES] {category.value} exhausted for {location}")
        else:
            state.phase = PagePhase.IDLE
            state.has_more = True
            state.cursor = page.next_cursor

        added = max(0, len(entry.records) - before)
        logger.info(
            f"[PAGES] Loaded {added} new places for {category.value}. "
            f"Total: {len(entry.records)}"
        )
        return PageResult(
            category=category,
            fetched=True,
            added=added,
            total=len(entry.records),
            has_more=state.has_more,
            exhausted=state.exhausted,
        )

    def _within_radius(
        self, places: list[PlaceRecord], center: Coordinates, radius_meters: int
    ) -> list[PlaceRecord]:
        if not self._filter_by_radius:
            return list(places)
        return [
            p for p in places
            if haversine_distance(
                center.lat, center.lng, p.coordinates.lat, p.coordinates.lng
            ) * 1000 <= radius_meters
        ]
