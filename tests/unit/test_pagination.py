"""Unit tests for the pagination controller.

Uses a scripted provider to drive the idle → fetching → idle/exhausted
state machine, including location changes while a fetch is in flight.
"""

import asyncio

import pytest

from planit.models import Coordinates, LocationKey, PlaceCategory, TransportFailure
from planit.services.cache import PlaceCacheStore
from planit.services.pagination import PagePhase, PaginationController
from planit.services.places import PlacesPage

from fakes import CENTER, RADIUS, FakeClock, FakePlacesProvider, make_page, make_record

REST = PlaceCategory.RESTAURANTS
CAFES = PlaceCategory.CAFES
LONDON = Coordinates(lat=51.5074, lng=-0.1278)


class TestPaginationControllerBasics:
    """Tests for location handling and guards."""

    def setup_method(self) -> None:
        self.store = PlaceCacheStore(clock=FakeClock())
        self.provider = FakePlacesProvider()
        self.controller = PaginationController(self.store, self.provider)

    def test_change_location_sets_active_key(self) -> None:
        key = self.controller.change_location(CENTER, RADIUS)
        assert key == LocationKey.build(CENTER, RADIUS)
        assert self.controller.location == key
        assert self.store.active_location == key

    def test_change_location_resets_states(self) -> None:
        self.controller.change_location(CENTER, RADIUS)
        for category in PlaceCategory:
            state = self.controller.state(category)
            assert state.phase is PagePhase.IDLE
            assert state.has_more is True
            assert state.cursor is None

    @pytest.mark.asyncio
    async def test_request_page_without_location_raises(self) -> None:
        with pytest.raises(RuntimeError):
            await self.controller.request_page(REST)

    @pytest.mark.asyncio
    async def test_request_page_unknown_category_raises(self) -> None:
        controller = PaginationController(self.store, self.provider, categories=[REST])
        controller.change_location(CENTER, RADIUS)
        with pytest.raises(ValueError):
            await controller.request_page(CAFES)

    def test_state_is_a_copy(self) -> None:
        self.controller.change_location(CENTER, RADIUS)
        state = self.controller.state(REST)
        state.has_more = False
        assert self.controller.state(REST).has_more is True


class TestPaginationControllerPages:
    """Tests for page loading and exhaustion."""

    def setup_method(self) -> None:
        self.store = PlaceCacheStore(clock=FakeClock())
        self.provider = FakePlacesProvider()
        self.controller = PaginationController(self.store, self.provider)
        self.location = self.controller.change_location(CENTER, RADIUS)
        self.key = self.location.for_category(REST)

    @pytest.mark.asyncio
    async def test_first_page_with_cursor_has_more(self) -> None:
        self.provider.pages[(REST, None)] = make_page("p1", 20, cursor="tok2")
        result = await self.controller.request_page(REST)
        assert result.fetched is True
        assert result.added == 20
        assert result.total == 20
        assert result.has_more is True
        assert result.exhausted is False
        state = self.controller.state(REST)
        assert state.phase is PagePhase.IDLE
        assert state.cursor == "tok2"
        assert self.store.get(self.key).next_cursor == "tok2"

    @pytest.mark.asyncio
    async def test_second_page_uses_cursor(self) -> None:
        self.provider.pages[(REST, None)] = make_page("p1", 20, cursor="tok2")
        self.provider.pages[(REST, "tok2")] = make_page("p2", 20, cursor="tok3")
        await self.controller.request_page(REST)
        result = await self.controller.request_page(REST)
        assert self.provider.calls == [(REST, None), (REST, "tok2")]
        assert result.added == 20
        assert result.total == 40

    @pytest.mark.asyncio
    async def test_empty_page_exhausts_without_changing_count(self) -> None:
        self.provider.pages[(REST, None)] = make_page("p1", 20, cursor="tok2")
        self.provider.pages[(REST, "tok2")] = PlacesPage(places=[], next_cursor=None)
        await self.controller.request_page(REST)
        result = await self.controller.request_page(REST)
        assert result.exhausted is True
        assert result.has_more is False
        assert result.added == 0
        assert len(self.store.get(self.key).records) == 20
        assert REST in self.controller.exhausted_categories()

    @pytest.mark.asyncio
    async def test_missing_cursor_exhausts(self) -> None:
        self.provider.pages[(REST, None)] = make_page("p1", 5, cursor=None)
        result = await self.controller.request_page(REST)
        assert result.added == 5
        assert result.exhausted is True

    @pytest.mark.asyncio
    async def test_exhausted_category_never_refetches(self) -> None:
        self.provider.pages[(REST, None)] = make_page("p1", 5, cursor=None)
        await self.controller.request_page(REST)
        calls = len(self.provider.calls)
        for _ in range(3):
            result = await self.controller.request_page(REST)
            assert result.fetched is False
            assert result.exhausted is True
        await self.controller.load_initial()
        assert (REST, None) not in self.provider.calls[calls:]

    @pytest.mark.asyncio
    async def test_filtered_page_with_cursor_is_not_exhausted(self) -> None:
        page = PlacesPage(places=[], next_cursor="tok2", raw_count=20)
        self.provider.pages[(REST, None)] = page
        result = await self.controller.request_page(REST)
        assert result.exhausted is False
        assert result.has_more is True

    @pytest.mark.asyncio
    async def test_duplicates_across_pages_are_merged(self) -> None:
        self.provider.pages[(REST, None)] = make_page("p", 10, cursor="tok2")
        self.provider.pages[(REST, "tok2")] = make_page("p", 12, cursor="tok3")
        await self.controller.request_page(REST)
        result = await self.controller.request_page(REST)
        assert result.added == 2
        assert result.total == 12

    @pytest.mark.asyncio
    async def test_records_outside_radius_are_dropped(self) -> None:
        near = make_record("Near", "n")
        far = make_record("Far", "f", offset=1.0)
        self.provider.pages[(REST, None)] = PlacesPage(places=[near, far], next_cursor="tok2")
        result = await self.controller.request_page(REST)
        assert result.added == 1
        assert [r.place_id for r in self.store.get(self.key).records] == ["n"]

    @pytest.mark.asyncio
    async def test_transport_failure_leaves_category_idle(self) -> None:
        self.provider.pages[(REST, None)] = make_page("p1", 20, cursor="tok2")
        self.provider.pages[(REST, "tok2")] = TransportFailure("timed out")
        await self.controller.request_page(REST)
        result = await self.controller.request_page(REST)
        assert result.failed is True
        assert result.error == "timed out"
        assert result.has_more is True
        assert result.total == 20
        state = self.controller.state(REST)
        assert state.phase is PagePhase.IDLE
        assert state.cursor == "tok2"

    @pytest.mark.asyncio
    async def test_retry_after_failure(self) -> None:
        self.provider.pages[(REST, None)] = TransportFailure("offline")
        assert (await self.controller.request_page(REST)).failed is True
        self.provider.pages[(REST, None)] = make_page("p1", 3, cursor="tok2")
        result = await self.controller.request_page(REST)
        assert result.failed is False
        assert result.added == 3

    @pytest.mark.asyncio
    async def test_concurrent_request_is_noop(self) -> None:
        gate = asyncio.Event()
        self.provider.gates[REST] = gate
        self.provider.pages[(REST, None)] = make_page("p1", 5, cursor="tok2")
        first = asyncio.create_task(self.controller.request_page(REST))
        await asyncio.sleep(0)
        assert self.controller.state(REST).is_fetching
        second = await self.controller.request_page(REST)
        assert second.fetched is False
        gate.set()
        assert (await first).added == 5
        assert len(self.provider.calls) == 1


class TestPaginationControllerLocationChange:
    """Tests for discarding results of an abandoned location."""

    def setup_method(self) -> None:
        self.store = PlaceCacheStore(clock=FakeClock())
        self.provider = FakePlacesProvider()
        self.controller = PaginationController(self.store, self.provider)

    @pytest.mark.asyncio
    async def test_location_change_mid_fetch_discards_results(self) -> None:
        old = self.controller.change_location(CENTER, RADIUS)
        gate = asyncio.Event()
        self.provider.gates[REST] = gate
        self.provider.pages[(REST, None)] = make_page("old", 20, cursor="tok2")

        pending = asyncio.create_task(self.controller.request_page(REST))
        await asyncio.sleep(0)
        new = self.controller.change_location(LONDON, RADIUS)
        gate.set()
        result = await pending

        assert result.stale is True
        assert old.for_category(REST) not in self.store
        assert self.controller.location == new
        state = self.controller.state(REST)
        assert state.phase is PagePhase.IDLE
        assert state.cursor is None

    @pytest.mark.asyncio
    async def test_failure_for_old_location_does_not_touch_new_state(self) -> None:
        self.controller.change_location(CENTER, RADIUS)
        gate = asyncio.Event()
        self.provider.gates[REST] = gate
        self.provider.pages[(REST, None)] = TransportFailure("late")

        pending = asyncio.create_task(self.controller.request_page(REST))
        await asyncio.sleep(0)
        self.controller.change_location(LONDON, RADIUS)
        gate.set()
        result = await pending

        assert result.stale is True
        assert result.failed is False

    @pytest.mark.asyncio
    async def test_initial_load_for_old_location_is_stale(self) -> None:
        self.controller.change_location(CENTER, RADIUS)
        gate = asyncio.Event()
        self.provider.gates[REST] = gate
        self.provider.pages[(REST, None)] = make_page("old", 5, cursor="tok")

        pending = asyncio.create_task(self.controller.load_initial([REST]))
        await asyncio.sleep(0)
        assert self.controller.is_loading is True
        self.controller.change_location(LONDON, RADIUS)
        gate.set()
        summary = await pending

        assert summary.stale is True
        assert summary.results[REST].stale is True
        assert self.store.total_records == 0


class TestPaginationControllerInitialLoad:
    """Tests for loading the first page of every category."""

    def setup_method(self) -> None:
        self.store = PlaceCacheStore(clock=FakeClock())
        self.provider = FakePlacesProvider()
        self.controller = PaginationController(self.store, self.provider)
        self.location = self.controller.change_location(CENTER, RADIUS)

    @pytest.mark.asyncio
    async def test_loads_every_category(self) -> None:
        for category in PlaceCategory:
            self.provider.pages[(category, None)] = make_page(
                category.value, 3, cursor="tok", category=category
            )
        summary = await self.controller.load_initial()
        assert set(summary.results) == set(PlaceCategory)
        assert summary.total_added == 3 * len(PlaceCategory)
        assert summary.stale is False
        assert self.controller.is_loading is False

    @pytest.mark.asyncio
    async def test_one_failing_category_does_not_block_others(self) -> None:
        self.provider.pages[(REST, None)] = TransportFailure("denied", status="REQUEST_DENIED")
        self.provider.pages[(CAFES, None)] = make_page("c", 4, cursor="tok", category=CAFES)
        summary = await self.controller.load_initial([REST, CAFES])
        assert summary.failed_categories == [REST]
        assert summary.results[CAFES].added == 4

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failed_result(self) -> None:
        self.provider.pages[(REST, None)] = KeyError("bad payload")
        summary = await self.controller.load_initial([REST])
        assert summary.results[REST].failed is True
        assert self.controller.state(REST).phase is PagePhase.IDLE

    @pytest.mark.asyncio
    async def test_cancelled_load_settles_every_category(self) -> None:
        pending = asyncio.create_task(self.controller.load_initial([REST, CAFES]))
        await asyncio.sleep(0)
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending

        assert self.controller.is_loading is False
        assert self.controller.state(REST).phase is PagePhase.IDLE
        assert self.controller.state(CAFES).phase is PagePhase.IDLE

        self.provider.pages[(REST, None)] = make_page("p1", 3, cursor="tok")
        result = await self.controller.request_page(REST)
        assert result.added == 3
        assert (REST, None) in self.provider.calls

    @pytest.mark.asyncio
    async def test_cancelled_load_mid_fetch_settles(self) -> None:
        gate = asyncio.Event()
        self.provider.gates[REST] = gate
        pending = asyncio.create_task(self.controller.load_initial([REST]))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending

        assert self.controller.is_loading is False
        assert self.controller.state(REST).phase is PagePhase.IDLE

    @pytest.mark.asyncio
    async def test_force_refresh_replaces_cached_entry(self) -> None:
        key = self.location.for_category(REST)
        self.store.put(key, [make_record("Old", "old")], cursor="old-tok")
        self.provider.pages[(REST, None)] = make_page("new", 2, cursor="tok")
        await self.controller.load_initial([REST], force_refresh=True)
        assert [r.place_id for r in self.store.get(key).records] == ["new-0", "new-1"]

    @pytest.mark.asyncio
    async def test_initial_load_merges_with_cache(self) -> None:
        key = self.location.for_category(REST)
        self.store.put(key, [make_record("Old", "old")])
        self.provider.pages[(REST, None)] = make_page("new", 2, cursor="tok")
        summary = await self.controller.load_initial([REST])
        assert summary.results[REST].added == 2
        assert len(self.store.get(key).records) == 3
