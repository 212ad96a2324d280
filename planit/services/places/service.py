"""Places provider: paginated nearby search and on-demand details.

The provider is the only component that talks to the remote Places API. It
converts raw results into immutable PlaceRecord objects and turns every
network, HTTP or API-status problem into a TransportFailure. It never
retries; retry is up to the caller.

Google page tokens only become valid a couple of seconds after they are
issued, so the provider remembers when each token was handed out and waits
out the remainder before using it.
"""

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from planit.models import (
    Coordinates,
    DetailedPlaceRecord,
    PlaceCategory,
    PlaceRecord,
    PriceLevel,
    Review,
    TransportFailure,
)
from planit.utils.geo import haversine_distance

logger = logging.getLogger(__name__)


@dataclass
class PlacesPage:
    """One page of nearby-search results."""
    places: list[PlaceRecord] = field(default_factory=list)
    next_cursor: Optional[str] = None
    # Results the provider returned before quality filtering
    raw_count: Optional[int] = None

    @property
    def result_count(self) -> int:
        return self.raw_count if self.raw_count is not None else len(self.places)


def detect_category(types: list[str] | tuple[str, ...]) -> PlaceCategory:
    """Map provider type tags to an app category.

    Falls back to restaurants, the most common category.
    """
    type_set = {t.lower() for t in types}
    if type_set & {"restaurant", "food", "meal_takeaway", "meal_delivery"}:
        return PlaceCategory.RESTAURANTS
    if type_set & {"cafe", "coffee", "bakery"}:
        return PlaceCategory.CAFES
    if type_set & {"bar", "night_club", "liquor_store"}:
        return PlaceCategory.BARS
    if type_set & {"store", "shopping_mall", "clothing_store", "department_store"}:
        return PlaceCategory.SHOPPING
    if type_set & {"amusement_park", "bowling_alley", "movie_theater", "gym"}:
        return PlaceCategory.VENUES
    return PlaceCategory.RESTAURANTS


class PlacesProvider(ABC):
    """Abstract base class for remote places providers."""

    @abstractmethod
    async def search_nearby(
        self,
        category: PlaceCategory,
        coordinates: Coordinates,
        radius_meters: int,
        page_cursor: str | None = None,
    ) -> PlacesPage:
        """Fetch one page of places of ``category`` around ``coordinates``.

        Raises:
            TransportFailure: On any network or provider error.
        """
        pass

    @abstractmethod
    async def get_details(self, place_id: str) -> DetailedPlaceRecord:
        """Fetch the detailed record for one place.

        Raises:
            ValueError: If ``place_id`` is empty.
            TransportFailure: On any network or provider error.
        """
        pass

    @abstractmethod
    async def search_text(
        self, query: str, coordinates: Coordinates, radius_meters: int
    ) -> list[PlaceRecord]:
        """Free-text search, nearest results first."""
        pass

    async def close(self) -> None:
        """Release HTTP resources."""


class GooglePlacesProvider(PlacesProvider):
    """Google Places web service implementation.

    Uses the legacy ``nearbysearch`` / ``details`` / ``textsearch`` JSON
    endpoints, which return ``next_page_token`` for pagination.
    """

    BASE_URL = "https://maps.googleapis.com/maps/api/place"
    DETAIL_FIELDS = (
        "place_id,name,rating,user_ratings_total,price_level,photos,opening_hours,"
        "formatted_phone_number,website,reviews,geometry,formatted_address,types"
    )
    HEADERS = {
        "User-Agent": "PlanIt/1.0 (contact@planit.app)",
        "Accept": "application/json",
    }
    MAX_DETAIL_PHOTOS = 5
    MAX_REVIEWS = 5

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float = 15.0,
        min_rating: float = 3.0,
        page_token_delay: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key or os.getenv("GOOGLE_PLACES_API_KEY")
        if not self._api_key:
            raise ValueError("GOOGLE_PLACES_API_KEY not provided")
        self._timeout = timeout
        self._min_rating = min_rating
        self._page_token_delay = page_token_delay
        self._client = client
        self._token_issued_at: dict[str, float] = {}

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, headers=self.HEADERS)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # ── HTTP ──────────────────────────────────────────────────────────

    async def _request(self, endpoint: str, params: dict[str, Any]) -> dict:
        """GET ``{BASE_URL}/{endpoint}/json`` and check the API status.

        ``ZERO_RESULTS`` is a valid, empty answer; every other non-OK status
        is a failure.
        """
        client = self._get_client()
        url = f"{self.BASE_URL}/{endpoint}/json"
        try:
            response = await client.get(url, params={**params, "key": self._api_key})
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.warning(f"[PLACES] {endpoint} timed out after {self._timeout}s")
            raise TransportFailure(f"{endpoint} request timed out") from e
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            if code == 429:
                logger.warning("[PLACES] Rate limit exceeded")
            elif code == 403:
                logger.warning("[PLACES] API key invalid or quota exceeded")
            raise TransportFailure(f"HTTP {code} from {endpoint}", status=str(code)) from e
        except httpx.HTTPError as e:
            logger.warning(f"[PLACES] {endpoint} failed: {type(e).__name__}: {e}")
            raise TransportFailure(f"{endpoint} request failed: {e}") from e
        except ValueError as e:
            raise TransportFailure(f"Invalid JSON from {endpoint}") from e

        status = data.get("status", "UNKNOWN")
        if status not in ("OK", "ZERO_RESULTS"):
            detail = data.get("error_message", "")
            logger.warning(f"[PLACES] {endpoint} status {status} {detail}".rstrip())
            raise TransportFailure(f"{endpoint} returned {status}", status=status)
        return data

    async def _wait_for_token(self, token: str) -> None:
        issued = self._token_issued_at.pop(token, None)
        if issued is None:
            return
        remaining = self._page_token_delay - (time.monotonic() - issued)
        if remaining > 0:
            await asyncio.sleep(remaining)

    # ── Conversion ────────────────────────────────────────────────────

    @staticmethod
    def _price_level(value: Any) -> PriceLevel | None:
        try:
            return PriceLevel(int(value))
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _coordinates(item: dict) -> Coordinates | None:
        location = (item.get("geometry") or {}).get("location") or {}
        try:
            return Coordinates(lat=location["lat"], lng=location["lng"])
        except (KeyError, ValidationError):
            return None

    def _to_record(
        self, item: dict, category: PlaceCategory, min_rating: float = 0.0
    ) -> PlaceRecord | None:
        """Convert one raw search result.  Returns None if unusable."""
        name = (item.get("name") or "").strip()
        coordinates = self._coordinates(item)
        if not name or coordinates is None:
            return None
        rating = min(5.0, float(item.get("rating") or 0.0))
        if rating < min_rating:
            return None
        # Only the first photo reference; more are loaded with details
        photos = item.get("photos") or []
        images = tuple(p["photo_reference"] for p in photos[:1] if p.get("photo_reference"))
        opening_hours = item.get("opening_hours") or {}
        try:
            return PlaceRecord(
                place_id=item.get("place_id") or None,
                name=name,
                category=category,
                rating=rating,
                price_level=self._price_level(item.get("price_level")),
                coordinates=coordinates,
                address=item.get("vicinity") or item.get("formatted_address") or "",
                images=images,
                is_open=opening_hours.get("open_now", True),
            )
        except ValidationError as e:
            logger.debug(f"[PLACES] Skipping malformed result {name!r}: {e}")
            return None

    def _to_detailed_record(self, item: dict) -> DetailedPlaceRecord:
        types = tuple(item.get("types") or ())
        coordinates = self._coordinates(item)
        if coordinates is None or not (item.get("name") or "").strip():
            raise TransportFailure(f"Incomplete details for {item.get('place_id')}")
        photos = item.get("photos") or []
        opening_hours = item.get("opening_hours") or {}
        reviews = []
        for raw in (item.get("reviews") or [])[: self.MAX_REVIEWS]:
            try:
                reviews.append(Review(
                    author_name=raw.get("author_name", "Anonymous"),
                    rating=float(raw.get("rating", 0)),
                    text=raw.get("text", ""),
                    time=int(raw.get("time", 0)),
                ))
            except (ValidationError, TypeError, ValueError):
                continue
        return DetailedPlaceRecord(
            place_id=item.get("place_id"),
            name=item["name"].strip(),
            category=detect_category(types),
            rating=min(5.0, float(item.get("rating") or 0.0)),
            price_level=self._price_level(item.get("price_level")),
            coordinates=coordinates,
            address=item.get("formatted_address") or "",
            images=tuple(
                p["photo_reference"]
                for p in photos[: self.MAX_DETAIL_PHOTOS]
                if p.get("photo_reference")
            ),
            is_open=opening_hours.get("open_now") is True,
            phone=item.get("formatted_phone_number"),
            website=item.get("website"),
            review_count=int(item.get("user_ratings_total") or 0),
            reviews=tuple(reviews),
            weekday_text=tuple(opening_hours.get("weekday_text") or ()),
            types=types,
        )

    # ── Public API ────────────────────────────────────────────────────

    async def search_nearby(
        self,
        category: PlaceCategory,
        coordinates: Coordinates,
        radius_meters: int,
        page_cursor: str | None = None,
    ) -> PlacesPage:
        params: dict[str, Any] = {
            "location": f"{coordinates.lat},{coordinates.lng}",
            "radius": radius_meters,
            "type": category.provider_type,
        }
        if page_cursor:
            await self._wait_for_token(page_cursor)
            params["pagetoken"] = page_cursor

        data = await self._request("nearbysearch", params)
        results = data.get("results") or []
        places = [
            record
            for item in results
            if (record := self._to_record(item, category, self._min_rating)) is not None
        ]
        next_cursor = data.get("next_page_token") or None
        if next_cursor:
            self._token_issued_at[next_cursor] = time.monotonic()

        logger.info(
            f"[PLACES] {category.value}: {len(places)}/{len(results)} places kept, "
            f"more={'yes' if next_cursor else 'no'}"
        )
        return PlacesPage(places=places, next_cursor=next_cursor, raw_count=len(results))

    async def get_details(self, place_id: str) -> DetailedPlaceRecord:
        if not place_id or not place_id.strip():
            raise ValueError("place_id cannot be empty")
        data = await self._request(
            "details", {"place_id": place_id, "fields": self.DETAIL_FIELDS}
        )
        item = data.get("result")
        if not item:
            raise TransportFailure(f"No details returned for {place_id}", status=data.get("status"))
        record = self._to_detailed_record(item)
        logger.info(f"[PLACES] Got details for: {record.name}")
        return record

    async def search_text(
        self, query: str, coordinates: Coordinates, radius_meters: int
    ) -> list[PlaceRecord]:
        query = query.strip()
        if not query:
            return []
        data = await self._request(
            "textsearch",
            {
                "query": query,
                "location": f"{coordinates.lat},{coordinates.lng}",
                "radius": radius_meters,
            },
        )
        places = [
            record
            for item in data.get("results") or []
            if (record := self._to_record(item, detect_category(item.get("types") or []))) is not None
        ]
        places.sort(key=lambda p: haversine_distance(
            coordinates.lat, coordinates.lng, p.coordinates.lat, p.coordinates.lng,
        ))
        logger.info(f"[PLACES] Found {len(places)} places for query: {query!r}")
        return places
