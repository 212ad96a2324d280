"""Core data models for PlanIt places.

This module contains the Pydantic models shared by the cache, pagination,
persistence and provider layers: categories, coordinates, place records and
the keys/entries of the place cache.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# Cache keys compare at this many decimal degrees (~11m at the equator).
KEY_PRECISION = 4


class PlaceCategory(str, Enum):
    """Closed set of place categories shown in the app."""

    RESTAURANTS = "restaurants"
    CAFES = "cafes"
    BARS = "bars"
    VENUES = "venues"
    SHOPPING = "shopping"

    @property
    def provider_type(self) -> str:
        """Google Places ``type`` used for nearby searches."""
        return _PROVIDER_TYPES[self]

    @classmethod
    def from_string(cls, value: str | None) -> Optional["PlaceCategory"]:
        """Parse a loose category name ("Cafe", "bars", "night_club").

        Returns None when the value does not map to a known category.
        """
        if not value:
            return None
        normalized = value.strip().lower()
        for category in cls:
            if normalized in (category.value, category.value.rstrip("s"), category.provider_type):
                return category
        return None


_PROVIDER_TYPES = {
    PlaceCategory.RESTAURANTS: "restaurant",
    PlaceCategory.CAFES: "cafe",
    PlaceCategory.BARS: "bar",
    PlaceCategory.VENUES: "night_club",
    PlaceCategory.SHOPPING: "shopping_mall",
}


class Coordinates(BaseModel):
    """Geographic coordinates with validation.

    Latitude must be between -90 and 90 degrees.
    Longitude must be between -180 and 180 degrees.
    """

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90, description="Latitude in degrees")
    lng: float = Field(..., ge=-180, le=180, description="Longitude in degrees")


class PriceLevel(int, Enum):
    """Price level indicators, matching Google Places API values."""

    FREE = 0
    INEXPENSIVE = 1
    MODERATE = 2
    EXPENSIVE = 3
    VERY_EXPENSIVE = 4


class PlaceRecord(BaseModel):
    """A place returned by a nearby search.

    ``images`` holds opaque provider photo references, not resolved URLs;
    photos are only fetched when a view needs them.
    """

    model_config = ConfigDict(frozen=True)

    place_id: Optional[str] = Field(None, description="Provider-assigned identifier")
    name: str = Field(..., min_length=1, description="Display name of the place")
    category: PlaceCategory = Field(..., description="App category")
    rating: float = Field(default=0.0, ge=0, le=5, description="Average rating (0-5)")
    price_level: Optional[PriceLevel] = Field(None, description="Price tier")
    coordinates: Coordinates = Field(..., description="Geographic location")
    address: str = Field(default="", description="Free-text address or vicinity")
    images: tuple[str, ...] = Field(default=(), description="Photo references")
    is_open: bool = Field(default=True, description="Whether the place is open now")

    def is_same_place(self, other: "PlaceRecord") -> bool:
        """Duplicate check used when merging pages.

        Records that both carry a provider id are compared by id only. When
        either id is missing, names are compared case-insensitively.
        """
        if self.place_id and other.place_id:
            return self.place_id == other.place_id
        return self.name.casefold() == other.name.casefold()


class Review(BaseModel):
    """A single provider review."""

    author_name: str
    rating: float = Field(..., ge=0, le=5)
    text: str = ""
    time: int = Field(default=0, description="Unix timestamp of the review")


class DetailedPlaceRecord(PlaceRecord):
    """Place record enriched by a details lookup."""

    phone: Optional[str] = None
    website: Optional[str] = None
    review_count: int = Field(default=0, ge=0)
    reviews: tuple[Review, ...] = ()
    weekday_text: tuple[str, ...] = Field(
        default=(), description="Human-readable opening hours by day"
    )
    types: tuple[str, ...] = Field(default=(), description="Provider type tags")
    description: Optional[str] = None


class LocationKey(BaseModel):
    """Rounded search centre plus radius.

    Two searches share cached results iff their keys are equal.
    """

    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float
    radius_meters: int = Field(..., gt=0)

    @classmethod
    def build(cls, coordinates: Coordinates, radius_meters: int) -> "LocationKey":
        return cls(
            lat=round(coordinates.lat, KEY_PRECISION),
            lng=round(coordinates.lng, KEY_PRECISION),
            radius_meters=radius_meters,
        )

    def for_category(self, category: PlaceCategory) -> "CacheKey":
        return CacheKey(location=self, category=category)

    def __str__(self) -> str:
        return f"{self.lat:.4f},{self.lng:.4f}_{self.radius_meters}"


class CacheKey(BaseModel):
    """Location key plus category: identifies one cacheable result set."""

    model_config = ConfigDict(frozen=True)

    location: LocationKey
    category: PlaceCategory

    def __str__(self) -> str:
        return f"{self.location}:{self.category.value}"


class CacheEntry(BaseModel):
    """Ordered, de-duplicated records for one cache key."""

    model_config = ConfigDict(frozen=True)

    records: tuple[PlaceRecord, ...] = ()
    timestamp: float = Field(..., description="Epoch seconds of the last write")
    next_cursor: Optional[str] = Field(None, description="Provider page token")
