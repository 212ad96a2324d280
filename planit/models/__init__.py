"""PlanIt data models."""

from .core import (
    KEY_PRECISION,
    CacheEntry,
    CacheKey,
    Coordinates,
    DetailedPlaceRecord,
    LocationKey,
    PlaceCategory,
    PlaceRecord,
    PriceLevel,
    Review,
)
from .errors import (
    AppError,
    ErrorCode,
    PlanItError,
    SerializationFailure,
    TransportFailure,
)

__all__ = [
    # Core
    "KEY_PRECISION",
    "CacheEntry",
    "CacheKey",
    "Coordinates",
    "DetailedPlaceRecord",
    "LocationKey",
    "PlaceCategory",
    "PlaceRecord",
    "PriceLevel",
    "Review",
    # Errors
    "AppError",
    "ErrorCode",
    "PlanItError",
    "SerializationFailure",
    "TransportFailure",
]
