"""Places provider: Google Places nearby search, details and text search."""

from .service import (
    GooglePlacesProvider,
    PlacesPage,
    PlacesProvider,
    detect_category,
)

__all__ = [
    "GooglePlacesProvider",
    "PlacesPage",
    "PlacesProvider",
    "detect_category",
]
