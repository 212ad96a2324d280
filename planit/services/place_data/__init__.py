"""Place data service: session facade over cache, pagination and details."""

from .service import NO_PLACES_MESSAGE, PlaceDataService, SearchResult

__all__ = ["NO_PLACES_MESSAGE", "PlaceDataService", "SearchResult"]
