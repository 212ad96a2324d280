"""API routes for PlanIt places.

Thin HTTP layer over PlaceDataService:
- /location: make a search centre active and load first pages
- /places/{category}: cached records + pagination flags
- /places/{category}/more: infinite scroll, one page at a time
- /places/details/{place_id}: details on demand (24h cache)
- /search, /recommendations: text search and oracle recommendations
- /cache/*: stats and explicit lifecycle hooks

Transport failures come back as ``success=False`` with a retryable
TRANSPORT_ERROR; an exhausted category is a normal response.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from planit.models import (
    AppError,
    Coordinates,
    DetailedPlaceRecord,
    ErrorCode,
    PlaceCategory,
    PlaceRecord,
)
from planit.services.pagination import PageResult
from planit.services.place_data import PlaceDataService
from planit.services.recommendations import RecommendationContext
from planit.utils.geo import miles_to_meters

logger = logging.getLogger(__name__)

router = APIRouter()


def get_place_service(request: Request) -> PlaceDataService:
    """The session's PlaceDataService, built in ``planit.main``."""
    return request.app.state.place_service


def _no_location_error() -> AppError:
    return AppError(
        code=ErrorCode.NO_LOCATION,
        message="No active location",
        user_message="Set your location first.",
    )


def _transport_error(message: str | None, user_message: str) -> AppError:
    return AppError(
        code=ErrorCode.TRANSPORT_ERROR,
        message=message or "Transport failure",
        user_message=user_message,
        retryable=True,
    )


# Request/Response models
class PageStatus(BaseModel):
    """Pagination outcome for one category."""
    category: PlaceCategory
    fetched: bool = False
    added: int = 0
    total: int = 0
    has_more: bool = True
    exhausted: bool = False
    failed: bool = False
    stale: bool = False

    @classmethod
    def from_result(cls, result: PageResult) -> "PageStatus":
        return cls(
            category=result.category,
            fetched=result.fetched,
            added=result.added,
            total=result.total,
            has_more=result.has_more,
            exhausted=result.exhausted,
            failed=result.failed,
            stale=result.stale,
        )


class SetLocationRequest(BaseModel):
    """Request model for changing the active search centre."""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    radius_meters: Optional[int] = Field(None, gt=0, le=50000)
    # Convenience for clients that think in miles, like the app's radius picker
    radius_miles: Optional[float] = Field(None, gt=0, le=31)
    force_refresh: bool = False


class SetLocationResponse(BaseModel):
    """Response model for a location change."""
    success: bool
    location: Optional[str] = None
    places: dict[PlaceCategory, list[PlaceRecord]] = Field(default_factory=dict)
    pages: list[PageStatus] = Field(default_factory=list)
    message: Optional[str] = None
    error: Optional[AppError] = None


class CategoryPlacesResponse(BaseModel):
    """Response model for the records of one category."""
    success: bool
    category: PlaceCategory
    places: list[PlaceRecord] = Field(default_factory=list)
    has_more: bool = False
    exhausted: bool = False
    is_loading: bool = False
    error: Optional[AppError] = None


class LoadMoreResponse(BaseModel):
    """Response model for loading the next page of a category."""
    success: bool
    page: Optional[PageStatus] = None
    places: list[PlaceRecord] = Field(default_factory=list)
    error: Optional[AppError] = None


class PlaceDetailsResponse(BaseModel):
    """Response model for place details."""
    success: bool
    place: Optional[DetailedPlaceRecord] = None
    error: Optional[AppError] = None


class SearchResponse(BaseModel):
    """Response model for text search."""
    success: bool
    query: str = ""
    places: list[PlaceRecord] = Field(default_factory=list)
    error: Optional[AppError] = None


class RecommendationRequest(BaseModel):
    """Request model for recommendations.  Defaults to the active location."""
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    mood: Optional[str] = Field(None, max_length=50)
    energy: Optional[str] = Field(None, max_length=30)
    weather: Optional[str] = Field(None, max_length=50)
    preferred_categories: list[str] = Field(default_factory=list, max_length=10)
    avoided_categories: list[str] = Field(default_factory=list, max_length=10)
    count: int = Field(default=6, ge=1, le=12)


class RecommendationItem(BaseModel):
    name: str
    category: Optional[PlaceCategory] = None
    reasoning: str = ""
    confidence: float = 0.7
    mood_alignment: str = ""
    timing: str = ""
    motivational_hook: str = ""
    place_id: Optional[str] = None


class RecommendationResponse(BaseModel):
    """Response model for recommendations."""
    success: bool
    recommendations: list[RecommendationItem] = Field(default_factory=list)
    error: Optional[AppError] = None


@router.post("/location", response_model=SetLocationResponse)
async def set_location(
    body: SetLocationRequest,
    service: PlaceDataService = Depends(get_place_service),
) -> SetLocationResponse:
    """Make a search centre active and load the first page of every category.

    Cached results for the same rounded location are merged with the fresh
    first page, so the response is never emptier than the cache.
    """
    radius = body.radius_meters
    if radius is None and body.radius_miles is not None:
        radius = miles_to_meters(body.radius_miles)

    summary = await service.set_location(
        Coordinates(lat=body.lat, lng=body.lng),
        radius_meters=radius,
        force_refresh=body.force_refresh,
    )
    pages = [PageStatus.from_result(r) for r in summary.results.values()]
    failed = summary.failed_categories
    error = None
    if failed and len(failed) == len(summary.results):
        error = _transport_error(
            summary.results[failed[0]].error,
            "Couldn't reach the places service. Please try again.",
        )
    return SetLocationResponse(
        success=error is None,
        location=str(summary.location),
        places=service.all_places(),
        pages=pages,
        message=service.error_message,
        error=error,
    )


@router.get("/places/details/{place_id}", response_model=PlaceDetailsResponse)
async def get_place_details(
    place_id: str,
    service: PlaceDataService = Depends(get_place_service),
) -> PlaceDetailsResponse:
    """Get detailed information for a loaded or searched place.

    Uses the detail cache when available.
    """
    place = service.find_place(place_id)
    if place is None:
        return PlaceDetailsResponse(
            success=False,
            error=AppError(
                code=ErrorCode.NOT_FOUND,
                message=f"Place {place_id} is not loaded",
                user_message="Place not found.",
            ),
        )

    details = await service.load_detailed_place(place)
    if details is None:
        return PlaceDetailsResponse(
            success=False,
            error=_transport_error(
                f"Details for {place_id} unavailable",
                "Failed to fetch place details.",
            ),
        )
    return PlaceDetailsResponse(success=True, place=details)


@router.get("/places/{category}", response_model=CategoryPlacesResponse)
async def get_category_places(
    category: PlaceCategory,
    service: PlaceDataService = Depends(get_place_service),
) -> CategoryPlacesResponse:
    """Cached records of one category for the active location."""
    if service.location is None:
        return CategoryPlacesResponse(
            success=False, category=category, error=_no_location_error()
        )
    return CategoryPlacesResponse(
        success=True,
        category=category,
        places=service.places(category),
        has_more=service.has_more(category),
        exhausted=service.is_exhausted(category),
        is_loading=service.is_loading,
    )


@router.post("/places/{category}/more", response_model=LoadMoreResponse)
async def load_more_places(
    category: PlaceCategory,
    service: PlaceDataService = Depends(get_place_service),
) -> LoadMoreResponse:
    """Load the next page of one category.

    Requests after the category is exhausted return without fetching.
    """
    if service.location is None:
        return LoadMoreResponse(success=False, error=_no_location_error())

    result = await service.load_more(category)
    error = None
    if result.failed:
        error = _transport_error(result.error, "Couldn't load more places. Please try again.")
    return LoadMoreResponse(
        success=not result.failed,
        page=PageStatus.from_result(result),
        places=service.places(category),
        error=error,
    )


@router.get("/search", response_model=SearchResponse)
async def search_places(
    q: str = Query(..., min_length=1, max_length=200),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius_meters: Optional[int] = Query(None, gt=0, le=50000),
    service: PlaceDataService = Depends(get_place_service),
) -> SearchResponse:
    """Free-text search, near the given point or the active location."""
    coordinates = Coordinates(lat=lat, lng=lng) if lat is not None and lng is not None else None
    if coordinates is None and service.location is None:
        return SearchResponse(success=False, query=q, error=_no_location_error())

    result = await service.search(q, coordinates=coordinates, radius_meters=radius_meters)
    if result.failed:
        return SearchResponse(
            success=False,
            query=result.query,
            error=_transport_error(result.error, "Search failed. Please try again."),
        )
    return SearchResponse(success=True, query=result.query, places=result.places)


@router.post("/recommendations", response_model=RecommendationResponse)
async def get_recommendations(
    body: RecommendationRequest,
    service: PlaceDataService = Depends(get_place_service),
) -> RecommendationResponse:
    """Recommendations for the user's context, from the configured oracle."""
    if body.lat is not None and body.lng is not None:
        center = Coordinates(lat=body.lat, lng=body.lng)
    elif service.controller.coordinates is not None:
        center = service.controller.coordinates
    else:
        return RecommendationResponse(success=False, error=_no_location_error())

    context = RecommendationContext.at(
        center,
        preferred_categories=body.preferred_categories,
        avoided_categories=body.avoided_categories,
        mood=body.mood,
        energy=body.energy,
        weather=body.weather,
        nearby_places=[p for places in service.all_places().values() for p in places],
        count=body.count,
    )
    recommendations = await service.recommend(context)
    return RecommendationResponse(
        success=True,
        recommendations=[
            RecommendationItem(
                name=r.name,
                category=r.category,
                reasoning=r.reasoning,
                confidence=r.confidence,
                mood_alignment=r.mood_alignment,
                timing=r.timing,
                motivational_hook=r.motivational_hook,
                place_id=r.place_id,
            )
            for r in recommendations
        ],
    )


@router.get("/cache/stats")
async def cache_stats(service: PlaceDataService = Depends(get_place_service)) -> dict[str, Any]:
    """Cache statistics for the developer screen."""
    return service.stats()


@router.post("/cache/flush")
async def flush_cache(service: PlaceDataService = Depends(get_place_service)) -> dict[str, Any]:
    """Persist the place cache now."""
    saved = await service.flush()
    return {"success": saved}


@router.post("/cache/evict")
async def evict_expired(service: PlaceDataService = Depends(get_place_service)) -> dict[str, Any]:
    """Drop expired cache entries."""
    return {"success": True, "evicted": service.evict_expired()}


@router.post("/cache/details/clear")
async def clear_detail_cache(service: PlaceDataService = Depends(get_place_service)) -> dict[str, Any]:
    """Forget cached place details so the next request refetches them."""
    return {"success": True, "cleared": service.clear_detail_cache()}
