"""PlanIt Places FastAPI Application.

Main entry point for the backend API server. Builds the PlaceDataService
and its collaborators once per process and hands them to the routes through
``app.state``.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from planit.api import router
from planit.config import Settings, get_settings
from planit.models import ErrorCode
from planit.services.cache import PlaceCacheStore
from planit.services.persistence import PersistenceAdapter
from planit.services.place_data import PlaceDataService
from planit.services.places import GooglePlacesProvider, PlacesProvider
from planit.services.recommendations import RecommendationOracle, create_recommendation_oracle
from planit.services.storage import create_key_value_store

logger = logging.getLogger(__name__)


def build_place_data_service(
    settings: Settings | None = None,
    provider: PlacesProvider | None = None,
    oracle: RecommendationOracle | None = None,
) -> PlaceDataService:
    """Wire the place data service from settings.

    ``provider`` and ``oracle`` override the configured clients. Without AI
    keys the service runs without an oracle and serves fallback
    recommendations.
    """
    settings = settings or get_settings()
    if provider is None:
        provider = GooglePlacesProvider(
            api_key=settings.GOOGLE_PLACES_API_KEY,
            timeout=settings.PLACES_TIMEOUT_SECONDS,
            min_rating=settings.MIN_RATING,
        )
    if oracle is None:
        try:
            oracle = create_recommendation_oracle(
                gemini_api_key=settings.GEMINI_API_KEY,
                groq_api_key=settings.GROQ_API_KEY,
                timeout_seconds=settings.AI_TIMEOUT_SECONDS,
            )
        except ValueError as e:
            logger.warning(f"[AI] Recommendations disabled: {e}")

    store = PlaceCacheStore(
        ttl_seconds=settings.CACHE_TTL_SECONDS,
        max_records=settings.CACHE_MAX_RECORDS,
    )
    persistence = PersistenceAdapter(
        create_key_value_store(
            settings.STORAGE_BACKEND,
            path=settings.STORAGE_PATH,
            redis_url=settings.REDIS_URL,
        )
    )
    return PlaceDataService(
        provider=provider,
        store=store,
        persistence=persistence,
        oracle=oracle,
        default_radius_meters=settings.DEFAULT_RADIUS_METERS,
        detail_cache_ttl_seconds=settings.DETAIL_CACHE_TTL_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    service: PlaceDataService | None = getattr(app.state, "place_service", None)
    if service is None:
        service = build_place_data_service()
        app.state.place_service = service
    await service.restore()
    yield
    # Shutdown - persist what we have, then release connections
    await service.flush()
    await service.close()


def create_app(service: PlaceDataService | None = None) -> FastAPI:
    """Create the FastAPI app.  ``service`` skips building one from settings."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    app = FastAPI(
        title="PlanIt Places API",
        description="Nearby places with cached, paginated search",
        version="0.1.0",
        lifespan=lifespan,
    )
    if service is not None:
        app.state.place_service = service

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Global exception handlers
    @app.exception_handler(ValidationError)
    async def validation_exception_handler(request: Request, exc: ValidationError):
        """Handle Pydantic validation errors."""
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": {
                    "code": ErrorCode.VALIDATION_ERROR.value,
                    "message": str(exc),
                    "user_message": "Invalid request format. Please check your input.",
                },
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected errors."""
        logger.exception(f"[API] Unhandled error on {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": {
                    "code": ErrorCode.API_ERROR.value,
                    "message": str(exc),
                    "user_message": "Something went wrong. Please try again.",
                },
            },
        )

    # Include API routes
    app.include_router(router, prefix="/api")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
