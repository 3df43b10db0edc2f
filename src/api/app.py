"""
HTTP entry point for the for-you services.

create_app() wires settings, profile storage, the candidate source and the
two orchestrators onto app.state, then mounts the health and for-you
routers. Tests pass their own services in; production builds them from
settings.

Run locally:
    uvicorn api.app:create_app --factory --reload

Run behind a process manager:
    uvicorn api.app:get_app --factory --host 0.0.0.0 --port 8080 --workers 4
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import Settings, get_settings
from core.logging import configure_logging_from_settings, get_logger
from core.middleware import RequestTracingMiddleware
from core.telemetry import InMemoryTelemetry, NoOpTelemetry, Telemetry
from foryou.intelligence import IntelligenceCache
from foryou.reel_service import ReelService
from foryou.service import ForYouService
from foryou.sources import CandidateSource, InMemoryCandidateSource
from foryou.storage import ProfileStorage, create_profile_storage
from foryou.tracking import EventTracker


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Runs on startup:
    - Initialize logging
    - Log the resolved profile backend

    Runs on shutdown:
    - Drop buffered events that were never flushed
    """
    settings: Settings = app.state.settings

    configure_logging_from_settings(settings)

    logger.info(
        "Starting for-you API",
        environment=settings.environment,
        port=settings.port,
        profile_backend=settings.effective_profile_backend,
        debug=settings.debug,
    )

    yield  # Application is running

    app.state.tracker.clear()
    logger.info("Shutting down for-you API")


def _default_source(settings: Settings) -> CandidateSource:
    if settings.catalog_path:
        return InMemoryCandidateSource.from_json_file(settings.catalog_path)
    logger.warning("No catalog configured, serving from an empty in-memory source")
    return InMemoryCandidateSource()


def build_services(
    settings: Settings,
    storage: Optional[ProfileStorage] = None,
    source: Optional[CandidateSource] = None,
    telemetry: Optional[Telemetry] = None,
):
    """
    Wire storage, source, tracker, and both orchestrators from settings.

    Returns:
        (feed_service, reel_service, tracker)
    """
    storage = storage or create_profile_storage(
        backend=settings.effective_profile_backend,
        redis_url=settings.redis_url,
        ttl_seconds=settings.profile_ttl_seconds,
    )
    source = source or _default_source(settings)
    telemetry = telemetry or (InMemoryTelemetry(debug=True) if settings.debug else NoOpTelemetry())
    tracker = EventTracker(storage)

    feed_service = ForYouService(storage, source, settings=settings, telemetry=telemetry, tracker=tracker)
    reel_service = ReelService(
        storage,
        source,
        settings=settings,
        telemetry=telemetry,
        cache=IntelligenceCache(),
        tracker=tracker,
    )
    return feed_service, reel_service, tracker


def create_app(
    feed_service: Optional[ForYouService] = None,
    reel_service: Optional[ReelService] = None,
    tracker: Optional[EventTracker] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the for-you API.

    Args:
        feed_service: Feed orchestrator (built from settings if omitted)
        reel_service: Reel orchestrator (built from settings if omitted)
        tracker: Event buffer shared with the orchestrators
        settings: Settings instance (defaults to get_settings())

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    if feed_service is None or reel_service is None:
        default_feed, default_reel, _ = build_services(settings)
        feed_service = feed_service or default_feed
        reel_service = reel_service or default_reel
    if tracker is None:
        tracker = feed_service.tracker or EventTracker(feed_service.storage)

    app = FastAPI(
        title="For-You Personalization API",
        description=(
            "Personalized product feed and seed-anchored reel for a storefront catalog. "
            "Identify customers with the X-Customer-Id header; anonymous callers share the guest profile."
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    app.state.settings = settings
    app.state.feed_service = feed_service
    app.state.reel_service = reel_service
    app.state.tracker = tracker

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Added last, tracing is outermost and times CORS handling too
    app.add_middleware(RequestTracingMiddleware)

    from api.routes.health import router as health_router
    app.include_router(health_router, tags=["Health"])

    from api.routes.for_you import router as for_you_router
    app.include_router(for_you_router)

    return app


# Usage: uvicorn api.app:create_app --factory
def get_app() -> FastAPI:
    """Build the application instance (for ASGI servers)."""
    return create_app()
