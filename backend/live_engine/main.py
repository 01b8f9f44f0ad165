"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from live_engine.api import diagnostics, routes, stops, suggestions, vehicles, ws
from live_engine.config import settings
from live_engine.core.broadcaster import Broadcaster
from live_engine.core.engine import LiveEngine
from live_engine.core.feed import FeedSubscriber
from live_engine.core.route_cache import RouteGeometryCache, StopCache
from live_engine.core.route_source import RouteSourceClient
from live_engine.core.scheduler import create_scheduler
from live_engine.core.tracker import LiveTracker

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    # Initialize services
    source = RouteSourceClient()
    route_cache = RouteGeometryCache(source)
    stop_cache = StopCache(source)
    engine = LiveEngine(
        route_cache.get,
        duration_ms=settings.interpolation_duration_ms,
        min_duration_ms=settings.interpolation_min_ms,
        max_duration_ms=settings.interpolation_max_ms,
        heading_min_displacement_m=settings.heading_min_displacement_m,
        stale_timeout_s=settings.stale_timeout_seconds,
        vehicle_ttl_s=settings.vehicle_ttl_seconds,
        max_snap_distance_m=settings.max_snap_distance_m,
        viewport_padding_deg=settings.viewport_padding_deg,
    )
    broadcaster = Broadcaster()
    tracker = LiveTracker(
        engine, broadcaster, route_cache, stop_cache,
        suggestion_count=settings.suggestion_count,
    )

    # Wire up API modules
    ws.tracker = tracker
    vehicles.tracker = tracker
    suggestions.tracker = tracker
    stops.tracker = tracker
    routes.tracker = tracker
    diagnostics.tracker = tracker

    feed = FeedSubscriber(tracker)
    try:
        await feed.connect()
    except Exception:
        logger.exception("Failed to connect to Redis - feed will retry")
    feed.start()

    # Start scheduler
    scheduler = create_scheduler(tracker)
    scheduler.start()
    logger.info("Live engine started - rendering at %s fps", settings.frame_rate_hz)

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    await feed.close()
    await tracker.close()
    await source.close()
    logger.info("Live engine shut down")


app = FastAPI(
    title="Live Position Engine",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(routes.router)
app.include_router(stops.router)
app.include_router(vehicles.router)
app.include_router(suggestions.router)
app.include_router(diagnostics.router)
app.include_router(ws.router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
