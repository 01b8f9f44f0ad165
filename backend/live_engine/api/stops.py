"""Stop REST API endpoints."""

from fastapi import APIRouter

from live_engine.schemas.route import StopInfo

router = APIRouter(prefix="/api/stops", tags=["stops"])

# Will be set by main.py
tracker = None


@router.get("", response_model=list[StopInfo])
async def list_stops(q: str | None = None, limit: int = 20):
    """All known stops (deduplicated by name), optionally filtered by name."""
    if tracker is None:
        return []
    cache = tracker.stop_cache
    stops = await cache.get_all()
    if q:
        stops = cache.search(q, limit=limit)
    return [StopInfo(id=s.id, name=s.name, lat=s.lat, lon=s.lon, route_id=s.route_id) for s in stops]
