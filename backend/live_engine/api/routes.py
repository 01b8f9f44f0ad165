"""Route geometry REST API endpoints."""

from fastapi import APIRouter, HTTPException

from live_engine.core.geometry import distance_meters
from live_engine.schemas.route import RouteGeometryInfo, SnapResult

router = APIRouter(prefix="/api/routes", tags=["routes"])

# Will be set by main.py
tracker = None


@router.get("/{route_id}", response_model=RouteGeometryInfo)
async def get_route(route_id: str):
    """Route geometry as [[lng, lat], ...], fetched on first request."""
    if tracker is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    geometry = await tracker.route_cache.ensure(route_id)
    if geometry is None:
        raise HTTPException(status_code=404, detail="Route not found")
    meta = tracker.route_cache.get_route(route_id)
    return RouteGeometryInfo(
        id=route_id,
        number=meta.number if meta else "",
        name=meta.name if meta else "",
        geometry=[[lng, lat] for lng, lat in geometry.vertices],
    )


@router.get("/{route_id}/snap", response_model=SnapResult)
async def snap_point(route_id: str, lat: float, lng: float):
    """Project a coordinate onto the route polyline."""
    if tracker is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    await tracker.route_cache.ensure(route_id)
    projected = tracker.engine.snap(route_id, lat, lng)
    if projected is None:
        raise HTTPException(status_code=404, detail="Route geometry unavailable")
    return SnapResult(
        route_id=route_id,
        lat=projected.latitude,
        lng=projected.longitude,
        segment_index=projected.segment_index,
        segment_fraction=projected.segment_fraction,
        path_fraction=projected.path_fraction,
        distance_m=distance_meters(lat, lng, projected.latitude, projected.longitude),
    )
