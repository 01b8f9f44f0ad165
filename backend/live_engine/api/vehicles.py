"""Vehicle REST API endpoints."""

from fastapi import APIRouter, HTTPException

from live_engine.schemas.vehicle import EtaDisplay, VehicleDisplay, VehicleUpdate

router = APIRouter(prefix="/api/vehicles", tags=["vehicles"])

# Will be set by main.py
tracker = None


def _display(vehicle_id: str) -> VehicleDisplay | None:
    engine = tracker.engine
    pos = engine.display_position(vehicle_id)
    raw = engine.latest(vehicle_id)
    if pos is None or raw is None:
        return None
    state = engine.interpolator.get(vehicle_id)
    return VehicleDisplay(
        id=vehicle_id,
        lat=pos.latitude,
        lng=pos.longitude,
        heading=pos.heading,
        route_id=raw.route_id,
        route_number=raw.route_number,
        speed=raw.speed,
        stale=bool(state and state.frozen),
    )


@router.get("", response_model=list[VehicleDisplay])
async def list_vehicles(route: str | None = None):
    """Display positions of all tracked vehicles."""
    if tracker is None:
        return []
    vehicles = [v for v in (_display(vid) for vid in tracker.engine.vehicle_ids) if v]
    if route:
        vehicles = [v for v in vehicles if v.route_id == route or v.route_number == route]
    return vehicles


@router.post("/updates")
async def push_updates(updates: list[VehicleUpdate]):
    """Ingest raw updates pushed over HTTP instead of Redis."""
    if tracker is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    accepted = tracker.ingest(updates)
    return {"received": len(updates), "accepted": accepted}


@router.get("/{vehicle_id}", response_model=VehicleDisplay | None)
async def get_vehicle(vehicle_id: str):
    if tracker is None:
        return None
    return _display(vehicle_id)


@router.delete("/{vehicle_id}")
async def remove_vehicle(vehicle_id: str):
    """Remove a vehicle from the feed. Repeated calls are harmless."""
    if tracker is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    tracker.remove(vehicle_id)
    return {"removed": vehicle_id}


@router.get("/{vehicle_id}/eta", response_model=EtaDisplay | None)
async def get_vehicle_eta(vehicle_id: str):
    """Smoothed ETA for a vehicle, or null when none is known."""
    if tracker is None:
        return None
    eta = tracker.engine.eta(vehicle_id)
    if eta is None:
        return None
    return EtaDisplay(
        vehicle_id=vehicle_id,
        minutes=eta.display_minutes,
        formatted=eta.formatted,
        is_smoothed=eta.is_smoothed,
    )
