"""Diagnostics API for the live pipeline."""

from fastapi import APIRouter

router = APIRouter(prefix="/api/diagnostics", tags=["diagnostics"])

# Will be set by main.py
tracker = None


@router.get("")
async def get_diagnostics(limit: int = 100):
    """Fleet size, sessions, degraded states and recent degradation events."""
    if tracker is None:
        return {"error": "Tracker not initialized"}
    diag = tracker.engine.get_diagnostics(limit=limit)
    diag["routes_cached"] = len(tracker.route_cache)
    diag["rejected_messages"] = tracker.rejected_messages
    return diag
