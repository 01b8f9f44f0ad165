"""Suggestion ranking endpoints."""

from fastapi import APIRouter, HTTPException, Query

from live_engine.schemas.vehicle import SuggestionList, SuggestionRecord

router = APIRouter(prefix="/api/suggestions", tags=["suggestions"])

# Will be set by main.py
tracker = None


@router.get("", response_model=SuggestionList)
async def get_suggestions(count: int = Query(3, ge=0, le=50)):
    """Best vehicles to take right now, plus the full ranking."""
    if tracker is None:
        return SuggestionList(ids=[])
    engine = tracker.engine
    return SuggestionList(ids=engine.suggestions(count), ranked=engine.ranked_ids())


@router.post("/override")
async def set_override(records: list[SuggestionRecord]):
    """Replace the backend-supplied ranking."""
    if tracker is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    tracker.set_suggestions(records)
    return {"records": len(records)}


@router.delete("/override")
async def clear_override():
    if tracker is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    tracker.engine.clear_suggestion_override()
    return {"records": 0}
