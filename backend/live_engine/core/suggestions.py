"""Deterministic vehicle ranking for "best choice" suggestions."""

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from live_engine.core.vehicle import OccupancyLevel

logger = logging.getLogger(__name__)

OCCUPANCY_WEIGHT: dict[OccupancyLevel, int] = {
    OccupancyLevel.LOW: 0,
    OccupancyLevel.MEDIUM: 1,
    OccupancyLevel.HIGH: 2,
    OccupancyLevel.FULL: 3,
}

# Used when a vehicle has no ETA / distance yet, pushes it down the list
MISSING_ETA_MINUTES = 999.0
MISSING_DISTANCE_KM = 99.999

DEFAULT_SUGGESTION_COUNT = 3


@dataclass(frozen=True)
class RankableVehicle:
    id: str
    eta_minutes: float | None = None
    occupancy: OccupancyLevel = OccupancyLevel.LOW
    distance_km: float | None = None
    route_number: str | None = None


@dataclass(frozen=True)
class SuggestionOverride:
    """A ranking record supplied by the backend."""

    vehicle_id: str
    score: float
    raw_eta_minutes: float | None = None
    reason: str = ""


@dataclass(frozen=True)
class OccupancyInfo:
    level: OccupancyLevel
    percent: int
    available: int


def calculate_occupancy(passenger_count: int, capacity: int) -> OccupancyInfo:
    safe_capacity = max(capacity, 1)
    percent = int(math.floor(passenger_count / safe_capacity * 100 + 0.5))
    available = max(safe_capacity - passenger_count, 0)

    if percent >= 95:
        level = OccupancyLevel.FULL
    elif percent > 75:
        level = OccupancyLevel.HIGH
    elif percent >= 40:
        level = OccupancyLevel.MEDIUM
    else:
        level = OccupancyLevel.LOW
    return OccupancyInfo(level=level, percent=percent, available=available)


def _or_default(value: float | None, default: float) -> float:
    if value is None or not math.isfinite(value) or value < 0:
        return default
    return value


def score(vehicle: RankableVehicle) -> float:
    """Composite ranking key, lower is better.

    ETA dominates (x100), occupancy breaks ties within the same minute (x10)
    and distance in km only matters below that.
    """
    eta = _or_default(vehicle.eta_minutes, MISSING_ETA_MINUTES)
    dist = _or_default(vehicle.distance_km, MISSING_DISTANCE_KM)
    return eta * 100 + OCCUPANCY_WEIGHT[vehicle.occupancy] * 10 + dist


def sort_by_suggestion(
    vehicles: Iterable[RankableVehicle],
    override: Sequence[SuggestionOverride] | None = None,
) -> list[RankableVehicle]:
    """Stable ascending sort by score.

    With a backend ranking, vehicles it names come first in its score order;
    the remaining vehicles follow in score order.
    """
    ordered = sorted(vehicles, key=score)
    if not override:
        return ordered

    server_rank = {
        o.vehicle_id: i
        for i, o in enumerate(sorted(override, key=lambda o: o.score))
    }
    return sorted(
        ordered,
        key=lambda v: (0, server_rank[v.id]) if v.id in server_rank else (1, 0),
    )


def get_smart_suggestions(
    vehicles: Iterable[RankableVehicle],
    count: int = DEFAULT_SUGGESTION_COUNT,
    override: Sequence[SuggestionOverride] | None = None,
) -> list[RankableVehicle]:
    """Top `count` vehicles, never including full ones."""
    candidates = [v for v in vehicles if v.occupancy != OccupancyLevel.FULL]
    return sort_by_suggestion(candidates, override)[:max(count, 0)]


def group_by_route(vehicles: Iterable[RankableVehicle]) -> dict[str, list[RankableVehicle]]:
    grouped: dict[str, list[RankableVehicle]] = {}
    for v in vehicles:
        grouped.setdefault(v.route_number or "Unknown", []).append(v)
    return grouped
