"""Raw vehicle samples and the shared enums used across the engine."""

import enum
import math
from dataclasses import dataclass


class OccupancyLevel(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    FULL = "FULL"


class Degradation(str, enum.Enum):
    """Conditions that are handled locally by degrading to a simpler result."""

    MALFORMED_GEOMETRY = "malformed_geometry"
    OFF_ROUTE = "off_route"
    STALE_VEHICLE = "stale_vehicle"
    MISSING_ETA = "missing_eta"
    OUT_OF_ORDER = "out_of_order"


@dataclass(frozen=True)
class VehiclePosition:
    id: str
    latitude: float
    longitude: float
    heading: float = 0.0
    speed: float = 0.0  # km/h
    timestamp: float = 0.0  # epoch seconds, as reported by the feed
    route_id: str | None = None
    route_number: str | None = None
    occupancy: OccupancyLevel | None = None
    passenger_count: int | None = None
    capacity: int | None = None
    eta_minutes: float | None = None  # raw backend ETA
    distance_m: float | None = None  # distance to the passenger

    @property
    def is_valid(self) -> bool:
        return (
            bool(self.id)
            and math.isfinite(self.latitude)
            and math.isfinite(self.longitude)
            and math.isfinite(self.timestamp)
            and -90.0 <= self.latitude <= 90.0
            and -180.0 <= self.longitude <= 180.0
        )
