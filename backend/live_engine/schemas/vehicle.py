import datetime
import math
import time

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from live_engine.core.suggestions import SuggestionOverride
from live_engine.core.vehicle import OccupancyLevel, VehiclePosition

# Feed timestamps above this are milliseconds
_MS_THRESHOLD = 1e12


class _FeedModel(BaseModel):
    """Accepts both camelCase (wire) and snake_case field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VehicleUpdate(_FeedModel):
    vehicle_id: str = Field(min_length=1)
    lat: float
    lng: float
    heading: float = 0.0
    speed_kph: float = 0.0
    timestamp: float | None = None
    route_id: str | None = None
    route_number: str | None = None
    occupancy: OccupancyLevel | None = None
    passenger_count: int | None = None
    capacity: int | None = None
    eta_minutes: float | None = None
    distance_meters: float | None = None

    @field_validator("occupancy", mode="before")
    @classmethod
    def _occupancy_level(cls, v):
        # The feed sends either "HIGH" or {"level": "HIGH", "percent": ..}
        if isinstance(v, dict):
            return v.get("level")
        return v

    @field_validator("timestamp", mode="before")
    @classmethod
    def _epoch_seconds(cls, v):
        if v is None:
            return None
        if isinstance(v, datetime.datetime):
            if v.tzinfo is None:
                v = v.replace(tzinfo=datetime.timezone.utc)
            return v.timestamp()
        if isinstance(v, str):
            try:
                v = float(v)
            except ValueError:
                return datetime.datetime.fromisoformat(v.replace("Z", "+00:00")).timestamp()
        if isinstance(v, float) and not math.isfinite(v):
            raise ValueError("timestamp must be finite")
        return v

    @field_validator("route_id", "route_number", mode="before")
    @classmethod
    def _as_str(cls, v):
        return str(v) if v is not None else None

    def to_position(self) -> VehiclePosition:
        ts = self.timestamp if self.timestamp is not None else time.time()
        if ts > _MS_THRESHOLD:
            ts = ts / 1000.0
        return VehiclePosition(
            id=self.vehicle_id,
            latitude=self.lat,
            longitude=self.lng,
            heading=self.heading,
            speed=self.speed_kph,
            timestamp=ts,
            route_id=self.route_id,
            route_number=self.route_number,
            occupancy=self.occupancy,
            passenger_count=self.passenger_count,
            capacity=self.capacity,
            eta_minutes=self.eta_minutes,
            distance_m=self.distance_meters,
        )


class SuggestionRecord(_FeedModel):
    vehicle_id: str
    raw_eta_minutes: float | None = None
    reason: str = ""
    score: float

    def to_override(self) -> SuggestionOverride:
        return SuggestionOverride(
            vehicle_id=self.vehicle_id,
            score=self.score,
            raw_eta_minutes=self.raw_eta_minutes,
            reason=self.reason,
        )


class FeedMessage(_FeedModel):
    """Envelope of everything the transport can deliver."""

    type: str
    vehicles: list[VehicleUpdate] = []
    vehicle_id: str | None = None
    suggestions: list[SuggestionRecord] = []


class VehicleDisplay(BaseModel):
    id: str
    lat: float
    lng: float
    heading: float
    route_id: str | None = None
    route_number: str | None = None
    speed: float = 0.0
    stale: bool = False


class EtaDisplay(BaseModel):
    vehicle_id: str
    minutes: float
    formatted: str
    is_smoothed: bool = False


class SuggestionList(BaseModel):
    ids: list[str]
    ranked: list[str] = []
