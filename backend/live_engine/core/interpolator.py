"""Per-vehicle display interpolation driven by the render clock.

Raw samples arrive at irregular times; rendering samples this module at a
fixed rate. Each accepted sample starts a new window that eases from the
currently displayed position to the new target, following the route
polyline when one is known.
"""

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from live_engine.core.geometry import RouteGeometry, bearing_deg, distance_meters, walk_polyline
from live_engine.core.vehicle import Degradation, VehiclePosition

logger = logging.getLogger(__name__)

# Weight of the newest inter-update gap in the adaptive window
GAP_EMA_ALPHA = 0.3


def smoothstep(progress: float) -> float:
    """Ease curve with zero slope at both ends, so consecutive windows join smoothly."""
    p = max(0.0, min(1.0, progress))
    return p * p * (3.0 - 2.0 * p)


@dataclass(frozen=True)
class DisplayPosition:
    latitude: float
    longitude: float
    heading: float


@dataclass
class VehicleDisplayState:
    id: str
    prev_lat: float
    prev_lng: float
    target_lat: float
    target_lng: float
    interpolation_start: float  # render clock, seconds
    duration: float  # seconds
    heading: float
    display: DisplayPosition
    last_timestamp: float  # feed timestamp of the applied sample
    last_update_at: float  # render clock time of the applied sample
    route_id: str | None = None
    # Path fractions when the window follows the route polyline
    from_fraction: float | None = None
    to_fraction: float | None = None
    frozen: bool = False


class Interpolator:
    """Keeps display state per vehicle and produces positions per frame."""

    def __init__(
        self,
        route_lookup: Callable[[str], RouteGeometry | None] | None = None,
        *,
        duration_ms: float = 3000,
        min_duration_ms: float = 1000,
        max_duration_ms: float = 6000,
        heading_min_displacement_m: float = 3.0,
        stale_timeout_s: float = 30.0,
        max_snap_distance_m: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        on_degradation: Callable[[Degradation, str], None] | None = None,
    ) -> None:
        self._route_lookup = route_lookup
        self.default_duration = duration_ms / 1000.0
        self.min_duration = min_duration_ms / 1000.0
        self.max_duration = max_duration_ms / 1000.0
        self.heading_min_displacement_m = heading_min_displacement_m
        self.stale_timeout = stale_timeout_s
        self.max_snap_distance_m = max_snap_distance_m
        self._clock = clock
        self._on_degradation = on_degradation
        self._states: dict[str, VehicleDisplayState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, vehicle_id: object) -> bool:
        return vehicle_id in self._states

    def get(self, vehicle_id: str) -> VehicleDisplayState | None:
        return self._states.get(vehicle_id)

    def apply(self, position: VehiclePosition) -> bool:
        """Start a new interpolation window toward a raw sample.

        Returns False when the sample is dropped: invalid coordinates, or a
        timestamp not newer than the last applied one for this vehicle.
        """
        if not position.is_valid:
            logger.debug("Dropping invalid sample for %r", position.id)
            return False

        now = self._clock()
        state = self._states.get(position.id)

        if state is not None and position.timestamp <= state.last_timestamp:
            self._degrade(Degradation.OUT_OF_ORDER, position.id)
            return False

        if state is None:
            prev_lat, prev_lng = position.latitude, position.longitude
            duration = self.default_duration
            fallback_heading = position.heading
        else:
            current = state.display if state.frozen else self._compute(state, now)
            prev_lat, prev_lng = current.latitude, current.longitude
            duration = self._adapt_duration(state.duration, now - state.last_update_at)
            fallback_heading = position.heading if math.isfinite(position.heading) else state.heading

        heading = self._heading(prev_lat, prev_lng, position.latitude, position.longitude, fallback_heading)
        from_frac, to_frac = self._road_fractions(
            position.route_id, prev_lat, prev_lng, position.latitude, position.longitude,
        )

        new_state = VehicleDisplayState(
            id=position.id,
            prev_lat=prev_lat,
            prev_lng=prev_lng,
            target_lat=position.latitude,
            target_lng=position.longitude,
            interpolation_start=now,
            duration=duration,
            heading=heading,
            display=DisplayPosition(prev_lat, prev_lng, heading),
            last_timestamp=position.timestamp,
            last_update_at=now,
            route_id=position.route_id,
            from_fraction=from_frac,
            to_fraction=to_frac,
        )
        new_state.display = self._compute(new_state, now)
        self._states[position.id] = new_state
        return True

    def frame(self) -> dict[str, DisplayPosition]:
        """Advance every vehicle to the current render time."""
        now = self._clock()
        positions: dict[str, DisplayPosition] = {}
        for vid, state in self._states.items():
            if not state.frozen:
                state.display = self._compute(state, now)
                if now - state.last_update_at > self.stale_timeout:
                    # Progress is clamped, so the frozen value never passes the target
                    state.frozen = True
                    self._degrade(Degradation.STALE_VEHICLE, vid)
            positions[vid] = state.display
        return positions

    def stale_ids(self, older_than_s: float | None = None) -> list[str]:
        """Vehicles without an accepted update for longer than the threshold."""
        threshold = self.stale_timeout if older_than_s is None else older_than_s
        now = self._clock()
        return [vid for vid, s in self._states.items() if now - s.last_update_at > threshold]

    def remove(self, vehicle_id: str) -> bool:
        return self._states.pop(vehicle_id, None) is not None

    # ------------------------------------------------------------------

    def _compute(self, state: VehicleDisplayState, now: float) -> DisplayPosition:
        elapsed = max(0.0, now - state.interpolation_start)
        progress = min(1.0, elapsed / state.duration) if state.duration > 0 else 1.0
        eased = smoothstep(progress)

        if state.from_fraction is not None and state.to_fraction is not None and state.route_id:
            route = self._lookup(state.route_id)
            if route is not None and route.is_valid:
                pt = walk_polyline(route, state.from_fraction, state.to_fraction, eased)
                if pt is not None:
                    return DisplayPosition(latitude=pt[1], longitude=pt[0], heading=state.heading)

        return DisplayPosition(
            latitude=state.prev_lat + (state.target_lat - state.prev_lat) * eased,
            longitude=state.prev_lng + (state.target_lng - state.prev_lng) * eased,
            heading=state.heading,
        )

    def _adapt_duration(self, current: float, gap: float) -> float:
        if not math.isfinite(gap) or gap <= 0:
            return current
        blended = (1 - GAP_EMA_ALPHA) * current + GAP_EMA_ALPHA * gap
        return max(self.min_duration, min(self.max_duration, blended))

    def _heading(
        self,
        prev_lat: float, prev_lng: float,
        lat: float, lng: float,
        reported: float,
    ) -> float:
        """Bearing of travel, or the reported heading while (nearly) stationary."""
        if distance_meters(prev_lat, prev_lng, lat, lng) >= self.heading_min_displacement_m:
            return bearing_deg(prev_lat, prev_lng, lat, lng)
        if math.isfinite(reported):
            return reported % 360
        return 0.0

    def _road_fractions(
        self,
        route_id: str | None,
        prev_lat: float, prev_lng: float,
        lat: float, lng: float,
    ) -> tuple[float | None, float | None]:
        if not route_id:
            return None, None
        route = self._lookup(route_id)
        if route is None:
            return None, None
        if not route.is_valid:
            self._degrade(Degradation.MALFORMED_GEOMETRY, route_id)
            return None, None

        from_proj = route.snap(prev_lng, prev_lat)
        to_proj = route.snap(lng, lat)
        if from_proj is None or to_proj is None:
            return None, None

        off_route = max(
            distance_meters(prev_lat, prev_lng, from_proj.latitude, from_proj.longitude),
            distance_meters(lat, lng, to_proj.latitude, to_proj.longitude),
        )
        if off_route > self.max_snap_distance_m:
            self._degrade(Degradation.OFF_ROUTE, route_id)
            return None, None
        return from_proj.path_fraction, to_proj.path_fraction

    def _lookup(self, route_id: str) -> RouteGeometry | None:
        if self._route_lookup is None:
            return None
        return self._route_lookup(route_id)

    def _degrade(self, kind: Degradation, subject: str) -> None:
        logger.debug("%s: %s", kind.value, subject)
        if self._on_degradation is not None:
            self._on_degradation(kind, subject)
