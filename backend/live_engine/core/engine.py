"""Live engine: position store plus the per-frame rendering pipeline.

Raw samples go into the position store and the interpolator; every render
tick produces display positions once and reconciles each client viewport
against them. Everything here is synchronous in-memory work; I/O lives in
the tracker that drives this object.
"""

import datetime
import logging
import time
from collections import Counter, deque
from collections.abc import Callable, Iterable, Sequence

from live_engine.core.eta_smoother import EtaSmoother, SmoothedEta
from live_engine.core.geometry import ProjectedPosition, RouteGeometry
from live_engine.core.interpolator import DisplayPosition, Interpolator
from live_engine.core.suggestions import (
    DEFAULT_SUGGESTION_COUNT,
    RankableVehicle,
    SuggestionOverride,
    calculate_occupancy,
    get_smart_suggestions,
    sort_by_suggestion,
)
from live_engine.core.vehicle import Degradation, OccupancyLevel, VehiclePosition
from live_engine.core.viewport import MarkerCommand, ViewportBounds, ViewportFilter

logger = logging.getLogger(__name__)


class LiveEngine:
    """Owns vehicle state and hands render output to viewport sessions."""

    def __init__(
        self,
        route_lookup: Callable[[str], RouteGeometry | None] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        duration_ms: float = 3000,
        min_duration_ms: float = 1000,
        max_duration_ms: float = 6000,
        heading_min_displacement_m: float = 3.0,
        stale_timeout_s: float = 30.0,
        vehicle_ttl_s: float = 120.0,
        max_snap_distance_m: float = 300.0,
        viewport_padding_deg: float = 0.005,
    ) -> None:
        self._route_lookup = route_lookup
        self.vehicle_ttl = vehicle_ttl_s
        self.viewport_padding = viewport_padding_deg

        self.interpolator = Interpolator(
            route_lookup,
            duration_ms=duration_ms,
            min_duration_ms=min_duration_ms,
            max_duration_ms=max_duration_ms,
            heading_min_displacement_m=heading_min_displacement_m,
            stale_timeout_s=stale_timeout_s,
            max_snap_distance_m=max_snap_distance_m,
            clock=clock,
            on_degradation=self._record_degradation,
        )
        self.eta_smoother = EtaSmoother()

        # Position store: authoritative latest and previous raw sample
        self._latest: dict[str, VehiclePosition] = {}
        self._previous: dict[str, VehiclePosition] = {}

        # session_id -> viewport filter of one rendering client
        self._sessions: dict[str, ViewportFilter] = {}
        self._last_frame: dict[str, DisplayPosition] = {}

        # Backend ranking, used as-is until replaced
        self._override: list[SuggestionOverride] = []

        self._degradations: deque[dict] = deque(maxlen=500)
        self._degradation_counts: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Position store

    def __len__(self) -> int:
        return len(self._latest)

    def __contains__(self, vehicle_id: object) -> bool:
        return vehicle_id in self._latest

    @property
    def vehicle_ids(self) -> list[str]:
        return list(self._latest)

    def latest(self, vehicle_id: str) -> VehiclePosition | None:
        return self._latest.get(vehicle_id)

    def previous(self, vehicle_id: str) -> VehiclePosition | None:
        return self._previous.get(vehicle_id)

    def apply_update(self, position: VehiclePosition) -> bool:
        """Apply one raw sample. Returns False if it was dropped."""
        if not self.interpolator.apply(position):
            return False

        current = self._latest.get(position.id)
        if current is not None:
            self._previous[position.id] = current
        self._latest[position.id] = position

        if position.eta_minutes is not None:
            self.observe_eta(position.id, position.eta_minutes)
        return True

    def apply_updates(self, positions: Iterable[VehiclePosition]) -> int:
        return sum(1 for p in positions if self.apply_update(p))

    def apply_snapshot(self, positions: Sequence[VehiclePosition]) -> dict[str, list[MarkerCommand]]:
        """Replace the fleet with a full snapshot.

        Vehicles missing from the snapshot are removed; returns the destroy
        commands this produces per session.
        """
        present = {p.id for p in positions}
        commands: dict[str, list[MarkerCommand]] = {}
        for vid in [v for v in self._latest if v not in present]:
            for sid, cmd in self.remove_vehicle(vid).items():
                commands.setdefault(sid, []).append(cmd)
        applied = self.apply_updates(positions)
        logger.info("Snapshot applied: %d/%d vehicles accepted", applied, len(positions))
        return commands

    def remove_vehicle(self, vehicle_id: str) -> dict[str, MarkerCommand]:
        """Drop every piece of state for a vehicle. Safe to call repeatedly.

        Returns the marker destroy command for each session that had one.
        """
        self._latest.pop(vehicle_id, None)
        self._previous.pop(vehicle_id, None)
        self._last_frame.pop(vehicle_id, None)
        self.interpolator.remove(vehicle_id)
        self.eta_smoother.reset(vehicle_id)

        commands: dict[str, MarkerCommand] = {}
        for sid, viewport in self._sessions.items():
            cmd = viewport.remove(vehicle_id)
            if cmd is not None:
                commands[sid] = cmd
        return commands

    def sweep_stale(self) -> dict[str, list[MarkerCommand]]:
        """Remove vehicles silent for longer than the TTL."""
        commands: dict[str, list[MarkerCommand]] = {}
        expired = self.interpolator.stale_ids(self.vehicle_ttl)
        for vid in expired:
            for sid, cmd in self.remove_vehicle(vid).items():
                commands.setdefault(sid, []).append(cmd)
        if expired:
            logger.info("Removed %d vehicles not seen for %ds", len(expired), self.vehicle_ttl)
        return commands

    def stale_vehicle_ids(self) -> list[str]:
        return self.interpolator.stale_ids()

    def missing_route_ids(self) -> set[str]:
        """Route ids referenced by vehicles but without known geometry."""
        if self._route_lookup is None:
            return set()
        return {
            p.route_id for p in self._latest.values()
            if p.route_id and self._route_lookup(p.route_id) is None
        }

    # ------------------------------------------------------------------
    # Rendering

    def open_session(self, session_id: str) -> ViewportFilter:
        viewport = ViewportFilter(self.viewport_padding)
        self._sessions[session_id] = viewport
        return viewport

    def close_session(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    @property
    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def settle_viewport(self, session_id: str, bounds: ViewportBounds | None) -> list[MarkerCommand]:
        viewport = self._sessions.get(session_id)
        if viewport is None:
            viewport = self.open_session(session_id)
        self._last_frame = self.interpolator.frame()
        return viewport.settle(bounds, self._last_frame)

    def render_frame(self) -> dict[str, list[MarkerCommand]]:
        """Advance all vehicles once and reconcile every session against them."""
        self._last_frame = self.interpolator.frame()
        return {
            sid: viewport.reconcile(self._last_frame)
            for sid, viewport in self._sessions.items()
        }

    def display_positions(self) -> dict[str, DisplayPosition]:
        """Positions of the last rendered frame."""
        return dict(self._last_frame)

    def display_position(self, vehicle_id: str) -> DisplayPosition | None:
        pos = self._last_frame.get(vehicle_id)
        if pos is None:
            state = self.interpolator.get(vehicle_id)
            if state is not None:
                pos = state.display
        return pos

    def snap(self, route_id: str, lat: float, lng: float) -> ProjectedPosition | None:
        if self._route_lookup is None:
            return None
        route = self._route_lookup(route_id)
        if route is None:
            return None
        projected = route.snap(lng, lat)
        if projected is None:
            self._record_degradation(Degradation.MALFORMED_GEOMETRY, route_id)
        return projected

    # ------------------------------------------------------------------
    # ETA and suggestions

    def observe_eta(self, vehicle_id: str, raw_minutes: float | None) -> SmoothedEta | None:
        result = self.eta_smoother.smooth(vehicle_id, raw_minutes)
        if result is None:
            self._record_degradation(Degradation.MISSING_ETA, vehicle_id)
        return result

    def eta(self, vehicle_id: str) -> SmoothedEta | None:
        return self.eta_smoother.latest(vehicle_id)

    def etas(self) -> dict[str, SmoothedEta]:
        out = {}
        for vid in self._latest:
            eta = self.eta_smoother.latest(vid)
            if eta is not None:
                out[vid] = eta
        return out

    def set_suggestion_override(self, records: Sequence[SuggestionOverride]) -> None:
        """Adopt a backend ranking; its raw ETAs feed the smoother too."""
        self._override = list(records)
        for r in records:
            if r.vehicle_id in self._latest:
                self.observe_eta(r.vehicle_id, r.raw_eta_minutes)

    def clear_suggestion_override(self) -> None:
        self._override = []

    def rankable(self) -> list[RankableVehicle]:
        """Ranking snapshot of every known vehicle, on screen or not."""
        vehicles = []
        for vid, p in self._latest.items():
            eta = self.eta_smoother.latest(vid)
            vehicles.append(RankableVehicle(
                id=vid,
                eta_minutes=eta.display_minutes if eta is not None else None,
                occupancy=self._occupancy(p),
                distance_km=p.distance_m / 1000 if p.distance_m is not None else None,
                route_number=p.route_number,
            ))
        return vehicles

    def ranked_ids(self) -> list[str]:
        return [v.id for v in sort_by_suggestion(self.rankable(), self._override)]

    def suggestions(self, count: int = DEFAULT_SUGGESTION_COUNT) -> list[str]:
        return [v.id for v in get_smart_suggestions(self.rankable(), count, self._override)]

    @staticmethod
    def _occupancy(p: VehiclePosition) -> OccupancyLevel:
        if p.occupancy is not None:
            return p.occupancy
        if p.passenger_count is not None and p.capacity:
            return calculate_occupancy(p.passenger_count, p.capacity).level
        return OccupancyLevel.LOW

    # ------------------------------------------------------------------
    # Diagnostics

    def _record_degradation(self, kind: Degradation, subject: str) -> None:
        self._degradation_counts[kind.value] += 1
        self._degradations.append({
            "kind": kind.value,
            "subject": subject,
            "at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        })

    def get_diagnostics(self, limit: int = 100) -> dict:
        recent = list(self._degradations)[-limit:] if limit > 0 else []
        return {
            "vehicles": len(self._latest),
            "stale_vehicles": len(self.interpolator.stale_ids()),
            "sessions": len(self._sessions),
            "markers": {sid: len(v.markers) for sid, v in self._sessions.items()},
            "eta_tracked": len(self.eta_smoother),
            "override_records": len(self._override),
            "missing_routes": sorted(self.missing_route_ids()),
            "degradation_counts": dict(self._degradation_counts),
            "recent_degradations": recent,
        }
