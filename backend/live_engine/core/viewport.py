"""Viewport culling: decide which vehicles get a realized map marker.

The filter never touches rendering objects. It emits create/update/destroy
commands and a renderer-specific adapter owns the actual markers.
"""

import enum
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass

from live_engine.core.interpolator import DisplayPosition

logger = logging.getLogger(__name__)

DEFAULT_PADDING_DEG = 0.005


@dataclass(frozen=True)
class ViewportBounds:
    """Lat/lng rectangle given by its south-west and north-east corners."""

    south: float
    west: float
    north: float
    east: float

    @classmethod
    def from_corners(cls, sw: tuple[float, float], ne: tuple[float, float]) -> "ViewportBounds":
        """Build from map-style [lng, lat] corners."""
        return cls(south=sw[1], west=sw[0], north=ne[1], east=ne[0])

    def contains(self, lat: float, lng: float, padding: float = 0.0) -> bool:
        """Inclusive containment test with the box grown by `padding` degrees."""
        if not (math.isfinite(lat) and math.isfinite(lng)):
            return False
        return (
            self.south - padding <= lat <= self.north + padding
            and self.west - padding <= lng <= self.east + padding
        )


class MarkerOp(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"


@dataclass(frozen=True)
class MarkerCommand:
    op: MarkerOp
    vehicle_id: str
    position: DisplayPosition | None = None

    def to_dict(self) -> dict:
        data: dict = {"op": self.op.value, "id": self.vehicle_id}
        if self.position is not None:
            data["lat"] = self.position.latitude
            data["lng"] = self.position.longitude
            data["heading"] = self.position.heading
        return data


class ViewportFilter:
    """Tracks realized markers for one viewport (one rendering client)."""

    def __init__(self, padding_deg: float = DEFAULT_PADDING_DEG) -> None:
        self.padding = padding_deg
        self.bounds: ViewportBounds | None = None
        self._markers: set[str] = set()

    @property
    def markers(self) -> frozenset[str]:
        return frozenset(self._markers)

    def has_marker(self, vehicle_id: str) -> bool:
        return vehicle_id in self._markers

    def is_visible(self, position: DisplayPosition) -> bool:
        if self.bounds is None:
            return True
        return self.bounds.contains(position.latitude, position.longitude, self.padding)

    def settle(
        self,
        bounds: ViewportBounds | None,
        positions: Mapping[str, DisplayPosition],
    ) -> list[MarkerCommand]:
        """Replace the bounds after a pan/zoom settles and reconcile markers."""
        self.bounds = bounds
        commands = self.reconcile(positions)
        logger.debug(
            "Viewport settled: %d markers realized, %d commands",
            len(self._markers), len(commands),
        )
        return commands

    def reconcile(self, positions: Mapping[str, DisplayPosition]) -> list[MarkerCommand]:
        """Bring markers in line with the current bounds, one pass over vehicles.

        Existing markers are updated in place rather than recreated.
        """
        commands: list[MarkerCommand] = []
        for vid, pos in positions.items():
            if self.is_visible(pos):
                op = MarkerOp.UPDATE if vid in self._markers else MarkerOp.CREATE
                self._markers.add(vid)
                commands.append(MarkerCommand(op, vid, pos))
            elif vid in self._markers:
                self._markers.discard(vid)
                commands.append(MarkerCommand(MarkerOp.DESTROY, vid))

        # Markers for vehicles that left the feed
        for vid in [m for m in self._markers if m not in positions]:
            self._markers.discard(vid)
            commands.append(MarkerCommand(MarkerOp.DESTROY, vid))
        return commands

    def remove(self, vehicle_id: str) -> MarkerCommand | None:
        """Destroy a vehicle's marker if realized. Safe to call repeatedly."""
        if vehicle_id not in self._markers:
            return None
        self._markers.discard(vehicle_id)
        return MarkerCommand(MarkerOp.DESTROY, vehicle_id)

