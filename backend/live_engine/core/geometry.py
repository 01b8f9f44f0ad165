"""Snap positions to route polylines and walk along them by path fraction.

Polylines are sequences of (lng, lat) vertices. Distances used for snapping
are planar in degree space, which is accurate enough at city scale.
"""

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

from shapely.geometry import LineString

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
LAT_M_PER_DEG = 111_320.0

# Segments shorter than this (squared, in degrees) are treated as points
_DEGENERATE_LEN_SQ = 1e-14

Coord = tuple[float, float]  # (lng, lat)


@dataclass(frozen=True)
class ProjectedPosition:
    longitude: float
    latitude: float
    segment_index: int
    segment_fraction: float  # 0.0-1.0 along the winning segment
    path_fraction: float  # 0.0-1.0 along the whole polyline
    distance: float  # planar distance from the query point, in degrees


def _clamp01(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


def _finite(*values: float) -> bool:
    return all(math.isfinite(v) for v in values)


def _project_to_segment(
    px: float, py: float,
    ax: float, ay: float,
    bx: float, by: float,
) -> float:
    """Parameter t of the closest point on segment a→b, clamped to [0, 1]."""
    dx, dy = bx - ax, by - ay
    len_sq = dx * dx + dy * dy
    if len_sq < _DEGENERATE_LEN_SQ:
        return 0.0
    return max(0.0, min(1.0, ((px - ax) * dx + (py - ay) * dy) / len_sq))


class RouteGeometry:
    """Immutable route polyline with precomputed cumulative segment lengths."""

    def __init__(self, vertices: Sequence[Sequence[float]]) -> None:
        self.vertices: tuple[Coord, ...] = tuple((float(v[0]), float(v[1])) for v in vertices)
        self.is_valid = len(self.vertices) >= 2 and all(_finite(x, y) for x, y in self.vertices)

        seg_lens = []
        if self.is_valid:
            for (ax, ay), (bx, by) in zip(self.vertices, self.vertices[1:]):
                seg_lens.append(math.hypot(bx - ax, by - ay))
        cumulative = [0.0]
        for length in seg_lens:
            cumulative.append(cumulative[-1] + length)

        self.segment_lengths: tuple[float, ...] = tuple(seg_lens)
        self.cumulative_lengths: tuple[float, ...] = tuple(cumulative)
        self.total_length: float = cumulative[-1]

        # Shapely handles the length walk; it needs a non-degenerate line
        self._line = LineString(self.vertices) if self.is_valid and self.total_length > 0 else None

    def __len__(self) -> int:
        return len(self.vertices)

    def __repr__(self) -> str:
        return f"RouteGeometry(vertices={len(self.vertices)}, length={self.total_length:.6f})"

    def snap(self, lng: float, lat: float) -> ProjectedPosition | None:
        """Project a point onto the nearest segment.

        Ties in distance keep the lowest segment index. Returns None for
        malformed geometry or a non-finite query point.
        """
        if not self.is_valid or not _finite(lng, lat):
            return None

        best_dist = math.inf
        best_seg = 0
        best_t = 0.0
        verts = self.vertices

        for i in range(len(verts) - 1):
            ax, ay = verts[i]
            bx, by = verts[i + 1]
            t = _project_to_segment(lng, lat, ax, ay, bx, by)
            cx = ax + t * (bx - ax)
            cy = ay + t * (by - ay)
            d = (lng - cx) ** 2 + (lat - cy) ** 2
            if d < best_dist:
                best_dist = d
                best_seg = i
                best_t = t

        along = self.cumulative_lengths[best_seg] + self.segment_lengths[best_seg] * best_t
        path_fraction = along / self.total_length if self.total_length > 0 else 0.0

        ax, ay = verts[best_seg]
        bx, by = verts[best_seg + 1]
        return ProjectedPosition(
            longitude=ax + best_t * (bx - ax),
            latitude=ay + best_t * (by - ay),
            segment_index=best_seg,
            segment_fraction=best_t,
            path_fraction=_clamp01(path_fraction),
            distance=math.sqrt(best_dist),
        )

    def point_at(self, fraction: float) -> Coord | None:
        """Return the (lng, lat) at a fraction of the total polyline length."""
        if not self.is_valid:
            return None
        if self._line is None:
            return self.vertices[0]
        fraction = _clamp01(fraction)
        if fraction <= 0.0:
            return self.vertices[0]
        if fraction >= 1.0:
            return self.vertices[-1]
        pt = self._line.interpolate(fraction, normalized=True)
        return (pt.x, pt.y)


def _as_geometry(polyline: "RouteGeometry | Sequence[Sequence[float]]") -> RouteGeometry | None:
    if isinstance(polyline, RouteGeometry):
        return polyline
    try:
        return RouteGeometry(polyline)
    except (TypeError, ValueError, IndexError):
        logger.debug("Rejected malformed polyline input")
        return None


def snap_to_polyline(
    point: Sequence[float],
    polyline: "RouteGeometry | Sequence[Sequence[float]]",
) -> ProjectedPosition | None:
    """Snap a (lng, lat) point to the closest position on a polyline."""
    geometry = _as_geometry(polyline)
    if geometry is None:
        return None
    try:
        lng, lat = float(point[0]), float(point[1])
    except (TypeError, ValueError, IndexError):
        return None
    return geometry.snap(lng, lat)


def walk_polyline(
    polyline: "RouteGeometry | Sequence[Sequence[float]]",
    from_fraction: float,
    to_fraction: float,
    progress: float,
) -> Coord | None:
    """Point between two path fractions at the given progress (0.0-1.0).

    Moves the position along the road instead of cutting corners between
    two GPS fixes.
    """
    geometry = _as_geometry(polyline)
    if geometry is None:
        return None
    progress = _clamp01(progress)
    return geometry.point_at(from_fraction + (to_fraction - from_fraction) * progress)


def decode_polyline(encoded: str) -> list[Coord]:
    """Decode an encoded polyline string into (lng, lat) pairs.

    Each value is a zig-zag encoded delta of a 5-decimal fixed-point
    coordinate, latitude first. A truncated trailing pair is dropped.
    """
    coords: list[Coord] = []
    index = 0
    lat = 0
    lng = 0
    n = len(encoded)

    while index < n:
        deltas = []
        for _ in range(2):
            shift = 0
            result = 0
            while True:
                if index >= n:
                    return coords
                byte = ord(encoded[index]) - 63
                index += 1
                result |= (byte & 0x1F) << shift
                shift += 5
                if byte < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)
        lat += deltas[0]
        lng += deltas[1]
        coords.append((lng / 1e5, lat / 1e5))

    return coords


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometers."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return haversine_km(lat1, lon1, lat2, lon2) * 1000


def bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Bearing in degrees from point 1 to point 2 (flat-earth approximation)."""
    lon_m = LAT_M_PER_DEG * math.cos(math.radians((lat1 + lat2) / 2))
    dx = (lon2 - lon1) * lon_m
    dy = (lat2 - lat1) * LAT_M_PER_DEG
    return math.degrees(math.atan2(dx, dy)) % 360


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.1f}km"
