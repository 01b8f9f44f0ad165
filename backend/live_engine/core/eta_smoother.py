"""Low-pass filter for per-vehicle ETA values shown to passengers."""

import logging
import math
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Relative change below which a new ETA is shown as-is
SMOOTH_THRESHOLD = 0.18
# Relative change above which heavier damping applies
LARGE_DELTA_THRESHOLD = 0.40

SMOOTH_WEIGHT_PREV_NORMAL = 0.7
SMOOTH_WEIGHT_NEW_NORMAL = 0.3
SMOOTH_WEIGHT_PREV_LARGE = 0.8
SMOOTH_WEIGHT_NEW_LARGE = 0.2


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_minutes(minutes: float) -> str:
    """Human readable ETA: 'arriving now', '7 min' or '1h 5m'."""
    if minutes < 1:
        return "arriving now"
    whole = _round_half_up(minutes)
    if whole < 60:
        return f"{whole} min"
    h, m = divmod(whole, 60)
    return f"{h}h {m}m"


@dataclass(frozen=True)
class SmoothedEta:
    display_minutes: float
    formatted: str
    is_smoothed: bool


class EtaSmoother:
    """Keeps the previously displayed ETA per vehicle and damps large jumps."""

    def __init__(self) -> None:
        # vehicle_id -> previously displayed minutes
        self._previous: dict[str, float] = {}
        # vehicle_id -> last result handed out, for read-only consumers
        self._latest: dict[str, SmoothedEta] = {}

    def __len__(self) -> int:
        return len(self._previous)

    def __contains__(self, vehicle_id: object) -> bool:
        return vehicle_id in self._previous

    def previous(self, vehicle_id: str) -> float | None:
        return self._previous.get(vehicle_id)

    def latest(self, vehicle_id: str) -> SmoothedEta | None:
        return self._latest.get(vehicle_id)

    def smooth(self, vehicle_id: str, raw_minutes: float | None) -> SmoothedEta | None:
        """Return the ETA to display for a new raw observation.

        A missing, negative or non-numeric value clears the vehicle's state
        and yields None.
        """
        if raw_minutes is None or not math.isfinite(raw_minutes) or raw_minutes < 0:
            self._previous.pop(vehicle_id, None)
            self._latest.pop(vehicle_id, None)
            return None

        prev = self._previous.get(vehicle_id)
        if prev is None:
            self._previous[vehicle_id] = raw_minutes
            result = SmoothedEta(raw_minutes, format_minutes(raw_minutes), is_smoothed=False)
            self._latest[vehicle_id] = result
            return result

        delta = abs(raw_minutes - prev) / max(prev, 1)
        if delta > LARGE_DELTA_THRESHOLD:
            # A large single-sample jump is more often recomputation noise
            smoothed = _round_half_up(SMOOTH_WEIGHT_PREV_LARGE * prev + SMOOTH_WEIGHT_NEW_LARGE * raw_minutes)
            is_smoothed = True
        elif delta > SMOOTH_THRESHOLD:
            smoothed = _round_half_up(SMOOTH_WEIGHT_PREV_NORMAL * prev + SMOOTH_WEIGHT_NEW_NORMAL * raw_minutes)
            is_smoothed = True
        else:
            smoothed = raw_minutes
            is_smoothed = False

        if is_smoothed:
            logger.debug("ETA %s: raw=%s prev=%s shown=%s", vehicle_id, raw_minutes, prev, smoothed)
        self._previous[vehicle_id] = smoothed
        result = SmoothedEta(smoothed, format_minutes(smoothed), is_smoothed)
        self._latest[vehicle_id] = result
        return result

    def reset(self, vehicle_id: str | None = None) -> None:
        """Forget one vehicle's ETA history, or everything."""
        if vehicle_id is None:
            self._previous.clear()
            self._latest.clear()
        else:
            self._previous.pop(vehicle_id, None)
            self._latest.pop(vehicle_id, None)
