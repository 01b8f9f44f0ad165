"""Tests for the viewport filter."""

from live_engine.core.interpolator import DisplayPosition
from live_engine.core.viewport import MarkerOp, ViewportBounds, ViewportFilter

PADDING = 0.005
BOUNDS = ViewportBounds(south=56.80, west=60.50, north=56.90, east=60.70)


def _at(lat, lng):
    return DisplayPosition(latitude=lat, longitude=lng, heading=0.0)


def test_from_corners():
    """Corners arrive map-style as [lng, lat]."""
    bounds = ViewportBounds.from_corners((60.50, 56.80), (60.70, 56.90))
    assert bounds == BOUNDS


def test_boundary_is_inclusive():
    assert BOUNDS.contains(56.90, 60.70)
    assert BOUNDS.contains(56.80, 60.50)
    assert BOUNDS.contains(56.90 + PADDING, 60.70, PADDING)


def test_one_padding_increment_beyond_is_excluded():
    assert not BOUNDS.contains(56.90 + PADDING, 60.70)
    assert not BOUNDS.contains(56.90 + 2 * PADDING, 60.70, PADDING)
    assert not BOUNDS.contains(56.85, 60.50 - 2 * PADDING, PADDING)


def test_non_finite_position_not_contained():
    assert not BOUNDS.contains(float("nan"), 60.6)


def test_settle_creates_only_visible_markers():
    vf = ViewportFilter(PADDING)
    commands = vf.settle(BOUNDS, {"in": _at(56.85, 60.60), "out": _at(57.5, 60.60)})
    assert [(c.op, c.vehicle_id) for c in commands] == [(MarkerOp.CREATE, "in")]
    assert vf.markers == {"in"}


def test_existing_marker_updated_in_place():
    vf = ViewportFilter(PADDING)
    vf.settle(BOUNDS, {"a": _at(56.85, 60.60)})
    commands = vf.reconcile({"a": _at(56.86, 60.61)})
    assert len(commands) == 1
    assert commands[0].op == MarkerOp.UPDATE
    assert commands[0].position.latitude == 56.86


def test_leaving_viewport_destroys_marker():
    vf = ViewportFilter(PADDING)
    vf.settle(BOUNDS, {"a": _at(56.85, 60.60)})
    commands = vf.settle(ViewportBounds(south=55.0, west=59.0, north=55.1, east=59.1), {"a": _at(56.85, 60.60)})
    assert [(c.op, c.vehicle_id) for c in commands] == [(MarkerOp.DESTROY, "a")]
    assert not vf.has_marker("a")


def test_vanished_vehicle_destroyed():
    vf = ViewportFilter(PADDING)
    vf.settle(BOUNDS, {"a": _at(56.85, 60.60)})
    commands = vf.reconcile({})
    assert [(c.op, c.vehicle_id) for c in commands] == [(MarkerOp.DESTROY, "a")]


def test_no_bounds_shows_everything():
    vf = ViewportFilter(PADDING)
    commands = vf.reconcile({"a": _at(10.0, 10.0), "b": _at(-10.0, -10.0)})
    assert {c.vehicle_id for c in commands} == {"a", "b"}


def test_remove_is_idempotent():
    vf = ViewportFilter(PADDING)
    vf.settle(BOUNDS, {"a": _at(56.85, 60.60)})
    cmd = vf.remove("a")
    assert cmd.op == MarkerOp.DESTROY
    assert vf.remove("a") is None
    assert vf.remove("never-seen") is None


def test_command_to_dict():
    vf = ViewportFilter(PADDING)
    cmd = vf.settle(BOUNDS, {"a": _at(56.85, 60.60)})[0]
    assert cmd.to_dict() == {"op": "create", "id": "a", "lat": 56.85, "lng": 60.60, "heading": 0.0}
    assert vf.remove("a").to_dict() == {"op": "destroy", "id": "a"}
