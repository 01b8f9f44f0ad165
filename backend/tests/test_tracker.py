"""Tests for feed message handling and session fan-out."""

import asyncio

import orjson

from live_engine.core.broadcaster import CLOSE, Broadcaster
from live_engine.core.engine import LiveEngine
from live_engine.core.route_cache import RouteGeometryCache, StopCache
from live_engine.core.tracker import LiveTracker


def _tracker(queue_size: int = 30) -> LiveTracker:
    return LiveTracker(
        LiveEngine(),
        Broadcaster(queue_size=queue_size),
        RouteGeometryCache(),
        StopCache(),
    )


def _vehicle(vid, lat=56.85, lng=60.60, ts=1_700_000_000_000, **extra):
    return {"vehicleId": vid, "lat": lat, "lng": lng, "timestamp": ts, **extra}


def _drain(queue) -> list[dict]:
    messages = []
    while not queue.empty():
        messages.append(orjson.loads(queue.get_nowait()))
    return messages


def test_snapshot_message():
    tracker = _tracker()
    tracker.handle_message(orjson.dumps({
        "type": "snapshot",
        "vehicles": [_vehicle("b1", etaMinutes=4), _vehicle("b2", occupancy={"level": "FULL", "percent": 99})],
    }))
    engine = tracker.engine
    assert sorted(engine.vehicle_ids) == ["b1", "b2"]
    # Millisecond timestamps are stored as seconds
    assert engine.latest("b1").timestamp == 1_700_000_000
    assert engine.eta("b1").display_minutes == 4
    assert engine.suggestions() == ["b1"]


def test_update_and_offline_messages():
    tracker = _tracker()
    tracker.handle_message({"type": "update", "vehicles": [_vehicle("b1")]})
    assert "b1" in tracker.engine
    tracker.handle_message({"type": "offline", "vehicleId": "b1"})
    assert "b1" not in tracker.engine
    # Removing again is harmless
    tracker.handle_message({"type": "offline", "vehicleId": "b1"})


def test_malformed_messages_rejected():
    tracker = _tracker()
    tracker.handle_message(b"{not json")
    tracker.handle_message({"type": "update", "vehicles": [{"vehicleId": "b1", "lat": "north"}]})
    tracker.handle_message({"vehicles": []})
    assert tracker.rejected_messages == 3
    assert len(tracker.engine) == 0


def test_unknown_message_type_ignored():
    tracker = _tracker()
    tracker.handle_message({"type": "heartbeat"})
    assert tracker.rejected_messages == 0


def test_suggestions_message_sets_override():
    tracker = _tracker()
    tracker.handle_message({"type": "update", "vehicles": [_vehicle("a", etaMinutes=2), _vehicle("b", etaMinutes=9)]})
    tracker.handle_message({"type": "suggestions", "suggestions": [
        {"vehicleId": "b", "rawEtaMinutes": 9, "reason": "less crowded", "score": 1.0},
    ]})
    assert tracker.engine.suggestions() == ["b", "a"]


def test_session_receives_frames():
    async def run():
        tracker = _tracker()
        queue = tracker.open_session("s1")
        tracker.ingest_snapshot([])
        tracker.handle_message({"type": "update", "vehicles": [_vehicle("b1")]})
        await tracker.render_frame()
        await tracker.push_eta_and_suggestions()
        tracker.remove("b1")
        messages = _drain(queue)
        tracker.close_session("s1")
        return tracker, messages

    tracker, messages = asyncio.run(run())
    assert [m["type"] for m in messages] == ["frame", "eta", "suggestions", "frame"]
    assert messages[0]["markers"][0]["op"] == "create"
    assert messages[0]["markers"][0]["id"] == "b1"
    assert messages[2]["ids"] == ["b1"]
    assert messages[3]["markers"] == [{"op": "destroy", "id": "b1"}]
    assert tracker.engine.session_ids == []
    assert len(tracker.broadcaster) == 0


def test_settle_sends_visible_markers():
    from live_engine.core.viewport import ViewportBounds

    async def run():
        tracker = _tracker()
        tracker.handle_message({"type": "update", "vehicles": [_vehicle("in"), _vehicle("out", lat=58.0)]})
        queue = tracker.open_session("s1")
        tracker.settle("s1", ViewportBounds(south=56.8, west=60.5, north=56.9, east=60.7))
        return _drain(queue)

    messages = asyncio.run(run())
    assert len(messages) == 1
    assert [m["id"] for m in messages[0]["markers"]] == ["in"]


def test_slow_session_dropped():
    async def run():
        tracker = _tracker(queue_size=2)
        queue = tracker.open_session("s1")
        for _ in range(3):
            tracker.broadcaster.send_all({"type": "eta", "etas": {}})
        items = []
        while not queue.empty():
            items.append(queue.get_nowait())
        return tracker, items

    tracker, items = asyncio.run(run())
    assert items[-1] == CLOSE
    assert len(tracker.broadcaster) == 0


def test_feed_loads_stored_snapshot():
    from live_engine.core.feed import FeedSubscriber

    class FakeRedis:
        def __init__(self) -> None:
            self.keys = []

        async def get(self, key):
            self.keys.append(key)
            return orjson.dumps({"type": "snapshot", "vehicles": [_vehicle("b1")]})

    tracker = _tracker()
    feed = FeedSubscriber(tracker, redis_url="redis://unused", channel="test:vehicles", state_key="test:state")
    feed._redis = FakeRedis()
    asyncio.run(feed.load_snapshot())
    assert feed._redis.keys == ["test:state"]
    assert tracker.engine.vehicle_ids == ["b1"]


def test_non_finite_timestamp_rejected():
    """NaN or infinite timestamps never reach the engine."""
    tracker = _tracker()
    tracker.handle_message({"type": "update", "vehicles": [_vehicle("b1", ts=1.0)]})
    for bad in ("nan", "inf", "-Infinity"):
        tracker.handle_message({"type": "update", "vehicles": [_vehicle("b1", lat=56.9, ts=bad)]})
    assert tracker.rejected_messages == 3
    assert tracker.engine.latest("b1").latitude == 56.85
    # A normal later sample is still accepted
    tracker.handle_message({"type": "update", "vehicles": [_vehicle("b1", lat=56.9, ts=2.0)]})
    assert tracker.engine.latest("b1").latitude == 56.9
