"""Tests for the route geometry and stop caches."""

import asyncio

from live_engine.core.route_cache import RouteGeometryCache, StopCache, deduplicate_by_name
from live_engine.core.route_source import RawRoute, RawStop


class FakeSource:
    """Stands in for RouteSourceClient, counting requests."""

    def __init__(self, routes=None, stops=None) -> None:
        self.routes = routes or {}
        self.stops = stops or []
        self.route_calls: list[str] = []
        self.stop_calls = 0

    async def fetch_route(self, route_id):
        self.route_calls.append(route_id)
        await asyncio.sleep(0)
        return self.routes.get(route_id)

    async def fetch_stops(self):
        self.stop_calls += 1
        return list(self.stops)


def _route(route_id, points):
    return RawRoute(id=route_id, number="12", name="Test", points=points)


def _stop(sid, name):
    return RawStop(id=sid, name=name, lat=56.83, lon=60.59)


def test_put_and_get():
    cache = RouteGeometryCache()
    geometry = cache.put("r1", [(60.59, 56.83), (60.60, 56.83)])
    assert geometry is not None
    assert cache.get("r1") is geometry
    assert "r1" in cache
    assert len(cache) == 1


def test_malformed_geometry_not_cached():
    cache = RouteGeometryCache()
    assert cache.put("r1", [(60.59, 56.83)]) is None
    assert cache.get("r1") is None


def test_ensure_fetches_once():
    source = FakeSource({"r1": _route("r1", [(60.59, 56.83), (60.60, 56.83)])})
    cache = RouteGeometryCache(source)

    async def run():
        results = await asyncio.gather(cache.ensure("r1"), cache.ensure("r1"), cache.ensure("r1"))
        again = await cache.ensure("r1")
        return results, again

    results, again = asyncio.run(run())
    assert all(r is not None for r in results)
    assert again is results[0]
    assert source.route_calls == ["r1"]
    assert cache.get_route("r1").number == "12"


def test_failed_fetch_backs_off():
    source = FakeSource({"bad": _route("bad", [(60.59, 56.83)])})
    cache = RouteGeometryCache(source)

    async def run():
        first = await cache.ensure("missing")
        second = await cache.ensure("missing")
        malformed = await cache.ensure("bad")
        return first, second, malformed

    first, second, malformed = asyncio.run(run())
    assert first is None and second is None and malformed is None
    assert source.route_calls == ["missing", "bad"]

    cache.clear()
    asyncio.run(cache.ensure("missing"))
    assert source.route_calls == ["missing", "bad", "missing"]


def test_ensure_without_source():
    cache = RouteGeometryCache()
    assert asyncio.run(cache.ensure("r1")) is None


def test_deduplicate_by_name():
    stops = [_stop("1", "Center"), _stop("2", "center"), _stop("3", "Airport"), _stop("4", "")]
    result = deduplicate_by_name(stops)
    assert [s.id for s in result] == ["3", "1"]


def test_stop_cache_loads_lazily_once():
    source = FakeSource(stops=[_stop("1", "Center"), _stop("2", "Depot")])
    cache = StopCache(source)
    assert not cache.loaded

    async def run():
        await asyncio.gather(cache.get_all(), cache.get_all())
        return await cache.get_all()

    stops = asyncio.run(run())
    assert [s.name for s in stops] == ["Center", "Depot"]
    assert source.stop_calls == 1
    assert cache.loaded


def test_stop_cache_keeps_list_on_empty_refresh():
    source = FakeSource(stops=[_stop("1", "Center")])
    cache = StopCache(source)
    asyncio.run(cache.get_all())

    source.stops = []
    asyncio.run(cache.refresh())
    assert [s.name for s in asyncio.run(cache.get_all())] == ["Center"]


def test_stop_cache_search_and_clear():
    source = FakeSource(stops=[_stop("1", "Central Market"), _stop("2", "Depot"), _stop("3", "Centre Park")])
    cache = StopCache(source)
    asyncio.run(cache.get_all())

    assert [s.id for s in cache.search("cent")] == ["1", "3"]
    assert [s.id for s in cache.search("CENT", limit=1)] == ["1"]
    assert cache.search("  ") == []

    cache.clear()
    assert not cache.loaded
    asyncio.run(cache.get_all())
    assert source.stop_calls == 2


def test_fetch_error_is_recorded_as_failure():
    """A source that raises counts as a failed fetch and is not retried at once."""
    class BrokenSource(FakeSource):
        async def fetch_route(self, route_id):
            self.route_calls.append(route_id)
            raise TypeError("bad payload")

    source = BrokenSource()
    cache = RouteGeometryCache(source)

    async def run():
        return await cache.ensure("r1"), await cache.ensure("r1")

    assert asyncio.run(run()) == (None, None)
    assert source.route_calls == ["r1"]
