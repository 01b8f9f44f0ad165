"""Tests for the route source HTTP client."""

import asyncio

import httpx
import orjson
import pytest

from live_engine.core.route_source import RouteSourceClient, normalize_polyline

BASE_URL = "http://transit.test/api"


def _client(handler) -> RouteSourceClient:
    client = RouteSourceClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    client.retry_backoff = [0, 0, 0]
    return client


async def _fetch_route(handler, route_id="r1"):
    client = _client(handler)
    try:
        return await client.fetch_route(route_id)
    finally:
        await client.close()


async def _fetch_stops(handler):
    client = _client(handler)
    try:
        return await client.fetch_stops()
    finally:
        await client.close()


def test_normalize_polyline_shapes():
    """[[lat, lng]] lists, JSON strings and encoded strings all become (lng, lat)."""
    assert normalize_polyline([[17.40, 78.40], [17.41, 78.41]]) == [(78.40, 17.40), (78.41, 17.41)]
    assert normalize_polyline("[[17.4, 78.4], [17.5, 78.5]]") == [(78.4, 17.4), (78.5, 17.5)]
    decoded = normalize_polyline("_p~iF~ps|U_ulLnnqC")
    assert decoded[0] == pytest.approx((-120.2, 38.5))
    assert normalize_polyline("[not json") == []
    assert normalize_polyline(None) == []
    assert normalize_polyline([[1.0], ["a", "b"], [17.4, 78.4]]) == [(78.4, 17.4)]


def test_fetch_route_with_polyline():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/routes/r1"
        return httpx.Response(200, json={"data": {
            "id": "r1",
            "routeNumber": 12,
            "name": "Center - Depot",
            "polyline": [[56.83, 60.59], [56.83, 60.60], [56.84, 60.60]],
            "stops": [
                {"id": "s2", "name": "Depot", "latitude": 56.84, "longitude": 60.60, "stopOrder": 2},
                {"id": "s1", "name": "Center", "latitude": 56.83, "longitude": 60.59, "stopOrder": 1},
            ],
        }})

    route = asyncio.run(_fetch_route(handler))
    assert route.id == "r1"
    assert route.number == "12"
    assert route.points[0] == (60.59, 56.83)
    assert len(route.points) == 3
    assert [s.id for s in route.stops] == ["s1", "s2"]


def test_fetch_route_falls_back_to_stops():
    """Without a usable polyline the ordered stops form the geometry."""
    def handler(request):
        return httpx.Response(200, json={"data": {
            "id": "r1",
            "polyline": "",
            "stops": [
                {"id": "b", "name": "B", "lat": 56.84, "lng": 60.60, "stopOrder": 2},
                {"id": "a", "name": "A", "lat": 56.83, "lng": 60.59, "stopOrder": 1},
                {"id": "bad", "name": "Broken", "lat": "x", "lng": 60.0},
            ],
        }})

    route = asyncio.run(_fetch_route(handler))
    assert route.points == [(60.59, 56.83), (60.60, 56.84)]
    assert len(route.stops) == 2


def test_fetch_route_retries_server_errors():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    assert asyncio.run(_fetch_route(handler)) is None
    assert len(calls) == 4


def test_fetch_route_recovers_after_retry():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("connection refused")
        return httpx.Response(200, json={"id": "r1", "polyline": [[56.83, 60.59], [56.84, 60.60]]})

    route = asyncio.run(_fetch_route(handler))
    assert route is not None
    assert len(route.points) == 2
    assert len(calls) == 2


def test_fetch_route_not_found_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(404)

    assert asyncio.run(_fetch_route(handler)) is None
    assert len(calls) == 1


def test_fetch_route_bad_payload():
    def handler(request):
        return httpx.Response(200, content=orjson.dumps([1, 2, 3]))

    assert asyncio.run(_fetch_route(handler)) is None


def test_fetch_stops():
    def handler(request):
        assert request.url.path == "/api/stops"
        return httpx.Response(200, json={"data": [
            {"id": "1", "name": "Center", "latitude": 56.83, "longitude": 60.59, "routeId": "r1"},
            {"id": "2", "name": "Nowhere", "latitude": 0, "longitude": 0},
            "garbage",
        ]})

    stops = asyncio.run(_fetch_stops(handler))
    assert len(stops) == 1
    assert stops[0].name == "Center"
    assert stops[0].route_id == "r1"


def test_fetch_stops_failure_returns_empty():
    def handler(request):
        return httpx.Response(500)

    assert asyncio.run(_fetch_stops(handler)) == []


def test_fetch_route_ignores_malformed_stops():
    """A non-list stops value is skipped; the polyline still makes the route."""
    def handler(request):
        return httpx.Response(200, json={"data": {"id": "r1", "stops": 5, "polyline": "_p~iF~ps|U_ulLnnqC"}})

    route = asyncio.run(_fetch_route(handler))
    assert route is not None
    assert route.stops == []
    assert len(route.points) == 2


def test_malformed_stops_route_is_cached():
    from live_engine.core.route_cache import RouteGeometryCache

    def handler(request):
        return httpx.Response(200, json={"data": {"id": "r1", "stops": {"a": 1}, "polyline": "_p~iF~ps|U_ulLnnqC"}})

    async def run():
        client = _client(handler)
        try:
            return await RouteGeometryCache(client).ensure("r1")
        finally:
            await client.close()

    geometry = asyncio.run(run())
    assert geometry is not None
    assert len(geometry) == 2


def test_max_retries_configurable():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ReadTimeout("slow")

    async def run():
        client = RouteSourceClient(
            base_url=BASE_URL, transport=httpx.MockTransport(handler), max_retries=1, retry_backoff=[0],
        )
        try:
            return await client.fetch_stops()
        finally:
            await client.close()

    assert asyncio.run(run()) == []
    assert len(calls) == 2


def test_no_retries():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(502)

    async def run():
        client = RouteSourceClient(base_url=BASE_URL, transport=httpx.MockTransport(handler), max_retries=0)
        try:
            return await client.fetch_route("r1")
        finally:
            await client.close()

    assert asyncio.run(run()) is None
    assert len(calls) == 1
