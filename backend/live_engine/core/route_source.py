"""Async client for the backend route and stop endpoints."""

import asyncio
import logging
from dataclasses import dataclass, field

import httpx
import orjson

from live_engine.config import settings
from live_engine.core.geometry import Coord, decode_polyline

logger = logging.getLogger(__name__)

# Retry configuration
MAX_RETRIES = 3
RETRY_BACKOFF = [2, 4, 8]  # seconds between retries


@dataclass
class RawStop:
    id: str
    name: str
    lat: float
    lon: float
    route_id: str = ""
    stop_order: int = 0


@dataclass
class RawRoute:
    id: str
    number: str = ""
    name: str = ""
    points: list[Coord] = field(default_factory=list)  # [(lng, lat), ...]
    stops: list[RawStop] = field(default_factory=list)


def _lat_lng_pairs_to_coords(pairs) -> list[Coord]:
    coords = []
    for p in pairs:
        try:
            coords.append((float(p[1]), float(p[0])))
        except (TypeError, ValueError, IndexError):
            continue
    return coords


def normalize_polyline(raw) -> list[Coord]:
    """Turn any served polyline shape into (lng, lat) coordinates.

    Accepts a [[lat, lng], ...] array, a JSON string of one, or an encoded
    polyline string. Anything else yields an empty list.
    """
    if isinstance(raw, list):
        return _lat_lng_pairs_to_coords(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("["):
            try:
                return _lat_lng_pairs_to_coords(orjson.loads(text))
            except orjson.JSONDecodeError:
                logger.debug("Polyline looked like JSON but failed to parse")
                return []
        if text:
            return decode_polyline(text)
    return []


def _parse_stop(item: dict, route_id: str = "") -> RawStop | None:
    try:
        lat = float(item.get("latitude", item.get("lat", 0)))
        lon = float(item.get("longitude", item.get("lng", item.get("lon", 0))))
        order = int(item.get("stopOrder", item.get("order", 0)) or 0)
    except (TypeError, ValueError):
        return None
    if lat == 0 or lon == 0:
        return None
    return RawStop(
        id=str(item.get("id", "")),
        name=str(item.get("name") or "").strip(),
        lat=lat,
        lon=lon,
        route_id=str(item.get("routeId", route_id) or ""),
        stop_order=order,
    )


class RouteSourceClient:
    """Fetches route geometry and stops from the transit backend."""

    def __init__(
        self,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_retries: int = MAX_RETRIES,
        retry_backoff: list[float] | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.route_source_url,
            timeout=30.0,
            headers={"Accept": "application/json"},
            transport=transport,
        )
        self.max_retries = max(max_retries, 0)
        self.retry_backoff = list(RETRY_BACKOFF if retry_backoff is None else retry_backoff)

    async def close(self) -> None:
        await self._client.aclose()

    def _backoff(self, attempt: int) -> float:
        """Delay before retry `attempt`; the last configured delay repeats."""
        if not self.retry_backoff:
            return 0
        return self.retry_backoff[min(attempt, len(self.retry_backoff) - 1)]

    @staticmethod
    def _should_retry(error: httpx.HTTPError) -> bool:
        # Timeouts and connection failures are transient, and so are 5xx
        if isinstance(error, httpx.HTTPStatusError):
            return error.response.status_code >= 500
        return isinstance(error, httpx.TransportError)

    async def _get_with_retry(self, path: str, label: str) -> httpx.Response | None:
        """GET `path`; transient failures are retried with backoff, None when all fail."""
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                resp = await self._client.get(path)
                resp.raise_for_status()
                return resp
            except httpx.HTTPError as e:
                if attempt == self.max_retries or not self._should_retry(e):
                    logger.error("%s: giving up after %d/%d attempts: %s", label, attempt + 1, attempts, e)
                    return None
                wait = self._backoff(attempt)
                logger.warning("%s: attempt %d/%d failed (%s), next try in %ss", label, attempt + 1, attempts, e, wait)
                await asyncio.sleep(wait)
            except Exception:
                logger.exception("Unexpected error requesting %s", label)
                return None
        return None

    async def fetch_route(self, route_id: str) -> RawRoute | None:
        """Fetch one route with its polyline, falling back to ordered stops."""
        resp = await self._get_with_retry(f"/routes/{route_id}", f"route {route_id}")
        if resp is None:
            return None
        try:
            data = resp.json()
        except ValueError:
            logger.exception("Failed to parse route %s response", route_id)
            return None

        item = data.get("data", data) if isinstance(data, dict) else None
        if not isinstance(item, dict):
            logger.warning("Route %s: unexpected payload type %s", route_id, type(item).__name__)
            return None

        route = RawRoute(
            id=str(item.get("id", route_id)),
            number=str(item.get("routeNumber", item.get("number", "")) or ""),
            name=str(item.get("name", "") or ""),
        )
        raw_stops = item.get("stops")
        if not isinstance(raw_stops, list):
            if raw_stops is not None:
                logger.warning("Route %s: ignoring stops of type %s", route_id, type(raw_stops).__name__)
            raw_stops = []
        for s in raw_stops:
            if isinstance(s, dict):
                stop = _parse_stop(s, route.id)
                if stop:
                    route.stops.append(stop)
        route.stops.sort(key=lambda s: s.stop_order)

        route.points = normalize_polyline(item.get("polyline"))
        if len(route.points) < 2 and len(route.stops) >= 2:
            route.points = [(s.lon, s.lat) for s in route.stops]
            logger.debug("Route %s: using stop-to-stop fallback", route_id)

        logger.info("Fetched route %s (%d pts, %d stops)", route_id, len(route.points), len(route.stops))
        return route

    async def fetch_stops(self) -> list[RawStop]:
        """Fetch every stop known to the backend."""
        stops: list[RawStop] = []
        resp = await self._get_with_retry("/stops", "stops")
        if resp is None:
            return stops
        try:
            data = resp.json()
            items = data if isinstance(data, list) else data.get("data", [])
            for item in items:
                if isinstance(item, dict):
                    stop = _parse_stop(item)
                    if stop:
                        stops.append(stop)
        except Exception:
            logger.exception("Failed to parse stops response")

        logger.info("Fetched %d stops", len(stops))
        return stops
