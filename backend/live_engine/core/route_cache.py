"""Process-lifetime caches for route geometry and the stop list.

Both caches are plain objects owned by the application: created on first
use, kept for the life of the process and clearable for tests.
"""

import asyncio
import logging
import time

from live_engine.core.geometry import RouteGeometry
from live_engine.core.route_source import RawRoute, RawStop, RouteSourceClient

logger = logging.getLogger(__name__)

# Seconds before a route whose fetch failed is requested again
FAILED_RETRY_S = 60.0


class RouteGeometryCache:
    """Decoded route polylines keyed by route id, fetched on demand."""

    def __init__(self, source: RouteSourceClient | None = None) -> None:
        self._source = source
        self._routes: dict[str, RouteGeometry] = {}
        self._meta: dict[str, RawRoute] = {}
        # Routes being fetched right now, to avoid duplicate requests
        self._inflight: dict[str, asyncio.Task] = {}
        # route_id -> monotonic time of the last failed fetch
        self._failed: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._routes)

    def __contains__(self, route_id: object) -> bool:
        return route_id in self._routes

    def get(self, route_id: str) -> RouteGeometry | None:
        return self._routes.get(route_id)

    def get_route(self, route_id: str) -> RawRoute | None:
        return self._meta.get(route_id)

    def put(self, route_id: str, vertices) -> RouteGeometry | None:
        """Store (lng, lat) vertices; geometry with fewer than 2 vertices is not cached."""
        geometry = RouteGeometry(vertices)
        if not geometry.is_valid:
            logger.warning("Route %s: malformed geometry (%d vertices), not cached", route_id, len(geometry))
            return None
        self._routes[route_id] = geometry
        return geometry

    async def ensure(self, route_id: str) -> RouteGeometry | None:
        """Return cached geometry, fetching it once if missing."""
        cached = self._routes.get(route_id)
        if cached is not None or self._source is None:
            return cached
        failed_at = self._failed.get(route_id)
        if failed_at is not None and time.monotonic() - failed_at < FAILED_RETRY_S:
            return None

        task = self._inflight.get(route_id)
        if task is None:
            task = asyncio.ensure_future(self._fetch(route_id))
            self._inflight[route_id] = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done():
                self._inflight.pop(route_id, None)

    async def _fetch(self, route_id: str) -> RouteGeometry | None:
        try:
            route = await self._source.fetch_route(route_id)
        except Exception:
            logger.exception("Route %s: fetch failed", route_id)
            route = None
        geometry = None
        if route is not None:
            self._meta[route_id] = route
            geometry = self.put(route_id, route.points)
        if geometry is None:
            self._failed[route_id] = time.monotonic()
        else:
            self._failed.pop(route_id, None)
        return geometry

    def clear(self) -> None:
        self._routes.clear()
        self._meta.clear()
        self._failed.clear()
        for task in self._inflight.values():
            task.cancel()
        self._inflight.clear()


def deduplicate_by_name(stops: list[RawStop]) -> list[RawStop]:
    """Keep the first stop per case-insensitive name, sorted by name."""
    seen: dict[str, RawStop] = {}
    for s in stops:
        key = s.name.lower()
        if key and key not in seen:
            seen[key] = s
    return sorted(seen.values(), key=lambda s: s.name)


class StopCache:
    """Stop list fetched once and shared, e.g. for search autocomplete."""

    def __init__(self, source: RouteSourceClient | None = None) -> None:
        self._source = source
        self._stops: list[RawStop] | None = None
        self._lock = asyncio.Lock()

    @property
    def loaded(self) -> bool:
        return self._stops is not None

    async def get_all(self) -> list[RawStop]:
        if self._stops is not None:
            return self._stops
        async with self._lock:
            if self._stops is None:
                await self.refresh()
        return self._stops or []

    async def refresh(self) -> None:
        """Re-fetch the stop list; an empty response keeps the old list."""
        if self._source is None:
            self._stops = self._stops or []
            return
        fetched = await self._source.fetch_stops()
        if fetched:
            self._stops = deduplicate_by_name(fetched)
            logger.info("Stop cache loaded: %d unique stops", len(self._stops))
        elif self._stops is None:
            self._stops = []

    def search(self, query: str, limit: int = 10) -> list[RawStop]:
        q = query.strip().lower()
        if not q or not self._stops:
            return []
        return [s for s in self._stops if q in s.name.lower()][:limit]

    def clear(self) -> None:
        self._stops = None
