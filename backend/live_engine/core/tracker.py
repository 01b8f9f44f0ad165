"""Main orchestrator: feeds transport messages into the engine and publishes render output."""

import asyncio
import logging

import orjson
from pydantic import ValidationError

from live_engine.core.broadcaster import Broadcaster
from live_engine.core.engine import LiveEngine
from live_engine.core.route_cache import RouteGeometryCache, StopCache
from live_engine.core.viewport import MarkerCommand, ViewportBounds
from live_engine.schemas.vehicle import FeedMessage, SuggestionRecord, VehicleUpdate

logger = logging.getLogger(__name__)


class LiveTracker:
    """Async shell around the engine: ingestion, route fetches and fan-out."""

    def __init__(
        self,
        engine: LiveEngine,
        broadcaster: Broadcaster,
        route_cache: RouteGeometryCache,
        stop_cache: StopCache,
        suggestion_count: int = 3,
    ) -> None:
        self.engine = engine
        self.broadcaster = broadcaster
        self.route_cache = route_cache
        self.stop_cache = stop_cache
        self.suggestion_count = suggestion_count
        self._route_tasks: set[asyncio.Task] = set()
        self.rejected_messages = 0

    # ------------------------------------------------------------------
    # Ingestion

    def handle_message(self, raw: bytes | str | dict) -> None:
        """Dispatch one transport message; malformed ones are logged and skipped."""
        try:
            data = orjson.loads(raw) if isinstance(raw, (bytes, str)) else raw
            msg = FeedMessage.model_validate(data)
        except (orjson.JSONDecodeError, ValidationError) as e:
            self.rejected_messages += 1
            logger.warning("Rejected feed message: %s", e)
            return

        if msg.type == "snapshot":
            self.ingest_snapshot(msg.vehicles)
        elif msg.type == "update":
            self.ingest(msg.vehicles)
        elif msg.type in ("remove", "offline"):
            if msg.vehicle_id:
                self.remove(msg.vehicle_id)
        elif msg.type == "suggestions":
            self.set_suggestions(msg.suggestions)
        else:
            logger.debug("Ignoring feed message of type %r", msg.type)

    def ingest(self, updates: list[VehicleUpdate]) -> int:
        accepted = self.engine.apply_updates(u.to_position() for u in updates)
        self._ensure_routes()
        return accepted

    def ingest_snapshot(self, updates: list[VehicleUpdate]) -> None:
        commands = self.engine.apply_snapshot([u.to_position() for u in updates])
        self._dispatch(commands)
        self._ensure_routes()

    def remove(self, vehicle_id: str) -> None:
        commands = self.engine.remove_vehicle(vehicle_id)
        self._dispatch({sid: [cmd] for sid, cmd in commands.items()})

    def set_suggestions(self, records: list[SuggestionRecord]) -> None:
        self.engine.set_suggestion_override([r.to_override() for r in records])

    def _ensure_routes(self) -> None:
        """Kick off lazy geometry fetches for routes seen without a polyline."""
        missing = self.engine.missing_route_ids()
        if not missing:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        for route_id in missing:
            task = asyncio.ensure_future(self.route_cache.ensure(route_id))
            self._route_tasks.add(task)
            task.add_done_callback(self._route_tasks.discard)

    # ------------------------------------------------------------------
    # Render sessions

    def open_session(self, session_id: str) -> asyncio.Queue:
        self.engine.open_session(session_id)
        return self.broadcaster.subscribe(session_id)

    def close_session(self, session_id: str) -> None:
        self.engine.close_session(session_id)
        self.broadcaster.unsubscribe(session_id)

    def settle(self, session_id: str, bounds: ViewportBounds | None) -> None:
        commands = self.engine.settle_viewport(session_id, bounds)
        self._dispatch({session_id: commands})

    def _dispatch(self, commands: dict[str, list[MarkerCommand]]) -> None:
        for sid, cmds in commands.items():
            if cmds:
                self.broadcaster.send(sid, {"type": "frame", "markers": [c.to_dict() for c in cmds]})

    # ------------------------------------------------------------------
    # Scheduled jobs

    async def render_frame(self) -> None:
        """One render tick."""
        try:
            self._dispatch(self.engine.render_frame())
        except Exception:
            logger.exception("Error in render frame")

    async def push_eta_and_suggestions(self) -> None:
        try:
            etas = {
                vid: {"minutes": e.display_minutes, "formatted": e.formatted, "isSmoothed": e.is_smoothed}
                for vid, e in self.engine.etas().items()
            }
            self.broadcaster.send_all({"type": "eta", "etas": etas})
            self.broadcaster.send_all({
                "type": "suggestions",
                "ids": self.engine.suggestions(self.suggestion_count),
            })
        except Exception:
            logger.exception("Error pushing ETA/suggestions")

    async def sweep_stale(self) -> None:
        self._dispatch(self.engine.sweep_stale())

    async def refresh_stops(self) -> None:
        try:
            await self.stop_cache.refresh()
        except Exception:
            logger.exception("Failed to refresh stop cache")

    async def close(self) -> None:
        for task in list(self._route_tasks):
            task.cancel()
        self._route_tasks.clear()
