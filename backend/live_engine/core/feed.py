"""Redis pub/sub consumer for raw vehicle updates."""

import asyncio
import logging

import redis.asyncio as aioredis

from live_engine.config import settings
from live_engine.core.tracker import LiveTracker

logger = logging.getLogger(__name__)

RECONNECT_DELAY_S = 5


class FeedSubscriber:
    """Reads the last published snapshot, then follows the update channel."""

    def __init__(
        self,
        tracker: LiveTracker,
        redis_url: str | None = None,
        channel: str | None = None,
        state_key: str | None = None,
    ) -> None:
        self.tracker = tracker
        self._redis_url = redis_url or settings.redis_url
        self.channel = channel or settings.feed_channel
        self.state_key = state_key or settings.feed_state_key
        self._redis: aioredis.Redis | None = None
        self._task: asyncio.Task | None = None

    async def connect(self) -> None:
        self._redis = aioredis.from_url(self._redis_url, decode_responses=False)

    async def close(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._redis:
            await self._redis.aclose()

    def start(self) -> None:
        self._task = asyncio.create_task(self.run(), name="feed-subscriber")

    async def load_snapshot(self) -> None:
        """Apply the snapshot stored at the state key, if any."""
        if self._redis is None:
            return
        try:
            data = await self._redis.get(self.state_key)
        except Exception:
            logger.exception("Failed to read feed snapshot from Redis")
            return
        if data:
            self.tracker.handle_message(data)

    async def run(self) -> None:
        """Follow the channel forever, reconnecting after failures."""
        while True:
            try:
                await self.load_snapshot()
                await self._listen()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Feed subscription failed, retrying in %ds", RECONNECT_DELAY_S)
            await asyncio.sleep(RECONNECT_DELAY_S)

    async def _listen(self) -> None:
        if self._redis is None:
            await self.connect()
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self.channel)
        logger.info("Subscribed to feed channel %s", self.channel)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                self.tracker.handle_message(message["data"])
        finally:
            await pubsub.aclose()
