"""Fan-out of render output to connected WebSocket sessions."""

import asyncio
import logging

import orjson

logger = logging.getLogger(__name__)

# Payloads queued per session before the session is considered too slow
QUEUE_SIZE = 30

# Tells a session reader to stop
CLOSE = b""


class Broadcaster:
    """Per-session bounded queues of encoded payloads."""

    def __init__(self, queue_size: int = QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[str, asyncio.Queue] = {}

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(self, session_id: str) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[session_id] = q
        return q

    def unsubscribe(self, session_id: str) -> None:
        self._subscribers.pop(session_id, None)

    def send(self, session_id: str, message: dict) -> bool:
        """Queue a message for one session. A full queue drops the session."""
        q = self._subscribers.get(session_id)
        if q is None:
            return False
        return self._put(session_id, q, orjson.dumps(message))

    def send_all(self, message: dict) -> None:
        payload = orjson.dumps(message)
        for sid, q in list(self._subscribers.items()):
            self._put(sid, q, payload)

    def _put(self, session_id: str, q: asyncio.Queue, payload: bytes) -> bool:
        try:
            q.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            logger.warning("Session %s is not keeping up, dropping it", session_id)
            self._subscribers.pop(session_id, None)
            # Make room for the close marker so the reader wakes up
            q.get_nowait()
            q.put_nowait(CLOSE)
            return False
