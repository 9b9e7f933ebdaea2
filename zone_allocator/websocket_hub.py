from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class SurfaceWebSocketHub:
    """Fans allocator notifications out to the websockets watching a surface.

    Subscribers are tracked per surface_id in this process only. A socket that fails a
    send is dropped from its surface on the spot.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, surface_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._subscribers[surface_id].add(websocket)
        logger.debug("Websocket subscribed to surface %s (%d total)", surface_id, self.subscriber_count(surface_id))

    async def disconnect(self, surface_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            self._discard(surface_id, [websocket])

    def has_subscribers(self, surface_id: str) -> bool:
        return self.subscriber_count(surface_id) > 0

    def subscriber_count(self, surface_id: str) -> int:
        return len(self._subscribers.get(surface_id, ()))

    async def broadcast(self, surface_id: str, payload: dict[str, object]) -> int:
        """Send `payload` to every subscriber concurrently. Returns how many sends succeeded."""

        async with self._lock:
            targets = list(self._subscribers.get(surface_id, ()))
        if not targets:
            return 0

        results = await asyncio.gather(*(ws.send_json(payload) for ws in targets), return_exceptions=True)
        failed = [ws for ws, res in zip(targets, results) if isinstance(res, BaseException)]
        if failed:
            logger.info("Dropping %d dead websocket(s) for surface %s", len(failed), surface_id)
            async with self._lock:
                self._discard(surface_id, failed)
        return len(targets) - len(failed)

    def _discard(self, surface_id: str, sockets: list[WebSocket]) -> None:
        conns = self._subscribers.get(surface_id)
        if conns is None:
            return
        conns.difference_update(sockets)
        if not conns:
            del self._subscribers[surface_id]


hub = SurfaceWebSocketHub()
