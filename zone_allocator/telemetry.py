"""Fire-and-forget delivery of allocator notifications.

The allocator hands every `AllocatorEvent` to a `TelemetrySink` and moves on; sinks
must not block and their failures never reach the allocator's caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from typing import Any, Protocol

import redis

from zone_allocator.core.events import AllocatorEvent, EventType
from zone_allocator.streams import TelemetryStream, publish_to_stream
from zone_allocator.websocket_hub import SurfaceWebSocketHub

logger = logging.getLogger(__name__)


class TelemetrySink(Protocol):
    def emit(self, event: AllocatorEvent) -> None: ...


def event_to_dict(event: AllocatorEvent) -> dict[str, Any]:
    return {
        "type": event.type,
        "surface_id": event.surface_id,
        "payload": event.payload,
        "ts": event.ts.isoformat(),
    }


class RecordingTelemetry:
    """Keeps every event in memory. Handy for tests and for inspecting a live allocator."""

    def __init__(self) -> None:
        self.events: list[AllocatorEvent] = []

    def emit(self, event: AllocatorEvent) -> None:
        self.events.append(event)

    def of_type(self, type: EventType) -> list[AllocatorEvent]:
        return [e for e in self.events if e.type == type]


class RedisStreamTelemetry:
    def __init__(self, *, r: redis.Redis, surface_id: str, maxlen: int | None = 1000) -> None:
        self._r = r
        self._stream = TelemetryStream(surface_id=surface_id)
        self._maxlen = maxlen

    @property
    def stream(self) -> TelemetryStream:
        return self._stream

    def emit(self, event: AllocatorEvent) -> None:
        publish_to_stream(
            r=self._r,
            stream=self._stream,
            fields={
                "type": event.type,
                "surface_id": event.surface_id,
                "ts": event.ts.isoformat(),
                "payload": json.dumps(event.payload, default=str),
            },
            maxlen=self._maxlen,
        )


class WebSocketTelemetry:
    """Broadcasts events to websocket subscribers without awaiting delivery."""

    def __init__(self, *, hub: SurfaceWebSocketHub, surface_id: str) -> None:
        self._hub = hub
        self._surface_id = surface_id
        self._tasks: set[asyncio.Task[int]] = set()

    def emit(self, event: AllocatorEvent) -> None:
        if not self._hub.has_subscribers(self._surface_id):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; dropping websocket notification %s", event.type)
            return
        task = loop.create_task(self._hub.broadcast(self._surface_id, event_to_dict(event)))
        # Hold a reference until the broadcast finishes.
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


class FanoutTelemetry:
    def __init__(self, sinks: Sequence[TelemetrySink]) -> None:
        self._sinks = list(sinks)

    def emit(self, event: AllocatorEvent) -> None:
        for sink in self._sinks:
            try:
                sink.emit(event)
            except Exception:
                logger.warning("Telemetry sink %s failed for %s", type(sink).__name__, event.type, exc_info=True)
