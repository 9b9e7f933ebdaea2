from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

EventType = Literal[
    "partition-created",
    "partition-recalculated",
    "rebalance-triggered",
    "occupant-limit-exceeded",
    "occupants-redistributed",
    "config-fallback",
    "tier-changed",
    "allocator-destroyed",
]


@dataclass(frozen=True, slots=True)
class AllocatorEvent:
    type: EventType
    surface_id: str
    payload: dict[str, Any]
    ts: datetime

    @staticmethod
    def now(*, type: EventType, surface_id: str, payload: dict[str, Any]) -> "AllocatorEvent":
        return AllocatorEvent(type=type, surface_id=surface_id, payload=payload, ts=datetime.now(timezone.utc))
