from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field

from zone_allocator.core.history import DistributionHistory
from zone_allocator.core.region import Region, RegionKind

RECENT_PLACEMENTS = 10


@dataclass(frozen=True, slots=True)
class RecentPlacement:
    region_id: str
    timestamp: float


@dataclass(frozen=True, slots=True)
class DistributionState:
    densities: dict[str, float] = field(default_factory=dict)
    center_utilization: float = 0.0
    balance_score: float = 1.0
    recent_placements: tuple[RecentPlacement, ...] = ()


def total_occupants(regions: Sequence[Region]) -> int:
    return sum(r.active_occupants for r in regions)


def center_utilization(regions: Sequence[Region]) -> float:
    total = total_occupants(regions)
    if total == 0:
        return 0.0
    in_center = sum(r.active_occupants for r in regions if r.kind == RegionKind.center)
    return in_center / total


def average_density(regions: Sequence[Region]) -> float:
    if not regions:
        return 0.0
    return sum(r.density() for r in regions) / len(regions)


def balance_score(regions: Sequence[Region]) -> float:
    """1 - coefficient of variation of region densities, clamped to [0, 1].

    An empty partition, or one with no occupants, is perfectly balanced.
    """

    if not regions:
        return 1.0

    densities = [r.density() for r in regions]
    mean = sum(densities) / len(densities)
    if mean <= 0:
        return 1.0

    variance = sum((d - mean) ** 2 for d in densities) / len(densities)
    cv = math.sqrt(variance) / mean
    return min(1.0, max(0.0, 1.0 - cv))


def compute_state(regions: Sequence[Region], history: DistributionHistory) -> DistributionState:
    return DistributionState(
        densities={r.id: r.density() for r in regions},
        center_utilization=center_utilization(regions),
        balance_score=balance_score(regions),
        recent_placements=tuple(
            RecentPlacement(region_id=e.region_id, timestamp=e.timestamp) for e in history.recent(RECENT_PLACEMENTS)
        ),
    )
