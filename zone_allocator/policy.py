"""Performance-tier policy consumed by the allocator.

The allocator only depends on the `PolicyProvider` protocol. `TieredPolicy` is the
stock implementation: a low/medium/high table keyed by device capability, with a
frame-rate monitor that steps the tier down under sustained load and back up when
the surface has headroom again.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Literal, Protocol

from zone_allocator.core.region import Region, RegionKind

logger = logging.getLogger(__name__)

Strategy = Literal["balanced", "center-weighted", "edge-only", "organic"]
STRATEGIES: tuple[Strategy, ...] = ("balanced", "center-weighted", "edge-only", "organic")


class PerformanceTier(StrEnum):
    low = "low"
    medium = "medium"
    high = "high"


class PolicyProvider(Protocol):
    def current_tier(self) -> PerformanceTier: ...

    def max_occupants(self) -> int: ...

    def max_density(self) -> float: ...

    def center_placement_enabled(self) -> bool: ...

    def complex_paths_enabled(self) -> bool: ...

    def distribution_strategy(self) -> Strategy: ...

    def apply_weights(self, regions: Iterable[Region]) -> None: ...

    def monitor(self, frame_rate: float, occupant_count: float) -> bool: ...


@dataclass(frozen=True, slots=True)
class TierSettings:
    max_density: float  # occupants per square pixel
    distribution_strategy: Strategy
    center_placement_enabled: bool
    max_occupants: int
    center_weight: float
    edge_weight: float
    transition_weight: float
    complex_paths_enabled: bool
    monitoring_interval_ms: int

    def weight_for(self, kind: RegionKind) -> float:
        if kind == RegionKind.center:
            return self.center_weight
        if kind == RegionKind.edge:
            return self.edge_weight
        return self.transition_weight


TIER_SETTINGS: dict[PerformanceTier, TierSettings] = {
    PerformanceTier.high: TierSettings(
        max_density=0.0005,
        distribution_strategy="organic",
        center_placement_enabled=True,
        max_occupants=30,
        center_weight=1.5,
        edge_weight=0.8,
        transition_weight=1.2,
        complex_paths_enabled=True,
        monitoring_interval_ms=5_000,
    ),
    PerformanceTier.medium: TierSettings(
        max_density=0.0003,
        distribution_strategy="balanced",
        center_placement_enabled=True,
        max_occupants=20,
        center_weight=1.2,
        edge_weight=1.0,
        transition_weight=1.0,
        complex_paths_enabled=True,
        monitoring_interval_ms=8_000,
    ),
    PerformanceTier.low: TierSettings(
        max_density=0.0002,
        distribution_strategy="edge-only",
        center_placement_enabled=False,
        max_occupants=12,
        center_weight=0.5,
        edge_weight=1.5,
        transition_weight=0.8,
        complex_paths_enabled=False,
        monitoring_interval_ms=10_000,
    ),
}

_TIER_ORDER = [PerformanceTier.low, PerformanceTier.medium, PerformanceTier.high]


def detect_tier(*, device_memory_gb: float | None = None, cpu_count: int | None = None) -> PerformanceTier:
    """Classify a device by memory and core count. Unknown values assume a modest device."""

    memory = device_memory_gb if device_memory_gb is not None else 2
    cores = cpu_count if cpu_count is not None else 4

    if memory >= 8 and cores >= 8:
        return PerformanceTier.high
    if memory >= 4 and cores >= 4:
        return PerformanceTier.medium
    return PerformanceTier.low


class TieredPolicy:
    FRAME_RATE_THRESHOLD = 30.0
    DEGRADE_AFTER = 3
    UPGRADE_AFTER = 5
    SAMPLE_WINDOW = 5

    def __init__(self, tier: PerformanceTier | str = PerformanceTier.medium) -> None:
        try:
            self._tier = PerformanceTier(tier)
        except ValueError:
            logger.warning("Invalid tier %r, defaulting to medium", tier)
            self._tier = PerformanceTier.medium

        self._frame_rates: deque[float] = deque(maxlen=self.SAMPLE_WINDOW)
        self._degradation_count = 0
        self._upgrade_count = 0

    @property
    def settings(self) -> TierSettings:
        return TIER_SETTINGS[self._tier]

    def current_tier(self) -> PerformanceTier:
        return self._tier

    def max_occupants(self) -> int:
        return self.settings.max_occupants

    def max_density(self) -> float:
        return self.settings.max_density

    def center_placement_enabled(self) -> bool:
        return self.settings.center_placement_enabled

    def complex_paths_enabled(self) -> bool:
        return self.settings.complex_paths_enabled

    def distribution_strategy(self) -> Strategy:
        return self.settings.distribution_strategy

    def monitoring_interval_ms(self) -> int:
        return self.settings.monitoring_interval_ms

    def apply_weights(self, regions: Iterable[Region]) -> None:
        s = self.settings
        for region in regions:
            region.weight = s.weight_for(region.kind)

    def set_tier(self, tier: PerformanceTier | str) -> None:
        self._tier = PerformanceTier(tier)
        self._reset_counters()
        logger.info("Performance tier set to %s", self._tier.value)

    def monitor(self, frame_rate: float, occupant_count: float) -> bool:
        """Feed one frame-rate sample; return True if the occupant count is over the tier limit.

        Sustained low frame rates step the tier down, sustained high ones step it up.
        The limit check uses the tier that was active when the sample arrived.
        """

        settings = self.settings
        self._frame_rates.append(frame_rate)
        avg = sum(self._frame_rates) / len(self._frame_rates)

        if avg < self.FRAME_RATE_THRESHOLD:
            self._degradation_count += 1
            self._upgrade_count = 0
            if self._degradation_count >= self.DEGRADE_AFTER:
                self._step(-1)
        elif avg > self.FRAME_RATE_THRESHOLD * 1.5 and self._tier != PerformanceTier.high:
            self._upgrade_count += 1
            self._degradation_count = 0
            if self._upgrade_count >= self.UPGRADE_AFTER:
                self._step(+1)
        else:
            self._degradation_count = 0
            self._upgrade_count = 0

        if occupant_count > settings.max_occupants:
            logger.info("Too many active occupants (%s/%s)", occupant_count, settings.max_occupants)
            return True
        return False

    def _step(self, direction: int) -> None:
        idx = _TIER_ORDER.index(self._tier) + direction
        idx = max(0, min(len(_TIER_ORDER) - 1, idx))
        previous = self._tier
        self._tier = _TIER_ORDER[idx]
        self._reset_counters()
        if self._tier != previous:
            logger.info("Performance tier %s -> %s", previous.value, self._tier.value)

    def _reset_counters(self) -> None:
        self._degradation_count = 0
        self._upgrade_count = 0
