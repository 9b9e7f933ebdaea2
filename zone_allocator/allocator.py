"""Zone-based placement allocator.

Owns one partition of the surface, picks a region for every placement request, keeps
the distribution statistics current, and rebuilds the partition when the viewport
changes enough to matter.

Everything runs on the caller's thread. The only deferred work is the three timers
(rebalance revert, monitor tick, resize debounce), all owned by the allocator and all
cancelled by `destroy()`.
"""

from __future__ import annotations

import logging
import random
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from typing import Any

from zone_allocator.compat import CancelFn, CompatibilityProvider
from zone_allocator.config import AllocatorConfig
from zone_allocator.core.events import AllocatorEvent, EventType
from zone_allocator.core.history import DistributionHistory, PlacementRecord
from zone_allocator.core.region import Point, Region, RegionKind
from zone_allocator.distribution import DistributionState, average_density, compute_state, total_occupants
from zone_allocator.fsm import PartitionFSM, PartitionPhase
from zone_allocator.partition import PartitionError, adjust_config_for_viewport, build_regions
from zone_allocator.policy import PolicyProvider, Strategy
from zone_allocator.scheduler import Scheduler, TimerHandle
from zone_allocator.selection import ORGANIC_WINDOW, SelectionContext, select
from zone_allocator.telemetry import TelemetrySink
from zone_allocator.viewport import SAFE_RATIOS, RatioSet, ViewportSnapshot, is_significant_change

logger = logging.getLogger(__name__)

HISTORY_CAPACITY = 50
SAMPLE_WINDOW = 5
DEFAULT_FRAME_RATE = 60.0

UNDERUSED_BOOST = 1.5
OVERUSED_DAMPING = 0.7


@dataclass(frozen=True, slots=True)
class OccupantPosition:
    occupant_id: str
    region_id: str | None
    point: Point


@dataclass(frozen=True, slots=True)
class Placement:
    region_id: str
    kind: RegionKind
    x: float
    y: float
    generation: int


PositionCapture = Callable[[], Sequence[OccupantPosition]]


class PlacementAllocator:
    def __init__(
        self,
        *,
        viewport: ViewportSnapshot,
        policy: PolicyProvider,
        compat: CompatibilityProvider,
        scheduler: Scheduler,
        config: AllocatorConfig | None = None,
        telemetry: TelemetrySink | None = None,
        rng: random.Random | None = None,
        surface_id: str = "default",
        capture_positions: PositionCapture | None = None,
    ) -> None:
        self.surface_id = surface_id
        self.config = config or AllocatorConfig()
        self._policy = policy
        self._compat = compat
        self._scheduler = scheduler
        self._telemetry = telemetry
        self._rng = rng or random.Random()
        self._capture_positions = capture_positions

        self._fsm = PartitionFSM()
        self._regions: dict[str, Region] = {}
        self._viewport: ViewportSnapshot | None = None
        self._ratios: RatioSet = self._configured_ratios()
        self._generation = 0
        self._history = DistributionHistory(HISTORY_CAPACITY)
        self._state = DistributionState()
        self._below_threshold = False

        self._frame_rates: deque[float] = deque(maxlen=SAMPLE_WINDOW)
        self._occupant_samples: deque[int] = deque(maxlen=SAMPLE_WINDOW)

        # Every outstanding timer, by purpose. destroy() cancels whatever is left here.
        self._handles: dict[str, TimerHandle] = {}
        self._pending_viewport: ViewportSnapshot | None = None
        self._unsubscribe: CancelFn | None = None
        self._destroyed = False

        self.initialize_regions(viewport)
        self._unsubscribe = compat.on_viewport_change(self.notify_viewport)
        self._schedule_monitor()

    @property
    def regions(self) -> list[Region]:
        return list(self._regions.values())

    @property
    def viewport(self) -> ViewportSnapshot | None:
        return self._viewport

    @property
    def ratios(self) -> RatioSet:
        return self._ratios

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> DistributionState:
        return self._state

    @property
    def history(self) -> DistributionHistory:
        return self._history

    @property
    def phase(self) -> PartitionPhase:
        return self._fsm.phase

    @property
    def policy(self) -> PolicyProvider:
        return self._policy

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    def get_region(self, region_id: str) -> Region | None:
        return self._regions.get(region_id)

    def regions_by_kind(self, kind: RegionKind) -> list[Region]:
        return [r for r in self._regions.values() if r.kind == kind]

    def initialize_regions(self, viewport: ViewportSnapshot) -> list[Region]:
        """Discard the current partition and build a fresh one for `viewport`."""

        if self._destroyed:
            return []

        decision = adjust_config_for_viewport(
            viewport,
            base=self._configured_ratios(),
            compat=self._compat,
            center_placement_enabled=self._policy.center_placement_enabled(),
            min_region_pixel_size=self.config.min_region_pixel_size,
        )
        ratios = decision.ratios
        source = decision.source
        generation = self._generation + 1

        try:
            regions = build_regions(viewport, ratios, generation=generation)
        except PartitionError as e:
            logger.warning("Partition failed with %s (%s), rebuilding with safe ratios", ratios, e)
            decision_error: str | None = str(e)
            ratios = SAFE_RATIOS
            source = "fallback"
            regions = build_regions(viewport, ratios, generation=generation)
        else:
            decision_error = decision.error

        if decision_error is not None:
            self._emit(
                "config-fallback",
                {
                    "error": decision_error,
                    "viewport": {"width": viewport.width, "height": viewport.height, "aspect_ratio": viewport.aspect_ratio},
                    "ratios": asdict(ratios),
                },
            )

        self._policy.apply_weights(regions)

        # Swap the whole partition in one step.
        self._cancel("revert")
        self._regions = {r.id: r for r in regions}
        self._viewport = viewport
        self._ratios = ratios
        self._generation = generation
        self._below_threshold = False
        self._fsm.partition()
        self._recompute()

        logger.info(
            "Initialized %d regions for %sx%s viewport (generation %d)",
            len(regions),
            viewport.width,
            viewport.height,
            generation,
        )
        self._emit(
            "partition-created",
            {
                "region_count": len(regions),
                "generation": generation,
                "viewport": {"width": viewport.width, "height": viewport.height, "orientation": viewport.orientation.value},
                "ratios": asdict(ratios),
                "ratio_source": source,
                "center_utilization": self._state.center_utilization,
                "tier": self._policy.current_tier().value,
            },
        )
        return regions

    def select_region(self, strategy: Strategy | str | None = None) -> Region | None:
        """Pick a region with `strategy` (the policy's strategy when omitted).

        Returns None only when the allocator is destroyed or has no regions. Otherwise it
        always returns a member of the current set. A live allocator always holds a full
        partition, so in practice that means after `destroy()`.
        """

        if self._destroyed or not self._regions:
            logger.warning("select_region called with no partition (destroyed=%s)", self._destroyed)
            return None

        name = strategy or self._policy.distribution_strategy()
        ctx = SelectionContext(
            regions=self.regions,
            policy=self._policy,
            rng=self._rng,
            now=self._scheduler.now(),
            max_density_ratio=self.config.max_density_ratio,
            idle_threshold_s=self.config.idle_threshold_ms / 1000,
            recent=self._history.recent(ORGANIC_WINDOW),
        )
        return select(name, ctx)

    def record_usage(self, region: Region) -> None:
        current = self._regions.get(region.id)
        if self._destroyed or current is not region:
            # Stale region from an earlier partition, or one we never handed out.
            logger.debug("Ignoring usage for region %s (generation %s)", region.id, region.generation)
            return

        now = self._scheduler.now()
        region.record_usage(now=now)
        self._history.append(PlacementRecord(region_id=region.id, kind=region.kind, timestamp=now))
        self._recompute()

        if self._state.balance_score < self.config.rebalance_threshold and not self._below_threshold:
            self._below_threshold = True
            self.trigger_rebalancing(reason="balance")

        total = total_occupants(self.regions)
        limit = self._policy.max_occupants()
        if total > limit:
            logger.info("Exceeding maximum active occupants (%d/%d)", total, limit)
            self._emit(
                "occupant-limit-exceeded",
                {"tier": self._policy.current_tier().value, "active_occupants": total, "max_allowed": limit},
            )

    def release(self, region_id: str) -> None:
        region = self._regions.get(region_id)
        if region is None:
            logger.debug("Ignoring release for unknown region %s", region_id)
            return
        region.release()
        self._recompute()

    def allocate(self, strategy: Strategy | str | None = None, *, margin: float = 0.1) -> Placement | None:
        """Select a region, record the placement, and propose a clamped point inside it."""

        region = self.select_region(strategy)
        if region is None or self._viewport is None:
            return None

        self.record_usage(region)
        point = self._compat.clamp_position(region.random_point(margin=margin, rng=self._rng), self._viewport)
        return Placement(region_id=region.id, kind=region.kind, x=point.x, y=point.y, generation=region.generation)

    def _recompute(self) -> None:
        self._state = compute_state(self.regions, self._history)
        if self._state.balance_score >= self.config.rebalance_threshold:
            self._below_threshold = False

    def trigger_rebalancing(self, *, reason: str = "balance") -> None:
        """Temporarily favour sparse regions over dense ones; reverts after a fixed delay."""

        if self._destroyed:
            return

        logger.info("Triggering distribution rebalancing (%s)", reason)
        regions = self.regions
        self._policy.apply_weights(regions)

        avg = average_density(regions)
        for region in regions:
            density = region.density()
            if density < avg * 0.5:
                region.weight *= UNDERUSED_BOOST
            elif density > avg * 2:
                region.weight *= OVERUSED_DAMPING

        self._fsm.rebalance()
        self._emit(
            "rebalance-triggered",
            {
                "reason": reason,
                "balance_score": self._state.balance_score,
                "center_utilization": self._state.center_utilization,
                "avg_density": avg,
                "tier": self._policy.current_tier().value,
            },
        )

        self._cancel("revert")
        self._handles["revert"] = self._scheduler.call_later(self.config.rebalance_revert_ms / 1000, self._revert_weights)

    def _revert_weights(self) -> None:
        self._handles.pop("revert", None)
        if self._destroyed:
            return
        self._policy.apply_weights(self.regions)
        if self._fsm.phase == PartitionPhase.rebalanced:
            self._fsm.revert()
        logger.debug("Rebalancing window closed; policy weights restored")

    def refresh_policy(self) -> None:
        """Re-read the policy after a tier change and reapply its weights."""

        if self._destroyed:
            return
        self._cancel("revert")
        self._policy.apply_weights(self.regions)
        if self._fsm.phase == PartitionPhase.rebalanced:
            self._fsm.revert()
        # The new tier may tick at a different rate.
        self._schedule_monitor()

        tier = self._policy.current_tier().value
        logger.info("Performance tier set to: %s", tier)
        self._emit(
            "tier-changed",
            {
                "tier": tier,
                "center_placement_enabled": self._policy.center_placement_enabled(),
                "distribution_strategy": self._policy.distribution_strategy(),
            },
        )

    def notify_viewport(self, viewport: ViewportSnapshot) -> None:
        """Debounced entry point for viewport-change notifications."""

        if self._destroyed:
            return
        self._pending_viewport = viewport
        self._cancel("debounce")
        self._handles["debounce"] = self._scheduler.call_later(self.config.resize_debounce_ms / 1000, self._flush_viewport)

    def _flush_viewport(self) -> None:
        self._handles.pop("debounce", None)
        viewport, self._pending_viewport = self._pending_viewport, None
        if self._destroyed or viewport is None:
            return
        self.handle_viewport_change(viewport)

    def handle_viewport_change(self, viewport: ViewportSnapshot) -> bool:
        """Repartition if `viewport` differs significantly. Returns True if it did."""

        if self._destroyed:
            return False

        previous = self._viewport
        if not is_significant_change(
            previous,
            viewport,
            aspect_ratio_threshold=self.config.aspect_ratio_change_threshold,
        ):
            logger.debug("Viewport change to %sx%s below threshold", viewport.width, viewport.height)
            return False

        orientation_changed = previous is not None and previous.orientation != viewport.orientation
        logger.info(
            "Significant viewport change: %s -> %sx%s (%s)",
            f"{previous.width}x{previous.height}" if previous else "none",
            viewport.width,
            viewport.height,
            viewport.orientation.value,
        )

        positions = self._capture()
        occupants_before = total_occupants(self.regions)
        self.initialize_regions(viewport)

        self._emit(
            "partition-recalculated",
            {
                "reason": "orientation_change" if orientation_changed else "viewport_resize",
                "viewport": {"width": viewport.width, "height": viewport.height, "orientation": viewport.orientation.value},
                "occupants_before": occupants_before,
                "occupants_redistributed": len(positions),
                "tier": self._policy.current_tier().value,
            },
        )
        if positions:
            logger.info("Redistributing %d occupants after repartition", len(positions))
            self._emit(
                "occupants-redistributed",
                {"count": len(positions), "tier": self._policy.current_tier().value},
            )
        return True

    def _capture(self) -> list[OccupantPosition]:
        if self._capture_positions is None:
            return []
        try:
            return list(self._capture_positions())
        except Exception:
            logger.warning("Occupant position capture failed", exc_info=True)
            return []

    def report_frame_rate(self, frame_rate: float) -> None:
        self._frame_rates.append(frame_rate)

    def _monitor_interval_s(self) -> float:
        # Tiered policies carry their own cadence; anything else uses the configured one.
        interval = getattr(self._policy, "monitoring_interval_ms", None)
        ms = interval() if callable(interval) else self.config.monitor_interval_ms
        return ms / 1000

    def _schedule_monitor(self) -> None:
        self._cancel("monitor")
        if self._destroyed:
            return
        self._handles["monitor"] = self._scheduler.call_later(self._monitor_interval_s(), self._monitor_tick)

    def _monitor_tick(self) -> None:
        self._handles.pop("monitor", None)
        if self._destroyed:
            return

        self._occupant_samples.append(total_occupants(self.regions))
        avg_fps = sum(self._frame_rates) / len(self._frame_rates) if self._frame_rates else DEFAULT_FRAME_RATE
        avg_occupants = sum(self._occupant_samples) / len(self._occupant_samples)

        tier_before = self._policy.current_tier()
        exceeded = self._policy.monitor(avg_fps, avg_occupants)
        if self._policy.current_tier() != tier_before:
            self.refresh_policy()
        if exceeded:
            self.trigger_rebalancing(reason="performance")

        logger.debug(
            "Performance stats: %.1f FPS, %.1f occupants, tier: %s",
            avg_fps,
            avg_occupants,
            self._policy.current_tier().value,
        )
        self._schedule_monitor()

    def distribution_stats(self) -> dict[str, Any]:
        regions = self.regions
        return {
            "densities": dict(self._state.densities),
            "center_utilization": self._state.center_utilization,
            "balance_score": self._state.balance_score,
            "recent_placements": [asdict(p) for p in self._state.recent_placements],
            "total_regions": len(regions),
            "region_kinds": {kind.value: sum(1 for r in regions if r.kind == kind) for kind in RegionKind},
            "average_density": average_density(regions),
            "active_occupants": total_occupants(regions),
            "performance_tier": self._policy.current_tier().value,
            "center_placement_enabled": self._policy.center_placement_enabled(),
            "max_occupants": self._policy.max_occupants(),
            "phase": self.phase.value,
            "generation": self._generation,
        }

    def performance_stats(self) -> dict[str, Any]:
        return {
            "frame_rate": sum(self._frame_rates) / len(self._frame_rates) if self._frame_rates else DEFAULT_FRAME_RATE,
            "active_occupants": (
                sum(self._occupant_samples) / len(self._occupant_samples) if self._occupant_samples else 0.0
            ),
            "max_occupants": self._policy.max_occupants(),
            "performance_tier": self._policy.current_tier().value,
            "center_placement_enabled": self._policy.center_placement_enabled(),
            "distribution_strategy": self._policy.distribution_strategy(),
            "complex_paths_enabled": self._policy.complex_paths_enabled(),
        }

    def destroy(self) -> None:
        """Cancel every timer and subscription and drop the partition. Idempotent."""

        if self._destroyed:
            return

        logger.info("Destroying allocator for surface %s", self.surface_id)
        final_stats = self.distribution_stats()
        self._destroyed = True

        for name in list(self._handles):
            self._cancel(name)
        if self._unsubscribe is not None:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
            unsubscribe()

        self._regions = {}
        self._history.clear()
        self._pending_viewport = None
        self._state = DistributionState()
        self._fsm.destroy()

        self._emit("allocator-destroyed", {"final_stats": final_stats})

    def _configured_ratios(self) -> RatioSet:
        return RatioSet(
            edge_margin=self.config.edge_margin,
            center_zone_size=self.config.center_zone_size,
            transition_zone_width=self.config.transition_zone_width,
        )

    def _cancel(self, name: str) -> None:
        handle = self._handles.pop(name, None)
        if handle is not None:
            handle.cancel()

    def _emit(self, type: EventType, payload: dict[str, Any]) -> None:
        if self._telemetry is None:
            return
        try:
            self._telemetry.emit(AllocatorEvent.now(type=type, surface_id=self.surface_id, payload=payload))
        except Exception:
            logger.warning("Telemetry delivery failed for %s", type, exc_info=True)
