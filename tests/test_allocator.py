from __future__ import annotations

import random

import pytest

from zone_allocator.allocator import OccupantPosition, PlacementAllocator
from zone_allocator.compat import ViewportCompatibility
from zone_allocator.config import AllocatorConfig
from zone_allocator.core.events import AllocatorEvent
from zone_allocator.core.region import Point, RegionKind
from zone_allocator.fsm import PartitionPhase
from zone_allocator.policy import PerformanceTier, TieredPolicy
from zone_allocator.scheduler import ManualScheduler
from zone_allocator.viewport import SAFE_RATIOS, ViewportSnapshot


def test_new_allocator_is_partitioned_and_announces_it(make_allocator, telemetry) -> None:
    alloc = make_allocator()

    assert alloc.phase == PartitionPhase.partitioned
    assert alloc.generation == 1
    assert len(alloc.regions) == 13
    assert all(r.generation == 1 for r in alloc.regions)

    created = telemetry.of_type("partition-created")
    assert len(created) == 1
    assert created[0].payload["region_count"] == 13
    assert created[0].payload["ratio_source"] == "heuristic"
    assert created[0].surface_id == "test-surface"


def test_policy_weights_are_applied_on_build(make_allocator) -> None:
    alloc = make_allocator()
    assert {r.weight for r in alloc.regions_by_kind(RegionKind.center)} == {1.2}
    assert {r.weight for r in alloc.regions_by_kind(RegionKind.edge)} == {1.0}
    assert {r.weight for r in alloc.regions_by_kind(RegionKind.transition)} == {1.0}


def test_allocate_records_usage_and_returns_point_inside_region(make_allocator) -> None:
    alloc = make_allocator()
    placement = alloc.allocate()
    assert placement is not None

    region = alloc.get_region(placement.region_id)
    assert region is not None
    assert region.contains(placement.x, placement.y)
    assert region.active_occupants == 1
    assert placement.generation == 1
    assert len(alloc.history) == 1
    assert alloc.state.recent_placements[-1].region_id == placement.region_id


def test_rebalance_fires_once_per_threshold_crossing(make_allocator, telemetry) -> None:
    alloc = make_allocator()
    center = alloc.get_region("center")
    assert center is not None

    for _ in range(5):
        alloc.record_usage(center)
    assert alloc.state.balance_score < alloc.config.rebalance_threshold
    assert len(telemetry.of_type("rebalance-triggered")) == 1
    assert alloc.phase == PartitionPhase.rebalanced

    for _ in range(5):
        alloc.release("center")
    assert alloc.state.balance_score == 1.0

    alloc.record_usage(center)
    assert len(telemetry.of_type("rebalance-triggered")) == 2


def test_rebalance_reweights_then_reverts_to_policy_baseline(make_allocator, scheduler: ManualScheduler) -> None:
    alloc = make_allocator()
    center = alloc.get_region("center")
    edge = alloc.get_region("edge-left")
    assert center is not None and edge is not None

    alloc.record_usage(center)
    assert center.weight == pytest.approx(1.2 * 0.7)
    assert edge.weight == pytest.approx(1.0 * 1.5)

    scheduler.advance(9.9)
    assert alloc.phase == PartitionPhase.rebalanced

    scheduler.advance(0.2)
    assert alloc.phase == PartitionPhase.partitioned
    assert center.weight == pytest.approx(1.2)
    assert edge.weight == pytest.approx(1.0)


def test_new_rebalance_replaces_pending_revert(make_allocator, scheduler: ManualScheduler) -> None:
    alloc = make_allocator()
    alloc.trigger_rebalancing(reason="manual")
    scheduler.advance(6)
    alloc.trigger_rebalancing(reason="manual")

    scheduler.advance(6)
    # The first revert (due at t=10) was cancelled by the second rebalance.
    assert alloc.phase == PartitionPhase.rebalanced

    scheduler.advance(5)
    assert alloc.phase == PartitionPhase.partitioned


def test_viewport_notifications_are_debounced(make_allocator, compat, scheduler: ManualScheduler, telemetry) -> None:
    alloc = make_allocator()

    compat.push_viewport(ViewportSnapshot.from_size(1000, 800))
    scheduler.advance(0.1)
    compat.push_viewport(ViewportSnapshot.from_size(900, 700))
    scheduler.advance(0.1)
    compat.push_viewport(ViewportSnapshot.from_size(800, 1200))
    scheduler.advance(0.1)
    assert telemetry.of_type("partition-recalculated") == []

    scheduler.advance(0.2)
    recalculated = telemetry.of_type("partition-recalculated")
    assert len(recalculated) == 1
    assert recalculated[0].payload["reason"] == "orientation_change"
    assert recalculated[0].payload["viewport"]["width"] == 800
    assert alloc.generation == 2
    assert alloc.viewport is not None and alloc.viewport.height == 1200


def test_significant_change_replaces_every_region(make_allocator) -> None:
    alloc = make_allocator()
    old = alloc.regions
    old[0].record_usage(now=0.0)

    assert alloc.handle_viewport_change(ViewportSnapshot.from_size(1080, 1920)) is True

    new = alloc.regions
    assert len(new) == 13
    assert all(r.generation == 2 for r in new)
    assert not any(n is o for n in new for o in old)
    assert sum(r.active_occupants for r in new) == 0

    # Regions from the discarded partition are no longer accepted.
    alloc.record_usage(old[1])
    assert sum(r.active_occupants for r in alloc.regions) == 0
    assert len(alloc.history) == 0


def test_small_change_keeps_the_partition(make_allocator, telemetry) -> None:
    alloc = make_allocator()
    assert alloc.handle_viewport_change(ViewportSnapshot.from_size(1930, 1085)) is False
    assert alloc.generation == 1
    assert telemetry.of_type("partition-recalculated") == []


def test_repartition_reports_captured_occupants(make_allocator, telemetry) -> None:
    positions = [
        OccupantPosition(occupant_id="a", region_id="center", point=Point(x=900, y=500)),
        OccupantPosition(occupant_id="b", region_id=None, point=Point(x=10, y=10)),
    ]
    alloc = make_allocator(capture_positions=lambda: positions)
    alloc.handle_viewport_change(ViewportSnapshot.from_size(1280, 1024))

    redistributed = telemetry.of_type("occupants-redistributed")
    assert len(redistributed) == 1
    assert redistributed[0].payload["count"] == 2
    assert telemetry.of_type("partition-recalculated")[0].payload["reason"] == "viewport_resize"


def test_failing_capture_does_not_block_repartition(make_allocator, telemetry) -> None:
    def _boom():
        raise RuntimeError("renderer gone")

    alloc = make_allocator(capture_positions=_boom)
    assert alloc.handle_viewport_change(ViewportSnapshot.from_size(1080, 1920)) is True
    assert alloc.generation == 2
    assert telemetry.of_type("occupants-redistributed") == []


def test_unusable_configuration_falls_back_to_safe_ratios(make_allocator, telemetry) -> None:
    alloc = make_allocator(1000, 800, config=AllocatorConfig(edge_margin=0.45))

    assert alloc.ratios == SAFE_RATIOS
    assert len(alloc.regions) == 13
    fallback = telemetry.of_type("config-fallback")
    assert len(fallback) == 1
    assert fallback[0].payload["error"]
    assert telemetry.of_type("partition-created")[0].payload["ratio_source"] == "fallback"


def test_occupant_limit_event_and_monitor_rebalance(make_allocator, scheduler: ManualScheduler, telemetry) -> None:
    alloc = make_allocator()
    edge = alloc.get_region("edge-left")
    assert edge is not None

    for _ in range(21):
        alloc.record_usage(edge)

    exceeded = telemetry.of_type("occupant-limit-exceeded")
    assert len(exceeded) == 1
    assert exceeded[0].payload == {"tier": "medium", "active_occupants": 21, "max_allowed": 20}

    # Medium tier samples every 8 s.
    scheduler.advance(8)
    reasons = [e.payload["reason"] for e in telemetry.of_type("rebalance-triggered")]
    assert "performance" in reasons


def test_sustained_low_frame_rate_degrades_tier(make_allocator, scheduler: ManualScheduler, policy, telemetry) -> None:
    alloc = make_allocator()
    alloc.report_frame_rate(20)

    scheduler.advance(16)
    assert policy.current_tier() == PerformanceTier.medium

    scheduler.advance(8)
    assert policy.current_tier() == PerformanceTier.low
    changed = telemetry.of_type("tier-changed")
    assert len(changed) == 1
    assert changed[0].payload["center_placement_enabled"] is False
    assert {r.weight for r in alloc.regions_by_kind(RegionKind.center)} == {0.5}


def test_monitor_ticks_at_the_tier_interval(make_allocator, scheduler: ManualScheduler) -> None:
    make_allocator(policy=TieredPolicy(PerformanceTier.low))
    assert scheduler.pending == 1

    assert scheduler.advance(9.9) == 0
    assert scheduler.advance(0.2) == 1
    assert scheduler.advance(9.8) == 0
    assert scheduler.advance(0.2) == 1


def test_tier_change_reschedules_the_monitor(make_allocator, scheduler: ManualScheduler, policy) -> None:
    alloc = make_allocator()
    assert scheduler.advance(8) == 1

    scheduler.advance(1)
    policy.set_tier("high")
    alloc.refresh_policy()
    assert scheduler.pending == 1

    # High tier samples every 5 s, counted from the tier change.
    assert scheduler.advance(4.9) == 0
    assert scheduler.advance(0.2) == 1
    assert scheduler.pending == 1


def test_configured_interval_applies_to_policies_without_their_own() -> None:
    class FixedPolicy:
        def __init__(self) -> None:
            self.inner = TieredPolicy(PerformanceTier.medium)

        def __getattr__(self, name: str):
            if name == "monitoring_interval_ms":
                raise AttributeError(name)
            return getattr(self.inner, name)

    scheduler = ManualScheduler()
    alloc = PlacementAllocator(
        viewport=ViewportSnapshot.from_size(1920, 1080),
        policy=FixedPolicy(),
        compat=ViewportCompatibility(rng=random.Random(7)),
        scheduler=scheduler,
        config=AllocatorConfig(monitor_interval_ms=3000),
        rng=random.Random(1),
    )
    try:
        assert scheduler.advance(2.9) == 0
        assert scheduler.advance(0.2) == 1
    finally:
        alloc.destroy()


def test_release_of_unknown_region_is_ignored(make_allocator) -> None:
    alloc = make_allocator()
    alloc.release("nope")
    alloc.release("center")
    assert all(r.active_occupants == 0 for r in alloc.regions)


def test_destroy_cancels_everything_and_is_idempotent(make_allocator, compat, scheduler: ManualScheduler, telemetry) -> None:
    alloc = make_allocator()
    center = alloc.get_region("center")
    assert center is not None
    alloc.record_usage(center)
    alloc.notify_viewport(ViewportSnapshot.from_size(800, 600))
    assert scheduler.pending == 3
    assert compat.listener_count == 1

    alloc.destroy()
    alloc.destroy()

    assert alloc.is_destroyed
    assert alloc.phase == PartitionPhase.destroyed
    assert scheduler.pending == 0
    assert scheduler.advance(60) == 0
    assert compat.listener_count == 0
    assert alloc.regions == []
    assert alloc.select_region() is None
    assert alloc.allocate() is None

    destroyed = telemetry.of_type("allocator-destroyed")
    assert len(destroyed) == 1
    assert destroyed[0].payload["final_stats"]["active_occupants"] == 1


def test_telemetry_failures_never_reach_the_caller() -> None:
    class _Broken:
        def emit(self, event: AllocatorEvent) -> None:
            raise ConnectionError("sink down")

    scheduler = ManualScheduler()
    alloc = PlacementAllocator(
        viewport=ViewportSnapshot.from_size(1920, 1080),
        policy=TieredPolicy(),
        compat=ViewportCompatibility(),
        scheduler=scheduler,
        telemetry=_Broken(),
        rng=random.Random(0),
    )
    assert alloc.allocate() is not None
    alloc.destroy()


def test_distribution_stats_shape(make_allocator) -> None:
    alloc = make_allocator()
    alloc.allocate("edge-only")

    stats = alloc.distribution_stats()
    assert stats["total_regions"] == 13
    assert stats["region_kinds"] == {"edge": 4, "center": 5, "transition": 4}
    assert stats["active_occupants"] == 1
    assert stats["performance_tier"] == "medium"
    assert stats["phase"] in {"partitioned", "rebalanced"}
    assert len(stats["densities"]) == 13

    perf = alloc.performance_stats()
    assert perf["frame_rate"] == 60.0
    assert perf["max_occupants"] == 20
