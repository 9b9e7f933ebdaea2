"""Process-local registry of live surfaces.

Each surface owns one `PlacementAllocator` plus the policy and compatibility provider
it was built with. Allocators hold timers on the serving event loop, so surfaces live
in memory; only their telemetry goes to Redis.
"""

from __future__ import annotations

import logging
import os
import random
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import redis

from zone_allocator.allocator import PlacementAllocator
from zone_allocator.api.models import RegionModel, SurfaceState, SurfaceSummary, ViewportModel
from zone_allocator.compat import ViewportCompatibility
from zone_allocator.config import AllocatorConfig, get_default_tier, get_telemetry_maxlen
from zone_allocator.policy import STRATEGIES, PerformanceTier, Strategy, TieredPolicy, detect_tier
from zone_allocator.scheduler import AsyncioScheduler, Scheduler
from zone_allocator.streams import TelemetryStream, delete_stream
from zone_allocator.telemetry import FanoutTelemetry, RedisStreamTelemetry, TelemetrySink, WebSocketTelemetry
from zone_allocator.viewport import ViewportSnapshot
from zone_allocator.websocket_hub import hub

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(slots=True)
class Surface:
    surface_id: str
    allocator: PlacementAllocator
    policy: TieredPolicy
    compat: ViewportCompatibility
    strategy: Strategy | None = None
    created_at: datetime = field(default_factory=_now)


_surfaces: dict[str, Surface] = {}


def resolve_tier(requested: str | None) -> PerformanceTier:
    """Pick the starting tier: explicit request, then environment, then host detection."""

    candidate = requested or get_default_tier()
    if candidate is not None:
        try:
            return PerformanceTier(candidate)
        except ValueError as e:
            raise ValueError(f"Unknown performance tier: {candidate}") from e
    return detect_tier(cpu_count=os.cpu_count())


def create_surface(
    *,
    r: redis.Redis,
    width: float,
    height: float,
    tier: str | None = None,
    strategy: Strategy | None = None,
    config_overrides: dict[str, Any] | None = None,
    seed: int | None = None,
    simple_positioning_only: bool = False,
    scheduler: Scheduler | None = None,
    telemetry: TelemetrySink | None = None,
) -> Surface:
    if strategy is not None and strategy not in STRATEGIES:
        raise ValueError(f"Unknown distribution strategy: {strategy}")
    viewport = ViewportSnapshot.from_size(width, height)
    config = AllocatorConfig().with_overrides(config_overrides)
    policy = TieredPolicy(resolve_tier(tier))

    surface_id = str(uuid4())
    rng = random.Random(seed)
    compat = ViewportCompatibility.for_viewport(viewport, simple_positioning_only=simple_positioning_only)

    if telemetry is None:
        telemetry = FanoutTelemetry(
            [
                RedisStreamTelemetry(r=r, surface_id=surface_id, maxlen=get_telemetry_maxlen()),
                WebSocketTelemetry(hub=hub, surface_id=surface_id),
            ]
        )

    allocator = PlacementAllocator(
        viewport=viewport,
        policy=policy,
        compat=compat,
        scheduler=scheduler or AsyncioScheduler(),
        config=config,
        telemetry=telemetry,
        rng=rng,
        surface_id=surface_id,
    )
    surface = Surface(surface_id=surface_id, allocator=allocator, policy=policy, compat=compat, strategy=strategy)
    _surfaces[surface_id] = surface
    logger.info("Created surface %s (%sx%s, tier %s)", surface_id, width, height, policy.current_tier().value)
    return surface


def get_surface(*, surface_id: str) -> Surface | None:
    return _surfaces.get(surface_id)


def require_surface(*, surface_id: str) -> Surface:
    surface = get_surface(surface_id=surface_id)
    if surface is None:
        raise ValueError("Surface not found")
    return surface


def list_surfaces() -> list[Surface]:
    return sorted(_surfaces.values(), key=lambda s: s.created_at)


def push_viewport(*, surface_id: str, width: float, height: float) -> ViewportSnapshot:
    """Queue a viewport change; the allocator applies it after its debounce window."""

    surface = require_surface(surface_id=surface_id)
    viewport = ViewportSnapshot.from_size(width, height)
    surface.compat.push_viewport(viewport)
    return viewport


def set_tier(*, surface_id: str, tier: str) -> Surface:
    surface = require_surface(surface_id=surface_id)
    try:
        surface.policy.set_tier(tier)
    except ValueError as e:
        raise ValueError(f"Unknown performance tier: {tier}") from e
    surface.allocator.refresh_policy()
    return surface


def delete_surface(*, r: redis.Redis, surface_id: str) -> None:
    surface = _surfaces.pop(surface_id, None)
    if surface is None:
        raise ValueError("Surface not found")
    surface.allocator.destroy()
    delete_stream(r=r, stream=TelemetryStream(surface_id=surface_id))


def clear_surfaces() -> None:
    """Destroy every live surface (used on shutdown and between tests)."""

    for surface in list(_surfaces.values()):
        surface.allocator.destroy()
    _surfaces.clear()


def surface_state(surface: Surface) -> SurfaceState:
    allocator = surface.allocator
    vp = allocator.viewport
    return SurfaceState(
        surface_id=surface.surface_id,
        created_at=surface.created_at,
        phase=allocator.phase.value,
        generation=allocator.generation,
        tier=surface.policy.current_tier(),
        strategy=surface.strategy or surface.policy.distribution_strategy(),
        viewport=(
            ViewportModel(
                width=vp.width,
                height=vp.height,
                aspect_ratio=vp.aspect_ratio,
                orientation=vp.orientation.value,
                size_class=vp.size_class.value,
            )
            if vp is not None
            else None
        ),
        ratios=asdict(allocator.ratios),
        regions=[RegionModel.from_region(region) for region in allocator.regions],
        distribution=allocator.distribution_stats(),
        performance=allocator.performance_stats(),
    )


def surface_summary(surface: Surface) -> SurfaceSummary:
    return SurfaceSummary(
        surface_id=surface.surface_id,
        created_at=surface.created_at,
        phase=surface.allocator.phase.value,
        tier=surface.policy.current_tier(),
        region_count=len(surface.allocator.regions),
    )
