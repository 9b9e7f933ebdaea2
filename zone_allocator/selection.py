"""Region selection strategies.

Every strategy ends in `select_balanced` over some subset of the partition; subsets
that come out empty fall back to the whole partition so a selection always returns
a member of the current region set.
"""

from __future__ import annotations

import random
from collections.abc import Sequence
from dataclasses import dataclass

from zone_allocator.core.history import PlacementRecord
from zone_allocator.core.region import Region, RegionKind
from zone_allocator.distribution import average_density, center_utilization
from zone_allocator.policy import PolicyProvider, Strategy

OVERDENSE_FACTOR = 0.3
OVER_CEILING_FACTOR = 0.2
IDLE_BOOST = 1.5
CENTER_BOOST = 2.0
CENTER_UNDERUSED_BELOW = 0.3
CENTER_SHARE = 0.7
ORGANIC_WINDOW = 5


@dataclass(frozen=True, slots=True)
class SelectionContext:
    regions: Sequence[Region]
    policy: PolicyProvider
    rng: random.Random
    now: float
    max_density_ratio: float
    idle_threshold_s: float
    recent: Sequence[PlacementRecord] = ()


@dataclass(frozen=True, slots=True)
class _Snapshot:
    mean_density: float
    center_utilization: float
    max_density: float
    center_enabled: bool


def _snapshot(ctx: SelectionContext) -> _Snapshot:
    return _Snapshot(
        mean_density=average_density(ctx.regions),
        center_utilization=center_utilization(ctx.regions),
        max_density=ctx.policy.max_density(),
        center_enabled=ctx.policy.center_placement_enabled(),
    )


def adjusted_weight(region: Region, ctx: SelectionContext, snap: _Snapshot | None = None) -> float:
    s = snap or _snapshot(ctx)
    weight = region.weight
    density = region.density()

    if density > s.mean_density * ctx.max_density_ratio:
        weight *= OVERDENSE_FACTOR
    # The policy ceiling is absolute; it applies whatever the neighbours look like.
    if density > s.max_density:
        weight *= OVER_CEILING_FACTOR

    if region.last_used_at is None or ctx.now - region.last_used_at > ctx.idle_threshold_s:
        weight *= IDLE_BOOST

    if region.kind == RegionKind.center and s.center_utilization < CENTER_UNDERUSED_BELOW and s.center_enabled:
        weight *= CENTER_BOOST

    return weight


def weighted_draw(candidates: Sequence[Region], weights: Sequence[float], rng: random.Random) -> Region:
    """Cumulative-weight scan against a uniform draw in [0, total)."""

    assert candidates, "weighted_draw needs at least one candidate"
    assert len(candidates) == len(weights)

    total = sum(weights)
    if total <= 0:
        return candidates[0]

    u = rng.random() * total
    cumulative = 0.0
    for region, weight in zip(candidates, weights):
        cumulative += weight
        if cumulative > u:
            return region

    # u < total, so only float rounding lands here; the draw belongs to the top interval.
    return next(r for r, w in zip(reversed(candidates), reversed(weights)) if w > 0)


def select_balanced(candidates: Sequence[Region], ctx: SelectionContext) -> Region:
    pool = candidates or ctx.regions
    snap = _snapshot(ctx)
    weights = [adjusted_weight(r, ctx, snap) for r in pool]
    return weighted_draw(pool, weights, ctx.rng)


def select_edge_only(candidates: Sequence[Region], ctx: SelectionContext) -> Region:
    edges = [r for r in candidates if r.kind == RegionKind.edge]
    return select_balanced(edges or candidates, ctx)


def select_center_weighted(candidates: Sequence[Region], ctx: SelectionContext) -> Region:
    if not ctx.policy.center_placement_enabled():
        return select_edge_only(candidates, ctx)

    centers = [r for r in candidates if r.kind == RegionKind.center]
    others = [r for r in candidates if r.kind != RegionKind.center]

    if ctx.rng.random() < CENTER_SHARE and centers:
        return select_balanced(centers, ctx)
    return select_balanced(others or candidates, ctx)


def select_organic(candidates: Sequence[Region], ctx: SelectionContext) -> Region:
    if not ctx.policy.complex_paths_enabled():
        return select_balanced(candidates, ctx)

    kinds = [e.kind for e in list(ctx.recent)[-ORGANIC_WINDOW:]]

    if all(k == RegionKind.edge for k in kinds) and ctx.policy.center_placement_enabled():
        return select_center_weighted(candidates, ctx)

    if all(k == RegionKind.center for k in kinds):
        transitions = [r for r in candidates if r.kind == RegionKind.transition]
        return select_balanced(transitions or candidates, ctx)

    return select_balanced(candidates, ctx)


_STRATEGIES = {
    "balanced": select_balanced,
    "center-weighted": select_center_weighted,
    "edge-only": select_edge_only,
    "organic": select_organic,
}


def select(strategy: Strategy | str, ctx: SelectionContext) -> Region:
    """Run `strategy` over the whole partition. Unknown names behave like 'balanced'."""

    fn = _STRATEGIES.get(strategy, select_balanced)
    return fn(ctx.regions, ctx)
