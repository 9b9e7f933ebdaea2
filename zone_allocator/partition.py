"""Region topology and viewport-driven ratio selection.

The partition is always the same 13 regions: a primary center block, four center
sub-regions around it, four edge strips, and four transition corners. Only their
bounds change with the viewport and the ratio set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from zone_allocator.compat import CompatibilityProvider
from zone_allocator.core.region import Bounds, Region, RegionKind
from zone_allocator.viewport import SAFE_RATIOS, Orientation, RatioSet, SizeClass, ViewportSnapshot

logger = logging.getLogger(__name__)

REGION_COUNT = 13

# Construction weights; the policy overrides them right after the build.
PRIMARY_CENTER_WEIGHT = 1.5
CENTER_SUB_WEIGHT = 1.2
EDGE_WEIGHT = 0.8
TRANSITION_WEIGHT = 1.0

EXTREME_TALL_ASPECT = 0.5
EXTREME_WIDE_ASPECT = 2.5

# (edge_margin, center_zone_size); normal-sized viewports use the configured ratios.
_SIZE_CLASS_RATIOS: dict[SizeClass, tuple[float, float]] = {
    SizeClass.small: (0.03, 0.5),
    SizeClass.large: (0.06, 0.35),
}


class PartitionError(ValueError):
    """Raised when a ratio set cannot produce a valid topology for a viewport."""


@dataclass(frozen=True, slots=True)
class RatioDecision:
    ratios: RatioSet
    # "extreme-aspect", "heuristic" or "fallback"
    source: str
    error: str | None = None


def build_regions(viewport: ViewportSnapshot, ratios: RatioSet, *, generation: int = 0) -> list[Region]:
    """Build the fixed topology for `viewport`. Raises PartitionError on degenerate bounds."""

    w = viewport.width
    h = viewport.height
    margin_x = w * ratios.edge_margin
    margin_y = h * ratios.edge_margin

    center_size = viewport.min_dimension * ratios.center_zone_size
    half = center_size / 2
    cx = w / 2
    cy = h / 2

    # Column and row boundaries of the 5x5 grid the topology lives on.
    x0, x1, x2, x3, x4, x5 = 0.0, margin_x, cx - half, cx + half, w - margin_x, w
    y0, y1, y2, y3, y4, y5 = 0.0, margin_y, cy - half, cy + half, h - margin_y, h

    layout: list[tuple[str, RegionKind, Bounds, float]] = [
        ("center", RegionKind.center, Bounds(x2, x3, y2, y3), PRIMARY_CENTER_WEIGHT),
        ("center-top", RegionKind.center, Bounds(x2, x3, y1, y2), CENTER_SUB_WEIGHT),
        ("center-bottom", RegionKind.center, Bounds(x2, x3, y3, y4), CENTER_SUB_WEIGHT),
        ("center-left", RegionKind.center, Bounds(x1, x2, y2, y3), CENTER_SUB_WEIGHT),
        ("center-right", RegionKind.center, Bounds(x3, x4, y2, y3), CENTER_SUB_WEIGHT),
        ("edge-top", RegionKind.edge, Bounds(x1, x4, y0, y1), EDGE_WEIGHT),
        ("edge-right", RegionKind.edge, Bounds(x4, x5, y1, y4), EDGE_WEIGHT),
        ("edge-bottom", RegionKind.edge, Bounds(x1, x4, y4, y5), EDGE_WEIGHT),
        ("edge-left", RegionKind.edge, Bounds(x0, x1, y1, y4), EDGE_WEIGHT),
        ("transition-top-left", RegionKind.transition, Bounds(x1, x2, y1, y2), TRANSITION_WEIGHT),
        ("transition-top-right", RegionKind.transition, Bounds(x3, x4, y1, y2), TRANSITION_WEIGHT),
        ("transition-bottom-left", RegionKind.transition, Bounds(x1, x2, y3, y4), TRANSITION_WEIGHT),
        ("transition-bottom-right", RegionKind.transition, Bounds(x3, x4, y3, y4), TRANSITION_WEIGHT),
    ]

    regions: list[Region] = []
    for region_id, kind, bounds, weight in layout:
        if not bounds.is_valid():
            raise PartitionError(f"Region '{region_id}' is degenerate for {w}x{h} with {ratios}")
        regions.append(Region(id=region_id, kind=kind, bounds=bounds, weight=weight, generation=generation))
    return regions


def fits(viewport: ViewportSnapshot, ratios: RatioSet) -> bool:
    try:
        build_regions(viewport, ratios)
    except PartitionError:
        return False
    return True


def adjust_config_for_viewport(
    viewport: ViewportSnapshot,
    *,
    base: RatioSet,
    compat: CompatibilityProvider,
    center_placement_enabled: bool,
    min_region_pixel_size: float,
) -> RatioDecision:
    """Choose the ratio set for `viewport`. Never raises."""

    if viewport.aspect_ratio < EXTREME_TALL_ASPECT or viewport.aspect_ratio > EXTREME_WIDE_ASPECT:
        try:
            ratios = compat.extreme_aspect_fallback(viewport)
            if fits(viewport, ratios):
                logger.info("Applied extreme aspect ratio config: %s", ratios)
                return RatioDecision(ratios=ratios, source="extreme-aspect")
            error = f"extreme aspect ratio set {ratios} does not fit {viewport.width}x{viewport.height}"
        except Exception as e:
            error = str(e) or type(e).__name__
        logger.warning("Extreme aspect fallback unusable (%s), using safe ratios", error)
        return RatioDecision(ratios=SAFE_RATIOS, source="fallback", error=error)

    try:
        ratios = _heuristic_ratios(
            viewport,
            base=base,
            compat=compat,
            center_placement_enabled=center_placement_enabled,
            min_region_pixel_size=min_region_pixel_size,
        )
        build_regions(viewport, ratios)
    except Exception as e:
        logger.warning("Error adjusting viewport config (%s), using safe ratios", e)
        return RatioDecision(ratios=SAFE_RATIOS, source="fallback", error=str(e) or type(e).__name__)

    return RatioDecision(ratios=ratios, source="heuristic")


def _heuristic_ratios(
    viewport: ViewportSnapshot,
    *,
    base: RatioSet,
    compat: CompatibilityProvider,
    center_placement_enabled: bool,
    min_region_pixel_size: float,
) -> RatioSet:
    if viewport.size_class == SizeClass.normal:
        edge, center = base.edge_margin, base.center_zone_size
    else:
        edge, center = _SIZE_CLASS_RATIOS[viewport.size_class]
    transition = base.transition_zone_width

    if viewport.aspect_ratio > 2.0 or viewport.aspect_ratio < 0.5:
        center = min(center, 0.3)
        transition = 0.2

    if compat.simple_positioning_only:
        center = max(0.3, center)
        transition = min(0.1, transition)

    if compat.very_compact_viewport:
        center = 0.2
        edge = 0.1

    min_fraction = min_region_pixel_size / viewport.min_dimension
    edge = max(edge, min_fraction)
    center = max(center, min_fraction * 4)
    transition = max(transition, min_fraction * 2)

    if viewport.orientation == Orientation.portrait:
        center *= 1.1

    if not center_placement_enabled:
        center *= 0.8

    return RatioSet(edge_margin=edge, center_zone_size=center, transition_zone_width=transition)

