"""Viewport compatibility provider.

Supplies viewport-change notifications, specialized ratio sets for extreme aspect
ratios, and clamping of proposed positions back inside the surface.
"""

from __future__ import annotations

import logging
import math
import random
from collections.abc import Callable
from typing import Protocol

from zone_allocator.core.region import Point
from zone_allocator.viewport import SAFE_RATIOS, RatioSet, ViewportSnapshot

logger = logging.getLogger(__name__)

ViewportCallback = Callable[[ViewportSnapshot], None]
CancelFn = Callable[[], None]

VERY_COMPACT_PX = 300
CLAMP_MARGIN_PX = 10.0

WIDE_RATIOS = RatioSet(edge_margin=0.03, center_zone_size=0.3, transition_zone_width=0.2)
TALL_RATIOS = RatioSet(edge_margin=0.04, center_zone_size=0.5, transition_zone_width=0.1)


class CompatibilityProvider(Protocol):
    simple_positioning_only: bool
    very_compact_viewport: bool

    def clamp_position(self, point: Point | None, viewport: ViewportSnapshot) -> Point: ...

    def extreme_aspect_fallback(self, viewport: ViewportSnapshot) -> RatioSet: ...

    def on_viewport_change(self, callback: ViewportCallback) -> CancelFn: ...


class ViewportCompatibility:
    """In-process compatibility provider.

    Viewport changes are pushed in explicitly (`push_viewport`) by whatever owns the
    real surface, and fanned out to every subscriber.
    """

    def __init__(
        self,
        *,
        simple_positioning_only: bool = False,
        very_compact_viewport: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        self.simple_positioning_only = simple_positioning_only
        self.very_compact_viewport = very_compact_viewport
        self._rng = rng or random.Random()
        self._listeners: list[ViewportCallback] = []

    @classmethod
    def for_viewport(cls, viewport: ViewportSnapshot, *, simple_positioning_only: bool = False) -> "ViewportCompatibility":
        return cls(
            simple_positioning_only=simple_positioning_only,
            very_compact_viewport=viewport.min_dimension < VERY_COMPACT_PX,
        )

    def clamp_position(self, point: Point | None, viewport: ViewportSnapshot) -> Point:
        if point is None or not (math.isfinite(point.x) and math.isfinite(point.y)):
            logger.warning("Invalid position %r, using fallback", point)
            return self._fallback_position(viewport)

        m = min(CLAMP_MARGIN_PX, viewport.width / 2, viewport.height / 2)
        return Point(
            x=max(m, min(viewport.width - m, point.x)),
            y=max(m, min(viewport.height - m, point.y)),
        )

    def _fallback_position(self, viewport: ViewportSnapshot) -> Point:
        margin = viewport.min_dimension * 0.1
        return Point(
            x=margin + self._rng.random() * (viewport.width - margin * 2),
            y=margin + self._rng.random() * (viewport.height - margin * 2),
        )

    def extreme_aspect_fallback(self, viewport: ViewportSnapshot) -> RatioSet:
        if viewport.aspect_ratio > 2.5:
            return WIDE_RATIOS
        if viewport.aspect_ratio < 0.5:
            return TALL_RATIOS
        return SAFE_RATIOS

    def on_viewport_change(self, callback: ViewportCallback) -> CancelFn:
        self._listeners.append(callback)

        def _cancel() -> None:
            try:
                self._listeners.remove(callback)
            except ValueError:
                pass

        return _cancel

    def push_viewport(self, viewport: ViewportSnapshot) -> None:
        self.very_compact_viewport = viewport.min_dimension < VERY_COMPACT_PX
        for callback in list(self._listeners):
            callback(viewport)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
