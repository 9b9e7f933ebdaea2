from __future__ import annotations

import math
import random

import pytest

from zone_allocator.compat import TALL_RATIOS, WIDE_RATIOS, ViewportCompatibility
from zone_allocator.core.region import Point
from zone_allocator.viewport import SAFE_RATIOS, Orientation, SizeClass, ViewportSnapshot, is_significant_change


def test_snapshot_classification() -> None:
    vp = ViewportSnapshot.from_size(1920, 1080)
    assert vp.orientation == Orientation.landscape
    assert vp.size_class == SizeClass.normal
    assert vp.aspect_ratio == pytest.approx(16 / 9)

    square = ViewportSnapshot.from_size(500, 500)
    assert square.orientation == Orientation.portrait
    assert square.size_class == SizeClass.small

    assert ViewportSnapshot.from_size(1300, 1200).size_class == SizeClass.large


def test_snapshot_rejects_non_positive_sizes() -> None:
    with pytest.raises(ValueError):
        ViewportSnapshot.from_size(0, 100)


def test_significant_change_rules() -> None:
    base = ViewportSnapshot.from_size(1000, 800)
    assert is_significant_change(None, base)
    assert not is_significant_change(base, ViewportSnapshot.from_size(1050, 820))
    assert is_significant_change(base, ViewportSnapshot.from_size(1150, 800))
    assert is_significant_change(base, ViewportSnapshot.from_size(800, 1000))


def test_clamp_keeps_points_ten_pixels_inside() -> None:
    compat = ViewportCompatibility()
    vp = ViewportSnapshot.from_size(800, 600)
    assert compat.clamp_position(Point(-50, 700), vp) == Point(10, 590)
    assert compat.clamp_position(Point(400, 300), vp) == Point(400, 300)


@pytest.mark.parametrize("bad", [None, Point(math.nan, 3), Point(2, math.inf)])
def test_invalid_points_get_a_fallback_inside_the_inset(bad) -> None:
    compat = ViewportCompatibility(rng=random.Random(1))
    vp = ViewportSnapshot.from_size(800, 600)
    p = compat.clamp_position(bad, vp)
    assert 60 <= p.x <= 740
    assert 60 <= p.y <= 540


def test_extreme_aspect_fallback_table() -> None:
    compat = ViewportCompatibility()
    assert compat.extreme_aspect_fallback(ViewportSnapshot.from_size(3000, 1000)) == WIDE_RATIOS
    assert compat.extreme_aspect_fallback(ViewportSnapshot.from_size(400, 1000)) == TALL_RATIOS
    assert compat.extreme_aspect_fallback(ViewportSnapshot.from_size(1000, 1000)) == SAFE_RATIOS


def test_viewport_subscriptions_can_be_cancelled() -> None:
    compat = ViewportCompatibility()
    seen: list[ViewportSnapshot] = []
    cancel = compat.on_viewport_change(seen.append)

    compat.push_viewport(ViewportSnapshot.from_size(250, 500))
    assert len(seen) == 1
    assert compat.very_compact_viewport

    cancel()
    cancel()
    compat.push_viewport(ViewportSnapshot.from_size(1000, 800))
    assert len(seen) == 1
    assert compat.listener_count == 0
    assert not compat.very_compact_viewport
