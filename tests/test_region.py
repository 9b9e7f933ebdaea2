from __future__ import annotations

import random

from zone_allocator.core.region import Bounds, Point, Region, RegionKind


def _region() -> Region:
    return Region(id="r", kind=RegionKind.edge, bounds=Bounds(min_x=10, max_x=110, min_y=20, max_y=70))


def test_contains_is_inclusive_on_every_side() -> None:
    region = _region()
    assert region.contains(10, 20)
    assert region.contains(110, 70)
    assert region.contains(60, 45)
    assert not region.contains(9.99, 45)
    assert not region.contains(60, 70.01)


def test_center_and_area() -> None:
    region = _region()
    assert region.center() == Point(x=60, y=45)
    assert region.area() == 100 * 50


def test_random_point_respects_margin() -> None:
    region = _region()
    rng = random.Random(3)
    for _ in range(200):
        p = region.random_point(margin=0.1, rng=rng)
        assert 20 <= p.x <= 100
        assert 25 <= p.y <= 65


def test_usage_counters_and_release_floor() -> None:
    region = _region()
    region.record_usage(now=5.0)
    region.record_usage(now=7.5)
    assert region.active_occupants == 2
    assert region.total_usage_count == 2
    assert region.last_used_at == 7.5
    assert region.density() == 2 / region.area()

    region.release()
    region.release()
    region.release()
    assert region.active_occupants == 0
    # Releasing does not rewrite history.
    assert region.total_usage_count == 2


def test_bounds_validity() -> None:
    assert Bounds(0, 1, 0, 1).is_valid()
    assert not Bounds(5, 5, 0, 1).is_valid()
    assert not Bounds(0, 1, 3, 2).is_valid()
