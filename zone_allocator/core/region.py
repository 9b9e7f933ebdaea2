from __future__ import annotations

import random
from dataclasses import dataclass
from enum import StrEnum


class RegionKind(StrEnum):
    edge = "edge"
    center = "center"
    transition = "transition"


@dataclass(frozen=True, slots=True)
class Bounds:
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    def is_valid(self) -> bool:
        return self.max_x > self.min_x and self.max_y > self.min_y


@dataclass(frozen=True, slots=True)
class Point:
    x: float
    y: float


@dataclass(slots=True)
class Region:
    """One rectangular area of the placement surface.

    `weight` is mutated by the policy and by rebalancing; the usage counters only live
    for the lifetime of the partition that created the region.
    """

    id: str
    kind: RegionKind
    bounds: Bounds
    weight: float = 1.0
    generation: int = 0

    active_occupants: int = 0
    last_used_at: float | None = None
    total_usage_count: int = 0

    def center(self) -> Point:
        b = self.bounds
        return Point(x=(b.min_x + b.max_x) / 2, y=(b.min_y + b.max_y) / 2)

    def random_point(self, *, margin: float = 0.0, rng: random.Random | None = None) -> Point:
        """Uniform point inside the region, shrunk by `margin` (a fraction of each side)."""

        r = rng or random
        b = self.bounds
        mx = b.width * margin
        my = b.height * margin
        return Point(
            x=b.min_x + mx + r.random() * (b.width - 2 * mx),
            y=b.min_y + my + r.random() * (b.height - 2 * my),
        )

    def contains(self, x: float, y: float) -> bool:
        b = self.bounds
        return b.min_x <= x <= b.max_x and b.min_y <= y <= b.max_y

    def area(self) -> float:
        return self.bounds.width * self.bounds.height

    def record_usage(self, *, now: float) -> None:
        self.last_used_at = now
        self.total_usage_count += 1
        self.active_occupants += 1

    def release(self) -> None:
        self.active_occupants = max(0, self.active_occupants - 1)

    def density(self) -> float:
        area = self.area()
        return self.active_occupants / area if area > 0 else 0.0
