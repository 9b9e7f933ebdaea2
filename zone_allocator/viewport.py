from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Orientation(StrEnum):
    landscape = "landscape"
    portrait = "portrait"


class SizeClass(StrEnum):
    small = "small"
    normal = "normal"
    large = "large"


SMALL_VIEWPORT_PX = 600
LARGE_VIEWPORT_PX = 1200


@dataclass(frozen=True, slots=True)
class ViewportSnapshot:
    width: float
    height: float
    aspect_ratio: float
    orientation: Orientation
    size_class: SizeClass
    device_pixel_ratio: float = 1.0

    @staticmethod
    def from_size(width: float, height: float, *, device_pixel_ratio: float = 1.0) -> "ViewportSnapshot":
        if width <= 0 or height <= 0:
            raise ValueError("viewport dimensions must be positive")

        smaller = min(width, height)
        if smaller < SMALL_VIEWPORT_PX:
            size_class = SizeClass.small
        elif smaller >= LARGE_VIEWPORT_PX:
            size_class = SizeClass.large
        else:
            size_class = SizeClass.normal

        return ViewportSnapshot(
            width=width,
            height=height,
            aspect_ratio=width / height,
            orientation=Orientation.landscape if width > height else Orientation.portrait,
            size_class=size_class,
            device_pixel_ratio=device_pixel_ratio,
        )

    @property
    def min_dimension(self) -> float:
        return min(self.width, self.height)


@dataclass(frozen=True, slots=True)
class RatioSet:
    """Fractions of the viewport that shape the partition."""

    edge_margin: float
    center_zone_size: float
    transition_zone_width: float


SAFE_RATIOS = RatioSet(edge_margin=0.05, center_zone_size=0.4, transition_zone_width=0.15)


def is_significant_change(
    previous: ViewportSnapshot | None,
    current: ViewportSnapshot,
    *,
    aspect_ratio_threshold: float = 0.2,
    size_change_fraction: float = 0.1,
) -> bool:
    """Whether moving from `previous` to `current` warrants a full repartition."""

    if previous is None:
        return True

    if previous.orientation != current.orientation:
        return True

    width_change = abs(current.width - previous.width) / previous.width
    height_change = abs(current.height - previous.height) / previous.height
    if width_change > size_change_fraction or height_change > size_change_fraction:
        return True

    return abs(current.aspect_ratio - previous.aspect_ratio) > aspect_ratio_threshold
