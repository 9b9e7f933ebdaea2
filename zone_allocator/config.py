"""Allocator tuning knobs and process-level settings.

`AllocatorConfig` carries the hard-coded defaults for every recognized option; callers
override any subset of them. Process settings are read from the environment.
"""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AllocatorConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    edge_margin: float = Field(0.05, gt=0, lt=0.5)
    center_zone_size: float = Field(0.4, gt=0, lt=1)
    transition_zone_width: float = Field(0.15, gt=0, lt=1)

    # Regions denser than mean * max_density_ratio are down-weighted during selection.
    max_density_ratio: float = Field(2.0, gt=0)
    rebalance_threshold: float = Field(0.3, ge=0, le=1)

    resize_debounce_ms: int = Field(250, ge=0)
    min_region_pixel_size: float = Field(40.0, ge=0)
    aspect_ratio_change_threshold: float = Field(0.2, gt=0)
    monitor_interval_ms: int = Field(5_000, gt=0)

    # Not user-facing in the HTTP API, but tests shorten them.
    idle_threshold_ms: int = Field(5_000, ge=0)
    rebalance_revert_ms: int = Field(10_000, ge=0)

    def with_overrides(self, overrides: dict[str, Any] | None = None) -> "AllocatorConfig":
        """Return a copy with `overrides` applied (validated, unknown keys rejected)."""

        if not overrides:
            return self
        return AllocatorConfig.model_validate({**self.model_dump(), **overrides})


def get_telemetry_maxlen() -> int:
    return int(os.environ.get("ZONE_ALLOCATOR_TELEMETRY_MAXLEN", "1000"))


def get_default_tier() -> str | None:
    # Unset => detect from host capabilities.
    return os.environ.get("ZONE_ALLOCATOR_DEFAULT_TIER") or None


def get_redis_url() -> str:
    return os.environ.get("REDIS_URL", "redis://localhost:6379/0")
