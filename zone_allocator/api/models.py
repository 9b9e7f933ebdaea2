from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from zone_allocator.core.region import Region, RegionKind
from zone_allocator.policy import PerformanceTier, Strategy


class SurfaceCreateRequest(BaseModel):
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)
    tier: PerformanceTier | None = None
    # Default strategy for allocations on this surface; the policy decides when unset.
    strategy: Strategy | None = None
    seed: int | None = None
    simple_positioning_only: bool = False

    # Partial AllocatorConfig; unknown keys are rejected.
    config: dict[str, Any] = Field(default_factory=dict)


class ViewportRequest(BaseModel):
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)


class AllocateRequest(BaseModel):
    strategy: Strategy | None = None
    margin: float = Field(0.1, ge=0, lt=0.5)


class FrameRateRequest(BaseModel):
    fps: float = Field(..., ge=0, le=1000)


class TierRequest(BaseModel):
    tier: PerformanceTier


class BoundsModel(BaseModel):
    min_x: float
    max_x: float
    min_y: float
    max_y: float


class RegionModel(BaseModel):
    id: str
    kind: RegionKind
    bounds: BoundsModel
    weight: float
    generation: int
    active_occupants: int
    total_usage_count: int

    @classmethod
    def from_region(cls, region: Region) -> "RegionModel":
        b = region.bounds
        return cls(
            id=region.id,
            kind=region.kind,
            bounds=BoundsModel(min_x=b.min_x, max_x=b.max_x, min_y=b.min_y, max_y=b.max_y),
            weight=region.weight,
            generation=region.generation,
            active_occupants=region.active_occupants,
            total_usage_count=region.total_usage_count,
        )


class ViewportModel(BaseModel):
    width: float
    height: float
    aspect_ratio: float
    orientation: str
    size_class: str


class SurfaceState(BaseModel):
    surface_id: str
    created_at: datetime
    phase: str
    generation: int
    tier: PerformanceTier
    strategy: str
    viewport: ViewportModel | None = None
    ratios: dict[str, float] = Field(default_factory=dict)
    regions: list[RegionModel] = Field(default_factory=list)
    distribution: dict[str, Any] = Field(default_factory=dict)
    performance: dict[str, Any] = Field(default_factory=dict)


class SurfaceSummary(BaseModel):
    surface_id: str
    created_at: datetime
    phase: str
    tier: PerformanceTier
    region_count: int


class SurfaceListResponse(BaseModel):
    surfaces: list[SurfaceSummary] = Field(default_factory=list)


class PlacementResponse(BaseModel):
    surface_id: str
    region_id: str
    kind: RegionKind
    x: float
    y: float
    generation: int


class TelemetryEntry(BaseModel):
    id: str
    type: str
    ts: str
    payload: dict[str, Any] = Field(default_factory=dict)


class TelemetryResponse(BaseModel):
    surface_id: str
    stream: str
    events: list[TelemetryEntry] = Field(default_factory=list)
