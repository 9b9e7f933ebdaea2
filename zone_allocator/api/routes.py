from __future__ import annotations

import json
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
import redis

from zone_allocator.api.deps import get_redis
from zone_allocator.api.models import (
    AllocateRequest,
    FrameRateRequest,
    PlacementResponse,
    SurfaceCreateRequest,
    SurfaceListResponse,
    SurfaceState,
    TelemetryEntry,
    TelemetryResponse,
    TierRequest,
    ViewportRequest,
)
from zone_allocator.streams import TelemetryStream, read_stream
from zone_allocator.surface_store import (
    Surface,
    create_surface,
    delete_surface,
    get_surface,
    list_surfaces,
    push_viewport,
    set_tier,
    surface_state,
    surface_summary,
)
from zone_allocator.websocket_hub import hub

router = APIRouter()


def _require(surface_id: UUID) -> Surface:
    surface = get_surface(surface_id=str(surface_id))
    if surface is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Surface not found")
    return surface


@router.websocket("/ws/surface/{surface_id}")
async def surface_updates_ws(websocket: WebSocket, surface_id: UUID) -> None:
    sid = str(surface_id)
    await hub.connect(sid, websocket)

    try:
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(sid, websocket)
    except Exception:
        await hub.disconnect(sid, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/surfaces", response_model=SurfaceState, status_code=status.HTTP_201_CREATED)
async def create_surface_route(payload: SurfaceCreateRequest, r: redis.Redis = Depends(get_redis)) -> SurfaceState:
    try:
        surface = create_surface(
            r=r,
            width=payload.width,
            height=payload.height,
            tier=payload.tier,
            strategy=payload.strategy,
            config_overrides=payload.config,
            seed=payload.seed,
            simple_positioning_only=payload.simple_positioning_only,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return surface_state(surface)


@router.get("/surfaces", response_model=SurfaceListResponse)
async def list_surfaces_route() -> SurfaceListResponse:
    return SurfaceListResponse(surfaces=[surface_summary(s) for s in list_surfaces()])


@router.get("/surfaces/{surface_id}", response_model=SurfaceState)
async def get_surface_route(surface_id: UUID) -> SurfaceState:
    return surface_state(_require(surface_id))


@router.post("/surfaces/{surface_id}/allocate", response_model=PlacementResponse)
async def allocate_route(surface_id: UUID, payload: AllocateRequest | None = None) -> PlacementResponse:
    surface = _require(surface_id)
    payload = payload or AllocateRequest()

    placement = surface.allocator.allocate(payload.strategy or surface.strategy, margin=payload.margin)
    if placement is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Surface has no regions")
    return PlacementResponse(
        surface_id=surface.surface_id,
        region_id=placement.region_id,
        kind=placement.kind,
        x=placement.x,
        y=placement.y,
        generation=placement.generation,
    )


@router.post("/surfaces/{surface_id}/regions/{region_id}/release", response_model=SurfaceState)
async def release_route(surface_id: UUID, region_id: str) -> SurfaceState:
    surface = _require(surface_id)
    if surface.allocator.get_region(region_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Region not found")
    surface.allocator.release(region_id)
    return surface_state(surface)


@router.post("/surfaces/{surface_id}/viewport", status_code=status.HTTP_202_ACCEPTED)
async def viewport_route(surface_id: UUID, payload: ViewportRequest) -> dict[str, object]:
    surface = _require(surface_id)
    try:
        viewport = push_viewport(surface_id=surface.surface_id, width=payload.width, height=payload.height)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return {
        "surface_id": surface.surface_id,
        "width": viewport.width,
        "height": viewport.height,
        "debounce_ms": surface.allocator.config.resize_debounce_ms,
    }


@router.post("/surfaces/{surface_id}/frame-rate")
async def frame_rate_route(surface_id: UUID, payload: FrameRateRequest) -> dict[str, object]:
    surface = _require(surface_id)
    surface.allocator.report_frame_rate(payload.fps)
    return {"surface_id": surface.surface_id, "performance": surface.allocator.performance_stats()}


@router.post("/surfaces/{surface_id}/tier", response_model=SurfaceState)
async def tier_route(surface_id: UUID, payload: TierRequest) -> SurfaceState:
    surface = _require(surface_id)
    try:
        surface = set_tier(surface_id=surface.surface_id, tier=payload.tier)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return surface_state(surface)


@router.delete("/surfaces/{surface_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_surface_route(surface_id: UUID, r: redis.Redis = Depends(get_redis)) -> None:
    surface = _require(surface_id)
    delete_surface(r=r, surface_id=surface.surface_id)


@router.get("/surfaces/{surface_id}/telemetry", response_model=TelemetryResponse)
async def telemetry_route(
    surface_id: UUID,
    count: int = 50,
    r: redis.Redis = Depends(get_redis),
) -> TelemetryResponse:
    """Debug endpoint: read a surface's telemetry Redis Stream, oldest first."""

    if count < 1 or count > 1000:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="count must be between 1 and 1000")

    surface = _require(surface_id)
    stream = TelemetryStream(surface_id=surface.surface_id)
    try:
        entries = read_stream(r=r, stream=stream, count=count)
    except redis.RedisError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e

    events = [
        TelemetryEntry(
            id=mid,
            type=fields.get("type", ""),
            ts=fields.get("ts", ""),
            payload=json.loads(fields.get("payload") or "{}"),
        )
        for mid, fields in entries
    ]
    return TelemetryResponse(surface_id=surface.surface_id, stream=stream.key, events=events)
