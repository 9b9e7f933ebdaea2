from __future__ import annotations

import random
from collections.abc import Generator

import pytest

from zone_allocator.allocator import PlacementAllocator
from zone_allocator.compat import ViewportCompatibility
from zone_allocator.config import AllocatorConfig
from zone_allocator.policy import PerformanceTier, TieredPolicy
from zone_allocator.scheduler import ManualScheduler
from zone_allocator.telemetry import RecordingTelemetry
from zone_allocator.viewport import ViewportSnapshot


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host settings from leaking into tier selection and stream trimming."""

    monkeypatch.delenv("ZONE_ALLOCATOR_DEFAULT_TIER", raising=False)
    monkeypatch.delenv("ZONE_ALLOCATOR_TELEMETRY_MAXLEN", raising=False)


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture()
def telemetry() -> RecordingTelemetry:
    return RecordingTelemetry()


@pytest.fixture()
def compat() -> ViewportCompatibility:
    return ViewportCompatibility(rng=random.Random(7))


@pytest.fixture()
def policy() -> TieredPolicy:
    return TieredPolicy(PerformanceTier.medium)


@pytest.fixture()
def make_allocator(scheduler, telemetry, compat, policy):
    """Factory for allocators on the manual clock. Everything it builds is destroyed afterwards."""

    built: list[PlacementAllocator] = []

    def _make(
        width: float = 1920,
        height: float = 1080,
        *,
        config: AllocatorConfig | None = None,
        seed: int = 42,
        **kwargs,
    ) -> PlacementAllocator:
        allocator = PlacementAllocator(
            viewport=ViewportSnapshot.from_size(width, height),
            policy=kwargs.pop("policy", policy),
            compat=kwargs.pop("compat", compat),
            scheduler=scheduler,
            config=config,
            telemetry=telemetry,
            rng=random.Random(seed),
            surface_id="test-surface",
            **kwargs,
        )
        built.append(allocator)
        return allocator

    yield _make

    for allocator in built:
        allocator.destroy()


@pytest.fixture()
def client_and_redis():
    """FastAPI TestClient wired to a fakeredis instance.

    Surfaces are process-local, so every test starts and ends with an empty registry.
    """

    import fakeredis
    from fastapi.testclient import TestClient

    from zone_allocator.api.deps import get_redis
    from zone_allocator.main import app
    from zone_allocator.surface_store import clear_surfaces

    r = fakeredis.FakeRedis(decode_responses=True)

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    clear_surfaces()
    app.dependency_overrides[get_redis] = _override
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()
    clear_surfaces()
