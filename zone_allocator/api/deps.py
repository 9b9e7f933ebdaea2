from __future__ import annotations

from collections.abc import Generator

import redis

from zone_allocator.config import get_redis_url


def create_redis(url: str | None = None) -> redis.Redis:
    # Telemetry fields are written and read back as str.
    return redis.Redis.from_url(url or get_redis_url(), decode_responses=True)


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        # Surfaces created on this request keep the client for telemetry; redis-py
        # reconnects on their next write.
        client.close()
