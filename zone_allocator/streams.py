from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, cast

import redis


@dataclass(frozen=True, slots=True)
class TelemetryStream:
    surface_id: str

    @property
    def key(self) -> str:
        return f"telemetry:{self.surface_id}"


def publish_to_stream(
    *,
    r: redis.Redis,
    stream: TelemetryStream,
    fields: Mapping[str, str],
    maxlen: int | None = None,
) -> str:
    """Append an entry to a surface's telemetry stream, trimming it to roughly `maxlen`."""

    # redis-py stubs expect field/value unions; we only use string fields/values.
    stream_id = r.xadd(
        stream.key,
        {str(k): str(v) for k, v in fields.items()},
        maxlen=maxlen,
        approximate=maxlen is not None,
    )
    return cast(str, stream_id)


def read_stream(*, r: redis.Redis, stream: TelemetryStream, count: int = 20, start: str = "-", end: str = "+") -> list[tuple[str, dict[str, str]]]:
    entries = r.xrange(stream.key, min=start, max=end, count=count)
    return [(cast(str, mid), cast(dict[str, str], fields)) for mid, fields in entries]


def delete_stream(*, r: redis.Redis, stream: TelemetryStream) -> None:
    r.delete(stream.key)
