"""In-memory registry of the backends spawned during a dev session."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .types import Color, SpawnResult

if TYPE_CHECKING:
    from .streams import StreamCloser


@dataclass(slots=True)
class Backend:
    """A remote backend spawned by this session."""

    spawn_result: SpawnResult
    image_id: str
    color: Color
    lock: str | None = None
    spawn_time: float = field(default_factory=time.time)
    last_status: str | None = None
    is_streaming: bool = False
    stream_closer: StreamCloser | None = None

    @property
    def name(self) -> str:
        return self.spawn_result.name


class BackendRegistry:
    """Single source of truth for the backends of a session.

    All access happens on the event loop thread, so no locking is needed.
    Consumers must treat a missing entry as already cleaned up.
    """

    def __init__(self) -> None:
        self._backends: dict[str, Backend] = {}

    def upsert(self, backend: Backend) -> None:
        self._backends[backend.name] = backend

    def get(self, name: str) -> Backend | None:
        return self._backends.get(name)

    def remove(self, name: str) -> Backend | None:
        return self._backends.pop(name, None)

    def all(self) -> list[Backend]:
        return list(self._backends.values())

    def names(self) -> list[str]:
        return list(self._backends)

    def __contains__(self, name: object) -> bool:
        return name in self._backends

    def __len__(self) -> int:
        return len(self._backends)


__all__ = ["Backend", "BackendRegistry"]
