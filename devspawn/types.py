"""Typed payload models shared by the proxy, lifecycle manager and client."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Color(str, Enum):
    CYAN = "cyan"
    MAGENTA = "magenta"
    YELLOW = "yellow"
    BLUE = "blue"


BACKEND_LOG_COLORS: tuple[Color, ...] = (Color.CYAN, Color.MAGENTA, Color.YELLOW, Color.BLUE)

# Any status outside this set is terminal.
LIVE_STATUSES = frozenset({"Loading", "Starting", "Ready"})


def is_terminal_status(status: str) -> bool:
    return status not in LIVE_STATUSES


class SpawnRequestBody(BaseModel):
    """Spawn parameters accepted by the proxy and forwarded unchanged."""

    env: dict[str, str] | None = None
    grace_period_seconds: int | None = None
    port: int | None = None
    tag: str | None = None
    require_bearer_token: bool | None = None
    lock: str | None = None

    model_config = ConfigDict(extra="ignore")


class SpawnResult(BaseModel):
    """Control-plane spawn response; unknown fields are preserved."""

    name: str
    spawned: bool

    model_config = ConfigDict(extra="allow")


class BackendStatus(BaseModel):
    """One status transition delivered by a status stream."""

    state: str
    time: str | None = Field(default=None)

    model_config = ConfigDict(extra="allow")


__all__ = [
    "BACKEND_LOG_COLORS",
    "BackendStatus",
    "Color",
    "LIVE_STATUSES",
    "SpawnRequestBody",
    "SpawnResult",
    "is_terminal_status",
]
