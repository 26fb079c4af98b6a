"""Public package surface for devspawn."""

from __future__ import annotations

from .config import ApiSettings, DevSessionConfig, UserConfig
from .console import ConsoleView, render_footer
from .errors import (
    ControlPlaneError,
    DevSpawnError,
    NoImageError,
    OutdatedBackendError,
    SpawnInconsistencyError,
    SpawnRefusedError,
    UntrackedBackendError,
)
from .lifecycle import LifecycleManager
from .proxy import SpawnProxy, create_spawn_proxy_app
from .registry import Backend, BackendRegistry
from .remote import ControlPlane, HttpControlPlane
from .session import DevSession
from .streams import BackendStreamer, StreamCloser, StreamHandle, open_stream
from .types import BackendStatus, Color, SpawnRequestBody, SpawnResult

__all__ = [
    "__version__",
    "ApiSettings",
    "Backend",
    "BackendRegistry",
    "BackendStatus",
    "BackendStreamer",
    "Color",
    "ConsoleView",
    "ControlPlane",
    "ControlPlaneError",
    "DevSession",
    "DevSessionConfig",
    "DevSpawnError",
    "HttpControlPlane",
    "LifecycleManager",
    "NoImageError",
    "OutdatedBackendError",
    "SpawnInconsistencyError",
    "SpawnProxy",
    "SpawnRefusedError",
    "SpawnRequestBody",
    "SpawnResult",
    "StreamCloser",
    "StreamHandle",
    "UntrackedBackendError",
    "UserConfig",
    "create_spawn_proxy_app",
    "open_stream",
    "render_footer",
]

__version__ = "0.1.0"
