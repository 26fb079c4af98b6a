"""Exception hierarchy for devspawn."""

from __future__ import annotations


class DevSpawnError(Exception):
    """Base error carrying a user-facing message and an optional hint."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint


class ConfigError(DevSpawnError):
    """Raised when stored or supplied configuration is unusable."""


class ImageBuildError(DevSpawnError):
    """Raised when building or pushing an image fails."""


class ControlPlaneError(DevSpawnError):
    """Raised when a control-plane request fails."""

    def __init__(self, message: str, *, status_code: int | None = None, hint: str | None = None) -> None:
        super().__init__(message, hint=hint)
        self.status_code = status_code


class AuthenticationError(ControlPlaneError):
    """Raised when the control plane rejects the supplied token."""


class NoImageError(DevSpawnError):
    """A spawn was attempted before any image was built. This is a bug."""


class SpawnInconsistencyError(DevSpawnError):
    """The control plane's spawn/lock semantics contradict the registry."""


class SpawnRefusedError(DevSpawnError):
    """A spawn was blocked and must be reported back to the caller."""


class OutdatedBackendError(SpawnRefusedError):
    """A lock resolved to a backend running an outdated image."""


class UntrackedBackendError(SpawnRefusedError):
    """A lock resolved to a backend this session did not spawn."""


__all__ = [
    "AuthenticationError",
    "ConfigError",
    "ControlPlaneError",
    "DevSpawnError",
    "ImageBuildError",
    "NoImageError",
    "OutdatedBackendError",
    "SpawnInconsistencyError",
    "SpawnRefusedError",
    "UntrackedBackendError",
]
