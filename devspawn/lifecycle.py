"""Spawn, terminate, rebuild and shutdown sequencing for a dev session."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from .builder import ImageBuilder
from .console import ConsoleView
from .errors import (
    NoImageError,
    OutdatedBackendError,
    SpawnInconsistencyError,
    UntrackedBackendError,
)
from .registry import Backend, BackendRegistry
from .remote import ControlPlane
from .streams import BackendStreamer
from .types import BACKEND_LOG_COLORS, SpawnRequestBody, SpawnResult

logger = logging.getLogger("devspawn.lifecycle")

OUTDATED_BACKEND_MESSAGE = (
    "Spawn with lock returned a running backend with an outdated version of the session backend code. "
    "Blocking spawn."
)
UNTRACKED_BACKEND_MESSAGE = (
    "Spawn with lock returned a running backend that was not originally spawned by this dev server. "
    "This may be dangerous. Blocking spawn."
)


class LifecycleManager:
    """Owns the current image and every change to the backend registry."""

    def __init__(
        self,
        *,
        control_plane: ControlPlane,
        builder: ImageBuilder,
        registry: BackendRegistry,
        streamer: BackendStreamer,
        console: ConsoleView,
        service: str,
        dockerfile: str,
    ) -> None:
        self._control_plane = control_plane
        self._builder = builder
        self._registry = registry
        self._streamer = streamer
        self._console = console
        self.service = service
        self.dockerfile = dockerfile
        self.current_image_id: str | None = None
        self.total_backends_spawned = 0

    @property
    def registry(self) -> BackendRegistry:
        return self._registry

    async def build_and_push(self) -> str:
        """Build the session image, push it and make it current."""
        self._console.log("Building image...")
        image_id = await asyncio.to_thread(self._builder.build, self.dockerfile)
        self._console.log("Image built.", "Pushing image...")
        await self._control_plane.push(self.service, image_id)
        self._console.update([f"Image pushed to {self.service} service. ImageID: {image_id}"])
        self.current_image_id = image_id
        logger.info("Session image updated", extra={"service": self.service, "image_id": image_id})
        return image_id

    def outdated_backends(self) -> list[str]:
        return [backend.name for backend in self._registry.all() if backend.image_id != self.current_image_id]

    async def rebuild(self) -> list[str]:
        """Rebuild the image and terminate backends running an older one."""
        await self.build_and_push()
        outdated = self.outdated_backends()
        if outdated:
            self._console.update(["", "Terminating outdated backends..."])
            await self.terminate(outdated)
        return outdated

    async def terminate(self, names: Sequence[str]) -> list[str]:
        """Request termination of ``names`` concurrently.

        Entries stay in the registry until their status stream reports a
        terminal state so final statuses and log lines still come through.
        Returns the names whose termination request failed.
        """
        names = list(names)
        if not names:
            return []
        self._console.update([f"Terminating {len(names)} backend(s): {', '.join(names)}"])
        results = await asyncio.gather(
            *(self._control_plane.terminate(name) for name in names),
            return_exceptions=True,
        )
        failed: list[str] = []
        for name, result in zip(names, results, strict=True):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                failed.append(name)
                logger.warning(
                    "Failed to terminate backend %s: %s",
                    name,
                    result,
                    extra={"backend": name, "error": repr(result)},
                )
        return failed

    async def terminate_all(self) -> list[str]:
        names = self._registry.names()
        if not names:
            self._console.update(["", "No development backends to terminate"])
            return []
        self._console.update(["", "Terminating development backends..."])
        return await self.terminate(names)

    async def spawn(self, body: SpawnRequestBody) -> SpawnResult:
        """Spawn a backend for the current image.

        Raises:
            NoImageError: called before any image was built.
            SpawnInconsistencyError: the control plane's ``spawned`` flag
                contradicts the registry.
            OutdatedBackendError: a lock resolved to a backend running an
                older image.
            UntrackedBackendError: a lock resolved to a backend this session
                never spawned.
        """
        image_id = self.current_image_id
        if not image_id:
            raise NoImageError("spawn called before an image was built. This is a bug.")

        result = await self._control_plane.spawn(
            self.service,
            env=body.env,
            grace_period_seconds=body.grace_period_seconds,
            port=body.port,
            tag=body.tag,
            require_bearer_token=body.require_bearer_token,
            lock=body.lock,
        )

        existing = self._registry.get(result.name)
        if existing is not None:
            if result.spawned:
                raise SpawnInconsistencyError(
                    f'Spawned backend {result.name} already exists in the registry but "spawned=true" '
                    "in spawn response. Some bug has occurred."
                )
            if existing.image_id != image_id:
                logger.warning(
                    OUTDATED_BACKEND_MESSAGE,
                    extra={"backend": result.name, "image_id": existing.image_id, "current": image_id},
                )
                raise OutdatedBackendError(OUTDATED_BACKEND_MESSAGE)
        elif result.spawned:
            color = BACKEND_LOG_COLORS[self.total_backends_spawned % len(BACKEND_LOG_COLORS)]
            self.total_backends_spawned += 1
            self._registry.upsert(
                Backend(
                    spawn_result=result,
                    image_id=image_id,
                    color=color,
                    lock=body.lock,
                )
            )
            self._console.update(["", f"Spawned backend: {result.name}"])
        else:
            logger.warning(UNTRACKED_BACKEND_MESSAGE, extra={"backend": result.name, "lock": body.lock})
            raise UntrackedBackendError(UNTRACKED_BACKEND_MESSAGE)

        self._streamer.attach(result.name)
        return result

    async def shutdown(self, grace_s: float | None = None) -> None:
        """Terminate every backend and wait until all streams have closed.

        Streams still open after ``grace_s`` seconds are force-closed and
        their entries dropped from the registry.
        """
        await self.terminate_all()
        finished = await self._streamer.wait_closed(timeout=grace_s)
        if not finished:
            logger.warning(
                "Backends did not report a terminal status in time; closing their streams",
                extra={"backends": self._streamer.open_streams},
            )
        self._streamer.close_all()
        for name in self._registry.names():
            backend = self._registry.remove(name)
            if backend is not None and backend.stream_closer is not None:
                backend.stream_closer.close()
        await self._streamer.wait_closed()


__all__ = ["LifecycleManager", "OUTDATED_BACKEND_MESSAGE", "UNTRACKED_BACKEND_MESSAGE"]
