"""Status/log stream handles and the per-backend streaming subsystem."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import suppress
from functools import partial
from typing import TYPE_CHECKING, Protocol, TypeVar

from .types import BackendStatus, is_terminal_status

if TYPE_CHECKING:  # pragma: no cover - import for typing only
    from .console import ConsoleView
    from .registry import BackendRegistry
    from .remote import ControlPlane

logger = logging.getLogger("devspawn.streams")

T = TypeVar("T")


class StreamHandle:
    """Cancellable producer pushing items from a remote stream to a callback."""

    __slots__ = ("label", "_task", "_closed")

    def __init__(self, task: asyncio.Task[None], *, label: str) -> None:
        self.label = label
        self._task = task
        self._closed = asyncio.Event()
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        if not task.cancelled():
            exc = task.exception()
            if exc is not None:
                logger.warning(
                    "Stream %s failed: %s",
                    self.label,
                    exc,
                    extra={"stream": self.label, "error": repr(exc)},
                )
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        if not self._task.done():
            self._task.cancel()

    async def wait_closed(self) -> None:
        await self._closed.wait()


def open_stream(
    source: AsyncIterator[T],
    on_item: Callable[[T], None],
    *,
    label: str,
) -> StreamHandle:
    """Pump ``source`` into ``on_item`` on a background task."""

    async def _pump() -> None:
        try:
            async for item in source:
                on_item(item)
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                with suppress(Exception):
                    await aclose()

    task = asyncio.create_task(_pump(), name=label)
    return StreamHandle(task, label=label)


class StreamCloser:
    """Owns the status and log streams of one backend; closes them once."""

    __slots__ = ("status", "logs", "_invoked")

    def __init__(self, status: StreamHandle, logs: StreamHandle) -> None:
        self.status = status
        self.logs = logs
        self._invoked = False

    @property
    def invoked(self) -> bool:
        return self._invoked

    @property
    def closed(self) -> bool:
        return self.status.closed and self.logs.closed

    def close(self) -> None:
        if self._invoked:
            return
        self._invoked = True
        self.status.close()
        self.logs.close()

    async def wait_closed(self) -> None:
        await asyncio.gather(self.status.wait_closed(), self.logs.wait_closed())


class StreamSource(Protocol):
    def stream_status(self, name: str, on_update: Callable[[BackendStatus], None]) -> StreamHandle: ...

    def stream_logs(self, name: str, on_line: Callable[[str], None]) -> StreamHandle: ...


class BackendStreamer:
    """Attaches status/log streams to registry entries and reacts to them."""

    def __init__(
        self,
        *,
        control_plane: ControlPlane | StreamSource,
        registry: BackendRegistry,
        console: ConsoleView,
    ) -> None:
        self._control_plane = control_plane
        self._registry = registry
        self._console = console
        self._closers: dict[str, StreamCloser] = {}
        self._watchers: set[asyncio.Task[None]] = set()

    def attach(self, name: str) -> bool:
        """Open both streams for ``name``; returns False if nothing was attached."""
        backend = self._registry.get(name)
        if backend is None or backend.is_streaming:
            return False

        self._console.update([f"Streaming status and logs for {name}...", ""])
        status = self._control_plane.stream_status(name, partial(self._on_status, name))
        logs = self._control_plane.stream_logs(name, partial(self._on_log, name))
        closer = StreamCloser(status, logs)
        backend.stream_closer = closer
        backend.is_streaming = True
        self._closers[name] = closer

        watcher = asyncio.create_task(self._watch(name, closer), name=f"streams:{name}")
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)
        return True

    async def _watch(self, name: str, closer: StreamCloser) -> None:
        await closer.wait_closed()
        backend = self._registry.get(name)
        color = backend.color if backend is not None else None
        self._console.update([self._console.colorize(f"[{name}] streams ended", color)])
        if backend is not None and backend.stream_closer is closer:
            backend.is_streaming = False
        if self._closers.get(name) is closer:
            del self._closers[name]

    def _on_status(self, name: str, status: BackendStatus) -> None:
        backend = self._registry.get(name)
        if backend is None:
            logger.debug("Ignoring status for unknown backend", extra={"backend": name, "state": status.state})
            return

        backend.last_status = status.state
        line = self._console.colorize(f"[{name}] status: {status.state}", backend.color)
        if is_terminal_status(status.state):
            if backend.stream_closer is not None:
                backend.stream_closer.close()
            self._registry.remove(name)
            logger.info("Backend reached terminal state", extra={"backend": name, "state": status.state})
        self._console.update([line])

    def _on_log(self, name: str, text: str) -> None:
        backend = self._registry.get(name)
        if backend is None:
            return
        self._console.update([self._console.colorize(f"[{name}] {text}", backend.color)])

    @property
    def open_streams(self) -> list[str]:
        return [name for name, closer in self._closers.items() if not closer.closed]

    def close_all(self) -> None:
        for closer in list(self._closers.values()):
            closer.close()

    async def wait_closed(self, timeout: float | None = None) -> bool:
        """Wait for every attached stream pair to finish; False on timeout."""
        pending: list[asyncio.Task[None]] = list(self._watchers)
        if not pending:
            return True
        _done, not_done = await asyncio.wait(pending, timeout=timeout)
        return not not_done


__all__ = ["BackendStreamer", "StreamCloser", "StreamHandle", "StreamSource", "open_stream"]
