"""Top-level dev session: keyboard, file watching and proxy lifetime."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import suppress
from functools import partial
from typing import IO, Any, Protocol

from fastapi import FastAPI

from .builder import ImageBuilder
from .config import DevSessionConfig
from .console import ConsoleView
from .lifecycle import LifecycleManager
from .proxy import SpawnProxy, create_spawn_proxy_app
from .registry import BackendRegistry
from .remote import ControlPlane
from .streams import BackendStreamer
from .watcher import FileWatcher

logger = logging.getLogger("devspawn.session")

CTRL_C = "\x03"
KEY_BUILD = "b"
KEY_TERMINATE = "t"


class KeySource(Protocol):
    async def __aenter__(self) -> AsyncIterator[str]: ...

    async def __aexit__(self, *exc_info: Any) -> None: ...


class ProxyLike(Protocol):
    url: str

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class KeyboardInput:
    """Puts the terminal in unbuffered, no-echo mode for the session's lifetime.

    Ctrl-C arrives as a key rather than a signal while active. When stdin is
    not a terminal, SIGINT is translated into the same key instead. The
    previous terminal mode is restored on every exit path.
    """

    def __init__(self, stream: IO[str] | None = None) -> None:
        self._stream = stream or sys.stdin
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._fd: int | None = None
        self._saved_mode: list[Any] | None = None
        self._sigint_installed = False

    def _on_readable(self) -> None:
        if self._fd is None:
            return
        try:
            data = os.read(self._fd, 64)
        except OSError:
            data = b""
        if not data:
            asyncio.get_running_loop().remove_reader(self._fd)
            return
        for key in data.decode("utf-8", errors="ignore"):
            self._queue.put_nowait(key)

    async def __aenter__(self) -> AsyncIterator[str]:
        loop = asyncio.get_running_loop()
        if self._stream.isatty():
            import termios

            fd = self._stream.fileno()
            self._saved_mode = termios.tcgetattr(fd)
            mode = termios.tcgetattr(fd)
            mode[3] &= ~(termios.ICANON | termios.ECHO | termios.ISIG)
            mode[6][termios.VMIN] = 1
            mode[6][termios.VTIME] = 0
            termios.tcsetattr(fd, termios.TCSANOW, mode)
            self._fd = fd
            loop.add_reader(fd, self._on_readable)
        with suppress(NotImplementedError, RuntimeError, ValueError):
            loop.add_signal_handler(signal.SIGINT, self._queue.put_nowait, CTRL_C)
            self._sigint_installed = True
        return self._keys()

    async def __aexit__(self, *exc_info: Any) -> None:
        loop = asyncio.get_running_loop()
        if self._sigint_installed:
            loop.remove_signal_handler(signal.SIGINT)
            self._sigint_installed = False
        if self._fd is not None:
            loop.remove_reader(self._fd)
            if self._saved_mode is not None:
                import termios

                termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved_mode)
            self._fd = None
            self._saved_mode = None

    async def _keys(self) -> AsyncIterator[str]:
        while True:
            yield await self._queue.get()


class DevSession:
    """Wires the image builder, control plane, proxy and console together."""

    def __init__(
        self,
        config: DevSessionConfig,
        *,
        control_plane: ControlPlane,
        builder: ImageBuilder,
        console: ConsoleView | None = None,
        registry: BackendRegistry | None = None,
        keyboard: KeySource | None = None,
        proxy_factory: Callable[[FastAPI], ProxyLike] | None = None,
        watcher: FileWatcher | None = None,
    ) -> None:
        self.config = config
        self.registry = registry or BackendRegistry()
        self.console = console or ConsoleView(self.registry)
        self.streamer = BackendStreamer(control_plane=control_plane, registry=self.registry, console=self.console)
        self.lifecycle = LifecycleManager(
            control_plane=control_plane,
            builder=builder,
            registry=self.registry,
            streamer=self.streamer,
            console=self.console,
            service=config.service,
            dockerfile=config.dockerfile,
        )
        self._keyboard = keyboard
        self._proxy_factory = proxy_factory
        self._watcher = watcher
        self._exit: asyncio.Event | None = None
        self._handlers: set[asyncio.Task[None]] = set()
        self._rebuild_lock = asyncio.Lock()
        self.exit_error: BaseException | None = None

    def request_exit(self, error: BaseException | None = None) -> None:
        if error is not None and self.exit_error is None:
            self.exit_error = error
        if self._exit is not None:
            self._exit.set()

    def _make_proxy(self, app: FastAPI) -> ProxyLike:
        if self._proxy_factory is not None:
            return self._proxy_factory(app)
        return SpawnProxy(app, host=self.config.host, port=self.config.port)

    async def _guard(self, label: str, action: Callable[[], Awaitable[Any]]) -> None:
        try:
            await action()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("%s failed: %s", label, exc, extra={"action": label, "error": repr(exc)})
            self.request_exit(exc)

    def _dispatch(self, label: str, action: Callable[[], Awaitable[Any]]) -> None:
        task = asyncio.create_task(self._guard(label, action), name=label)
        self._handlers.add(task)
        task.add_done_callback(self._handlers.discard)

    def _consume(self, label: str, source: Callable[[], Awaitable[None]]) -> asyncio.Task[None]:
        """Run an event-source consumer; its failure ends the session."""
        return asyncio.create_task(self._guard(label, source), name=label)

    async def rebuild(self) -> None:
        async with self._rebuild_lock:
            await self.lifecycle.rebuild()

    async def _consume_keys(self, keys: AsyncIterator[str]) -> None:
        async for key in keys:
            if key == CTRL_C:
                self.request_exit()
                return
            if key == KEY_BUILD:
                self._dispatch("rebuild", self.rebuild)
            elif key == KEY_TERMINATE:
                self._dispatch("terminate", self.lifecycle.terminate_all)

    async def _consume_changes(self, watcher: FileWatcher) -> None:
        async for changed in watcher.changes():
            logger.debug("Watched files changed", extra={"paths": [str(path) for path in changed]})
            self._dispatch("rebuild", self.rebuild)

    async def run(self) -> None:
        """Run until Ctrl-C, a handler error or a fatal spawn error."""
        self._exit = asyncio.Event()
        self.console.log("Starting dev server...")
        await self.lifecycle.build_and_push()

        app = create_spawn_proxy_app(
            self.lifecycle,
            service=self.config.service,
            account=self.config.account,
            on_fatal=self.request_exit,
        )
        proxy = self._make_proxy(app)
        await proxy.start()
        self.console.update(["", f"Spawn proxy server running on {proxy.url}", ""])

        keyboard = self._keyboard or KeyboardInput()
        async with keyboard as keys:
            consumers = [self._consume("keyboard", partial(self._consume_keys, keys))]
            watcher = self._watcher
            if watcher is None and self.config.watch:
                watcher = FileWatcher(self.config.watch, debounce_ms=self.config.watch_debounce_ms)
            if watcher is not None:
                self.console.update([f"Watching {', '.join(self.config.watch)} for changes...", ""])
                consumers.append(self._consume("file watcher", partial(self._consume_changes, watcher)))
            try:
                await self._exit.wait()
            finally:
                pending = [*consumers, *self._handlers]
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                await proxy.stop()
                await self.lifecycle.shutdown(self.config.shutdown_grace_s)
                self.console.clear()


__all__ = ["CTRL_C", "DevSession", "KeyboardInput"]
