"""Local HTTP proxy that intercepts spawn requests from the app under development."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import socket
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError

from .errors import ControlPlaneError, DevSpawnError, NoImageError, SpawnInconsistencyError, SpawnRefusedError
from .types import SpawnRequestBody

if TYPE_CHECKING:  # pragma: no cover - import for typing only
    from .lifecycle import LifecycleManager

logger = logging.getLogger("devspawn.proxy")

SPAWN_ROUTE = "/user/{req_account}/service/{req_service}/spawn"
_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _parse_body(raw: bytes) -> dict[str, object]:
    """Lenient JSON parsing: anything that is not a JSON object becomes ``{}``."""
    try:
        payload = json.loads(raw) if raw else {}
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return payload if isinstance(payload, dict) else {}


def create_spawn_proxy_app(
    lifecycle: LifecycleManager,
    *,
    service: str,
    account: str,
    on_fatal: Callable[[BaseException], None] | None = None,
) -> FastAPI:
    """Build the proxy app.

    The only route is ``POST /user/{account}/service/{service}/spawn``; the
    account and service must match this session's, otherwise the request is
    rejected with 401 so a misconfigured client cannot spawn elsewhere.
    """
    app = FastAPI(
        title="devspawn spawn proxy",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        redirect_slashes=False,
    )

    @app.api_route(SPAWN_ROUTE, methods=_ALL_METHODS)
    async def _spawn(request: Request, req_account: str, req_service: str) -> Response:
        if request.method != "POST":
            return Response(status_code=404)

        if req_service != service:
            logger.warning(
                "Request for service %s does not match service in config (%s). Blocking spawn.",
                req_service,
                service,
                extra={"requested_service": req_service, "service": service},
            )
            return Response(status_code=401)

        if req_account != account:
            logger.warning(
                "Request for account does not match logged-in account. Blocking spawn.",
                extra={"requested_account": req_account},
            )
            return Response(status_code=401)

        try:
            body = SpawnRequestBody.model_validate(_parse_body(await request.body()))
        except ValidationError as exc:
            return PlainTextResponse(str(exc), status_code=400)

        try:
            result = await lifecycle.spawn(body)
        except SpawnRefusedError as exc:
            return PlainTextResponse(str(exc), status_code=400)
        except (NoImageError, SpawnInconsistencyError) as exc:
            logger.error("Fatal spawn error: %s", exc, extra={"error": repr(exc)})
            if on_fatal is not None:
                on_fatal(exc)
            return PlainTextResponse(str(exc), status_code=500)
        except ControlPlaneError as exc:
            logger.warning("Spawn failed: %s", exc, extra={"status_code": exc.status_code})
            return PlainTextResponse(str(exc), status_code=502)

        return JSONResponse(result.model_dump(mode="json"))

    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the dev session."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:
        return None


class SpawnProxy:
    """Runs the proxy app on a fixed local port for the session's lifetime."""

    def __init__(self, app: FastAPI, *, host: str = "127.0.0.1", port: int = 8080) -> None:
        self.app = app
        self.host = host
        self.port = port
        self._server: _EmbeddedServer | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def url(self) -> str:
        return f"http://{'localhost' if self.host in {'127.0.0.1', '0.0.0.0'} else self.host}:{self.port}"

    def _bind(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as exc:
            sock.close()
            raise DevSpawnError(
                f"Could not listen on {self.host}:{self.port}: {exc.strerror}",
                hint="Is another dev session already running?",
            ) from exc
        sock.set_inheritable(True)
        return sock

    async def start(self) -> None:
        sock = self._bind()
        config = uvicorn.Config(self.app, log_config=None, log_level="warning", access_log=False, lifespan="off")
        self._server = _EmbeddedServer(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]), name="spawn-proxy")
        while not self._server.started:
            if self._task.done():
                self._task.result()
                raise DevSpawnError("Spawn proxy exited during startup")
            await asyncio.sleep(0.05)
        logger.debug("Spawn proxy listening", extra={"url": self.url})

    async def stop(self) -> None:
        """Stop accepting connections and let in-flight requests finish."""
        if self._server is None or self._task is None:
            return
        self._server.should_exit = True
        try:
            await self._task
        finally:
            self._server = None
            self._task = None


__all__ = ["SPAWN_ROUTE", "SpawnProxy", "create_spawn_proxy_app"]
