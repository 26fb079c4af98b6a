"""Control-plane protocol and its HTTP implementation."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from .builder import DockerImageBuilder
from .config import ApiSettings, UserConfig
from .errors import AuthenticationError, ControlPlaneError
from .streams import StreamHandle, open_stream
from .types import BackendStatus, SpawnResult

_STREAM_TIMEOUT = httpx.Timeout(30.0, read=None)


class ControlPlane(Protocol):
    """Minimal remote surface the dev session depends on."""

    async def push(self, service: str, image_id: str) -> None:
        """Make ``image_id`` available to ``service``."""

    async def spawn(
        self,
        service: str,
        *,
        env: Mapping[str, str] | None = None,
        grace_period_seconds: int | None = None,
        port: int | None = None,
        tag: str | None = None,
        require_bearer_token: bool | None = None,
        lock: str | None = None,
    ) -> SpawnResult:
        """Spawn (or, with a held lock, look up) a backend of ``service``."""

    async def terminate(self, name: str) -> None:
        """Request termination of backend ``name``."""

    def stream_status(self, name: str, on_update: Callable[[BackendStatus], None]) -> StreamHandle:
        """Subscribe to status transitions of ``name``."""

    def stream_logs(self, name: str, on_line: Callable[[str], None]) -> StreamHandle:
        """Subscribe to log lines of ``name``."""


def _raise_for_status(response: httpx.Response, *, body: str | None = None) -> None:
    if 200 <= response.status_code < 300:
        return
    detail = None
    if body:
        try:
            payload = json.loads(body)
            if isinstance(payload, Mapping):
                error = payload.get("error")
                if isinstance(error, Mapping):
                    detail = error.get("message")
                else:
                    detail = error or payload.get("detail") or payload.get("message")
        except json.JSONDecodeError:
            detail = body.strip() or None
    detail_text = f": {detail}" if detail else ""
    message = f"Control plane request failed ({response.status_code}){detail_text}"
    if response.status_code in {401, 403}:
        raise AuthenticationError(
            message,
            status_code=response.status_code,
            hint="Run `devspawn login` to refresh your credentials.",
        )
    raise ControlPlaneError(message, status_code=response.status_code)


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """Yield the ``data:`` payload of each server-sent event."""
    data_lines: list[str] = []
    async for line in response.aiter_lines():
        if not line:
            if data_lines:
                yield "\n".join(data_lines)
                data_lines = []
            continue
        if line.startswith("data:"):
            value = line[len("data:") :]
            data_lines.append(value[1:] if value.startswith(" ") else value)
    if data_lines:
        yield "\n".join(data_lines)


def _parse_status(raw: str) -> BackendStatus:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return BackendStatus(state=raw.strip())
    if isinstance(payload, str):
        return BackendStatus(state=payload)
    return BackendStatus.model_validate(payload)


async def check_auth(settings: ApiSettings, token: str, *, client: httpx.AsyncClient | None = None) -> str:
    """Return the account ``token`` authenticates as."""
    url = f"{settings.api_base}/auth"
    headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
    try:
        if client is not None:
            response = await client.get(url, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=30.0) as owned:
                response = await owned.get(url, headers=headers)
    except httpx.HTTPError as exc:
        raise ControlPlaneError(f"Could not reach control plane: {exc}") from exc
    _raise_for_status(response, body=response.text)
    payload = response.json()
    if not isinstance(payload, Mapping) or "account" not in payload:
        raise ControlPlaneError("Unexpected response from the auth endpoint")
    return str(payload["account"])


@dataclass(slots=True)
class HttpControlPlane:
    """``ControlPlane`` backed by the hosted HTTP API and the docker CLI."""

    credentials: UserConfig
    settings: ApiSettings = field(default_factory=ApiSettings)
    builder: DockerImageBuilder = field(default_factory=DockerImageBuilder)
    timeout_s: float | None = 30.0
    client: httpx.AsyncClient | None = None
    _registry_logged_in: bool = field(default=False, init=False)

    @property
    def account(self) -> str:
        return self.credentials.account

    @asynccontextmanager
    async def _client_context(self, timeout: float | httpx.Timeout | None):
        if self.client is not None:
            yield self.client
            return
        async with httpx.AsyncClient(timeout=timeout) as client:
            yield client

    def _headers(self, token: str | None = None) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token or self.credentials.token}",
            "Accept": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.settings.api_base}{path}"

    async def _request(self, method: str, path: str, *, json_body: Any = None, token: str | None = None) -> Any:
        try:
            async with self._client_context(self.timeout_s) as client:
                response = await client.request(method, self._url(path), json=json_body, headers=self._headers(token))
        except httpx.HTTPError as exc:
            raise ControlPlaneError(f"Could not reach control plane: {exc}") from exc
        _raise_for_status(response, body=response.text)
        if not response.content:
            return None
        return response.json()

    async def check_auth(self, token: str | None = None) -> str:
        """Return the account that ``token`` authenticates as."""
        return await check_auth(self.settings, token or self.credentials.token, client=self.client)

    async def service_create(self, name: str) -> None:
        await self._request("POST", f"/user/{self.account}/service", json_body={"name": name})

    async def push(self, service: str, image_id: str) -> None:
        repository = f"{self.settings.registry_host}/{self.account}/{service}"
        if not self._registry_logged_in:
            await asyncio.to_thread(
                self.builder.login, self.settings.registry_host, self.account, self.credentials.token
            )
            self._registry_logged_in = True
        await asyncio.to_thread(self.builder.push, image_id, repository)

    async def spawn(
        self,
        service: str,
        *,
        env: Mapping[str, str] | None = None,
        grace_period_seconds: int | None = None,
        port: int | None = None,
        tag: str | None = None,
        require_bearer_token: bool | None = None,
        lock: str | None = None,
    ) -> SpawnResult:
        body = {
            "env": dict(env) if env is not None else None,
            "grace_period_seconds": grace_period_seconds,
            "port": port,
            "tag": tag,
            "require_bearer_token": require_bearer_token,
            "lock": lock,
        }
        payload = await self._request(
            "POST",
            f"/user/{self.account}/service/{service}/spawn",
            json_body={key: value for key, value in body.items() if value is not None},
        )
        return SpawnResult.model_validate(payload)

    async def terminate(self, name: str) -> None:
        await self._request("POST", f"/backend/{name}/terminate")

    async def _stream_events(self, path: str) -> AsyncIterator[str]:
        async with self._client_context(_STREAM_TIMEOUT) as client:
            async with client.stream("GET", self._url(path), headers=self._headers()) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    _raise_for_status(response, body=body.decode("utf-8", errors="replace"))
                async for data in iter_sse_data(response):
                    yield data

    async def _status_events(self, name: str) -> AsyncIterator[BackendStatus]:
        async for data in self._stream_events(f"/backend/{name}/status/stream"):
            yield _parse_status(data)

    def stream_status(self, name: str, on_update: Callable[[BackendStatus], None]) -> StreamHandle:
        return open_stream(self._status_events(name), on_update, label=f"status:{name}")

    def stream_logs(self, name: str, on_line: Callable[[str], None]) -> StreamHandle:
        return open_stream(self._stream_events(f"/backend/{name}/logs"), on_line, label=f"logs:{name}")


__all__ = ["ControlPlane", "HttpControlPlane", "check_auth", "iter_sse_data"]
