from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from devspawn.builder import DockerImageBuilder
from devspawn.config import ApiSettings, UserConfig
from devspawn.errors import AuthenticationError, ControlPlaneError
from devspawn.remote import HttpControlPlane, check_auth, iter_sse_data
from devspawn.types import BackendStatus
from tests.fakes import FakeDockerClient

API = "https://api.test"
SETTINGS = ApiSettings(api_base=API, registry_host="registry.test", app_base="https://app.test")
CREDENTIALS = UserConfig(account="acme", token="pub.secret")


def _control_plane(handler, **kwargs) -> HttpControlPlane:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpControlPlane(credentials=CREDENTIALS, settings=SETTINGS, client=client, **kwargs)


@pytest.mark.asyncio
async def test_spawn_posts_only_supplied_fields() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"name": "b-1", "spawned": True, "status_url": "https://x/status"})

    control_plane = _control_plane(handler)
    result = await control_plane.spawn("my-service", lock="L", env={"A": "1"})

    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == f"{API}/user/acme/service/my-service/spawn"
    assert request.headers["Authorization"] == "Bearer pub.secret"
    assert json.loads(request.content) == {"lock": "L", "env": {"A": "1"}}
    assert result.name == "b-1"
    assert result.spawned is True
    assert result.model_extra == {"status_url": "https://x/status"}


@pytest.mark.asyncio
async def test_unauthorized_response_raises_authentication_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "bad token"}})

    with pytest.raises(AuthenticationError) as exc_info:
        await _control_plane(handler).spawn("my-service")

    assert exc_info.value.status_code == 401
    assert "bad token" in str(exc_info.value)
    assert exc_info.value.hint is not None


@pytest.mark.asyncio
async def test_server_error_raises_control_plane_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="maintenance")

    with pytest.raises(ControlPlaneError) as exc_info:
        await _control_plane(handler).terminate("b-1")

    assert not isinstance(exc_info.value, AuthenticationError)
    assert exc_info.value.status_code == 503
    assert "maintenance" in str(exc_info.value)


@pytest.mark.asyncio
async def test_transport_failure_raises_control_plane_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ControlPlaneError, match="Could not reach control plane"):
        await _control_plane(handler).spawn("my-service")


@pytest.mark.asyncio
async def test_terminate_and_service_create_paths() -> None:
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        return httpx.Response(200)

    control_plane = _control_plane(handler)
    await control_plane.terminate("b-1")
    await control_plane.service_create("new-service")

    assert seen == [("POST", "/backend/b-1/terminate"), ("POST", "/user/acme/service")]


@pytest.mark.asyncio
async def test_check_auth_returns_account() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/auth"
        assert request.headers["Authorization"] == "Bearer other.token"
        return httpx.Response(200, json={"account": "acme"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        assert await check_auth(SETTINGS, "other.token", client=client) == "acme"


@pytest.mark.asyncio
async def test_check_auth_rejects_unexpected_payload() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "ok"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ControlPlaneError):
            await check_auth(SETTINGS, "a.b", client=client)


@pytest.mark.asyncio
async def test_status_stream_parses_server_sent_events() -> None:
    body = (
        'data: {"state": "Loading", "time": "2024-01-01T00:00:00Z"}\n\n'
        ": keep-alive\n\n"
        'data: {"state": "Ready"}\n\n'
        "data: Terminated\n\n"
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/backend/b-1/status/stream"
        return httpx.Response(200, content=body.encode(), headers={"content-type": "text/event-stream"})

    updates: list[BackendStatus] = []
    handle = _control_plane(handler).stream_status("b-1", updates.append)
    await asyncio.wait_for(handle.wait_closed(), timeout=2)

    assert [update.state for update in updates] == ["Loading", "Ready", "Terminated"]
    assert updates[0].time == "2024-01-01T00:00:00Z"


@pytest.mark.asyncio
async def test_log_stream_yields_lines() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/backend/b-1/logs"
        return httpx.Response(200, content=b"data: hello\n\ndata: world\n\n")

    lines: list[str] = []
    handle = _control_plane(handler).stream_logs("b-1", lines.append)
    await asyncio.wait_for(handle.wait_closed(), timeout=2)

    assert lines == ["hello", "world"]


@pytest.mark.asyncio
async def test_failed_stream_closes_handle() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"detail": "no such backend"})

    lines: list[str] = []
    handle = _control_plane(handler).stream_logs("ghost", lines.append)
    await asyncio.wait_for(handle.wait_closed(), timeout=2)

    assert handle.closed is True
    assert lines == []


@pytest.mark.asyncio
async def test_iter_sse_data_joins_multiline_events() -> None:
    response = httpx.Response(200, content=b"event: log\ndata: one\ndata: two\n\ndata:three")

    events = [event async for event in iter_sse_data(response)]

    assert events == ["one\ntwo", "three"]


@pytest.mark.asyncio
async def test_push_logs_in_once_then_tags_and_pushes() -> None:
    docker_client = FakeDockerClient()
    control_plane = _control_plane(
        lambda request: httpx.Response(200), builder=DockerImageBuilder(client=docker_client)
    )

    await control_plane.push("my-service", "abc123")
    await control_plane.push("my-service", "def456")

    repository = "registry.test/acme/my-service"
    auth = {"username": "acme", "password": "pub.secret"}
    assert docker_client.calls == [
        ("login", {"username": "acme", "password": "pub.secret", "registry": "registry.test"}),
        ("get", "abc123"),
        ("tag", "abc123", repository),
        ("push", repository, auth),
        ("get", "def456"),
        ("tag", "def456", repository),
        ("push", repository, auth),
    ]
