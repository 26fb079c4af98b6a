import io
import sys
from pathlib import Path

import pytest

# Ensure repository root is on sys.path so tests can import the shared fakes.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from devspawn.console import ConsoleView  # noqa: E402
from devspawn.lifecycle import LifecycleManager  # noqa: E402
from devspawn.registry import BackendRegistry  # noqa: E402
from devspawn.streams import BackendStreamer  # noqa: E402
from tests.fakes import FakeBuilder, FakeControlPlane  # noqa: E402


@pytest.fixture
def control_plane() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture
def builder() -> FakeBuilder:
    return FakeBuilder("img-1", "img-2", "img-3")


@pytest.fixture
def registry() -> BackendRegistry:
    return BackendRegistry()


@pytest.fixture
def output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def console(registry: BackendRegistry, output: io.StringIO) -> ConsoleView:
    return ConsoleView(registry, file=output, color=False)


@pytest.fixture
def streamer(control_plane: FakeControlPlane, registry: BackendRegistry, console: ConsoleView) -> BackendStreamer:
    return BackendStreamer(control_plane=control_plane, registry=registry, console=console)


@pytest.fixture
def lifecycle(
    control_plane: FakeControlPlane,
    builder: FakeBuilder,
    registry: BackendRegistry,
    streamer: BackendStreamer,
    console: ConsoleView,
) -> LifecycleManager:
    return LifecycleManager(
        control_plane=control_plane,
        builder=builder,
        registry=registry,
        streamer=streamer,
        console=console,
        service="my-service",
        dockerfile="Dockerfile",
    )
