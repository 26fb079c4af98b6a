"""Implementation of ``devspawn dev``."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from ..config import ApiSettings, DevSessionConfig, read_user_config
from ..console import ConsoleLogHandler, ConsoleView
from ..errors import ConfigError, DevSpawnError
from ..registry import BackendRegistry
from ..remote import HttpControlPlane
from ..session import DevSession


@dataclass(slots=True)
class DevResult:
    url: str
    error: BaseException | None = None


def configure_logging(console: ConsoleView, *, verbose: bool = False) -> ConsoleLogHandler:
    """Send log records through the console so they don't tear the footer."""
    handler = ConsoleLogHandler(console, level=logging.DEBUG if verbose else logging.WARNING)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing, ConsoleLogHandler):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.WARNING)
    logging.getLogger("devspawn").setLevel(logging.DEBUG if verbose else logging.INFO)
    return handler


def build_session(config: DevSessionConfig, *, control_plane: HttpControlPlane, verbose: bool = False) -> DevSession:
    registry = BackendRegistry()
    console = ConsoleView(registry)
    configure_logging(console, verbose=verbose)
    builder = control_plane.builder
    return DevSession(config, control_plane=control_plane, builder=builder, console=console, registry=registry)


def run_dev(
    *,
    dockerfile: str,
    service: str,
    watch: tuple[str, ...] | list[str] = (),
    host: str = "127.0.0.1",
    port: int = 8080,
    verbose: bool = False,
) -> DevResult:
    credentials = read_user_config()
    if credentials is None:
        raise ConfigError("You are not logged in.", hint="Run `devspawn login` first.")
    if not Path(dockerfile).is_file():
        raise DevSpawnError(f"Dockerfile not found: {dockerfile}", hint="Pass the path with --dockerfile.")

    config = DevSessionConfig(
        dockerfile=dockerfile,
        service=service,
        account=credentials.account,
        watch=list(watch),
        host=host,
        port=port,
    )
    control_plane = HttpControlPlane(credentials=credentials, settings=ApiSettings.from_environment())
    session = build_session(config, control_plane=control_plane, verbose=verbose)
    asyncio.run(session.run())
    return DevResult(url=f"http://localhost:{port}", error=session.exit_error)


__all__ = ["DevResult", "build_session", "configure_logging", "run_dev"]
