"""devspawn command-line interface."""

from __future__ import annotations

import asyncio
import sys

import click

from ..config import (
    ApiSettings,
    UserConfig,
    delete_user_config,
    read_user_config,
    token_public_portion,
    write_user_config,
)
from ..errors import AuthenticationError, DevSpawnError
from ..remote import HttpControlPlane, check_auth
from .dev import run_dev


def _fail(error: DevSpawnError) -> None:
    click.echo(f"✗ {error.message}", err=True)
    if error.hint:
        click.echo(f"  Hint: {error.hint}", err=True)
    sys.exit(1)


def _require_login() -> UserConfig:
    config = read_user_config()
    if config is None:
        raise DevSpawnError("You are not logged in.", hint="Run `devspawn login` first.")
    return config


@click.group()
@click.version_option()
def app() -> None:
    """devspawn CLI - iterate on session backends against the hosted control plane."""


@app.command()
@click.argument("token", required=False)
def login(token: str | None) -> None:
    """Authenticate with an API token."""
    settings = ApiSettings.from_environment()
    try:
        existing = read_user_config()
        if existing is not None:
            try:
                asyncio.run(check_auth(settings, existing.token))
            except AuthenticationError:
                delete_user_config()
            else:
                click.echo(
                    f'You are already logged into account "{existing.account}" with the token '
                    f'"{token_public_portion(existing.token)}.********". '
                    "To log into a different account, run devspawn logout first."
                )
                return

        token = (token or "").strip()
        if not token:
            click.echo("Generate an API token at the following URL and paste it into the prompt below:\n")
            click.echo(f"    {settings.login_url()}\n")
            token = click.prompt("token", hide_input=True).strip()
        if not token:
            raise DevSpawnError("Token required to login.")
        if "." not in token:
            raise DevSpawnError("Invalid token. Token must contain a period.")

        account = asyncio.run(check_auth(settings, token))
        write_user_config(UserConfig(account=account, token=token))
    except DevSpawnError as e:
        _fail(e)
        return
    click.echo(f'Logged in as "{account}"')


@app.command()
def logout() -> None:
    """Forget stored credentials."""
    try:
        removed = delete_user_config()
    except OSError as e:
        _fail(DevSpawnError(f"Could not remove stored credentials: {e}"))
        return
    click.echo("Logged out." if removed else "Not logged in.")


@app.group()
def service() -> None:
    """Manage services."""


@service.command("create")
@click.argument("name")
def service_create(name: str) -> None:
    """Create a service."""
    try:
        credentials = _require_login()
        control_plane = HttpControlPlane(credentials=credentials, settings=ApiSettings.from_environment())
        asyncio.run(control_plane.service_create(name))
    except DevSpawnError as e:
        _fail(e)
        return
    click.echo(f"Created service: {name}")


@app.command()
@click.option(
    "--dockerfile",
    "-d",
    required=True,
    type=click.Path(dir_okay=False, path_type=str),
    help="Dockerfile of the session backend to build and push.",
)
@click.option("--service", "-s", required=True, help="Service to push images to and spawn backends of.")
@click.option(
    "--watch",
    "-w",
    multiple=True,
    help="File or directory to watch; changes trigger a rebuild. Repeatable.",
)
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface the spawn proxy binds to.")
@click.option("--port", default=8080, show_default=True, type=int, help="Port the spawn proxy listens on.")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs in the console.")
def dev(dockerfile: str, service: str, watch: tuple[str, ...], host: str, port: int, verbose: bool) -> None:
    """Run a development session with a local spawn proxy."""
    try:
        result = run_dev(
            dockerfile=dockerfile,
            service=service,
            watch=watch,
            host=host,
            port=port,
            verbose=verbose,
        )
    except DevSpawnError as e:
        _fail(e)
        return
    except KeyboardInterrupt:
        click.echo("Interrupted.", err=True)
        sys.exit(130)
    if result is not None and result.error is not None:
        click.echo(f"✗ Dev session stopped after an error: {result.error}", err=True)
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
