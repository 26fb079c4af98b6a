"""Docker image build and push helpers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import docker
from docker.errors import APIError, BuildError, DockerException, ImageNotFound

from .errors import ImageBuildError

logger = logging.getLogger("devspawn.builder")


class ImageBuilder(Protocol):
    def build(self, dockerfile: str) -> str:
        """Build ``dockerfile`` and return the resulting image id."""


def _log_stream(chunks: Any) -> None:
    for chunk in chunks or ():
        if isinstance(chunk, dict) and "stream" in chunk:
            line = str(chunk["stream"]).strip()
            if line:
                logger.debug("  %s", line)


@dataclass(slots=True)
class DockerImageBuilder:
    """Builds, tags and pushes images through the Docker Engine API."""

    context: Path | None = None
    platform: str | None = "linux/amd64"
    client: Any = None
    _auth_config: dict[str, str] | None = field(default=None, init=False)

    def _docker(self) -> Any:
        if self.client is None:
            try:
                self.client = docker.from_env()
            except DockerException as exc:
                raise ImageBuildError(
                    f"Could not connect to Docker: {exc}",
                    hint="Is Docker installed and running?",
                ) from exc
        return self.client

    def build(self, dockerfile: str) -> str:
        path = Path(dockerfile)
        if not path.is_file():
            raise ImageBuildError(f"Dockerfile not found: {dockerfile}")
        context = (self.context or path.resolve().parent).resolve()

        logger.debug("Building image", extra={"dockerfile": str(path), "context": str(context)})
        try:
            image, logs = self._docker().images.build(
                path=str(context),
                dockerfile=str(path.resolve()),
                platform=self.platform,
                rm=True,
            )
        except BuildError as exc:
            _log_stream(exc.build_log)
            raise ImageBuildError(f"docker build failed: {exc.msg}") from exc
        except APIError as exc:
            raise ImageBuildError(f"docker build failed: {exc.explanation or exc}") from exc
        _log_stream(logs)

        if not image.id:
            raise ImageBuildError("docker build did not report an image id")
        return image.id.removeprefix("sha256:")

    def login(self, registry: str, username: str, token: str) -> None:
        try:
            self._docker().login(username=username, password=token, registry=registry)
        except APIError as exc:
            raise ImageBuildError(
                f"Could not log in to registry {registry}: {exc.explanation or exc}",
                hint="Run `devspawn login` to refresh your credentials.",
            ) from exc
        self._auth_config = {"username": username, "password": token}

    def push(self, image_id: str, repository: str) -> None:
        """Tag ``image_id`` as ``repository`` and push it."""
        client = self._docker()
        try:
            client.images.get(image_id).tag(repository)
            chunks = client.images.push(repository, stream=True, decode=True, auth_config=self._auth_config)
            for chunk in chunks:
                if isinstance(chunk, dict) and chunk.get("error"):
                    raise ImageBuildError(f"docker push failed: {chunk['error']}")
        except ImageNotFound as exc:
            raise ImageBuildError(f"Image {image_id} not found in the local Docker engine") from exc
        except APIError as exc:
            raise ImageBuildError(f"docker push failed: {exc.explanation or exc}") from exc


__all__ = ["DockerImageBuilder", "ImageBuilder"]
