"""Configuration models and the stored-credentials file."""

from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError

DEFAULT_PROXY_PORT = 8080
DEFAULT_API_BASE = "https://api.jamsocket.com"
DEFAULT_REGISTRY_HOST = "registry.jamsocket.com"
DEFAULT_APP_BASE = "https://app.jamsocket.com"
CONFIG_DIR_ENV = "DEVSPAWN_CONFIG_DIR"
CONFIG_FILENAME = "config.json"


class DevSessionConfig(BaseModel):
    """Options for one ``devspawn dev`` session."""

    dockerfile: str
    service: str = Field(..., min_length=1)
    account: str = Field(..., min_length=1)
    watch: list[str] = Field(default_factory=list)
    host: str = "127.0.0.1"
    port: int = Field(default=DEFAULT_PROXY_PORT, ge=1, le=65535)
    shutdown_grace_s: float | None = Field(
        default=10.0,
        description="How long shutdown waits for terminal statuses before force-closing streams.",
    )
    watch_debounce_ms: int = Field(default=1600, gt=0)


class UserConfig(BaseModel):
    """Credentials persisted by ``devspawn login``."""

    account: str
    token: str

    @field_validator("token")
    @classmethod
    def _token_has_public_portion(cls, value: str) -> str:
        if "." not in value:
            raise ValueError("Token must contain a period.")
        return value


class ApiSettings(BaseModel):
    api_base: str = DEFAULT_API_BASE
    registry_host: str = DEFAULT_REGISTRY_HOST
    app_base: str = DEFAULT_APP_BASE

    @classmethod
    def from_environment(cls) -> ApiSettings:
        return cls(
            api_base=os.environ.get("DEVSPAWN_API", DEFAULT_API_BASE).rstrip("/"),
            registry_host=os.environ.get("DEVSPAWN_REGISTRY", DEFAULT_REGISTRY_HOST),
            app_base=os.environ.get("DEVSPAWN_APP", DEFAULT_APP_BASE).rstrip("/"),
        )

    def login_url(self) -> str:
        return f"{self.app_base}/settings"


def config_dir() -> Path:
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override)
    return Path.home() / ".devspawn"


def config_path() -> Path:
    return config_dir() / CONFIG_FILENAME


def read_user_config(path: Path | None = None) -> UserConfig | None:
    path = path or config_path()
    if not path.exists():
        return None
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        return UserConfig.model_validate(payload)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ConfigError(
            f"Stored configuration at {path} is invalid",
            hint="Run `devspawn logout` and log in again.",
        ) from exc


def write_user_config(config: UserConfig, path: Path | None = None) -> Path:
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.model_dump(), indent=2) + "\n", encoding="utf-8")
    path.chmod(0o600)
    return path


def delete_user_config(path: Path | None = None) -> bool:
    path = path or config_path()
    if not path.exists():
        return False
    path.unlink()
    return True


def token_public_portion(token: str) -> str:
    return token.split(".", 1)[0]


__all__ = [
    "ApiSettings",
    "DEFAULT_PROXY_PORT",
    "DevSessionConfig",
    "UserConfig",
    "config_dir",
    "config_path",
    "delete_user_config",
    "read_user_config",
    "token_public_portion",
    "write_user_config",
]
