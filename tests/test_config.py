from __future__ import annotations

import json
import stat

import pytest
from pydantic import ValidationError

from devspawn.config import (
    ApiSettings,
    DevSessionConfig,
    UserConfig,
    config_path,
    delete_user_config,
    read_user_config,
    token_public_portion,
    write_user_config,
)
from devspawn.errors import ConfigError


@pytest.fixture(autouse=True)
def _config_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("DEVSPAWN_CONFIG_DIR", str(tmp_path / "cfg"))


def test_config_path_honours_override(tmp_path) -> None:
    assert config_path() == tmp_path / "cfg" / "config.json"


def test_user_config_roundtrip_is_private() -> None:
    path = write_user_config(UserConfig(account="acme", token="pub.secret"))

    assert read_user_config() == UserConfig(account="acme", token="pub.secret")
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert json.loads(path.read_text()) == {"account": "acme", "token": "pub.secret"}


def test_read_missing_config_returns_none() -> None:
    assert read_user_config() is None


def test_read_invalid_config_raises_config_error() -> None:
    path = config_path()
    path.parent.mkdir(parents=True)
    path.write_text('{"account": "acme", "token": "no-period"}')

    with pytest.raises(ConfigError) as exc_info:
        read_user_config()
    assert "logout" in exc_info.value.hint


def test_delete_user_config_reports_whether_anything_was_removed() -> None:
    assert delete_user_config() is False
    write_user_config(UserConfig(account="acme", token="a.b"))
    assert delete_user_config() is True
    assert read_user_config() is None


def test_token_must_contain_period() -> None:
    with pytest.raises(ValidationError):
        UserConfig(account="acme", token="nopublicportion")
    assert token_public_portion("pub.secret.more") == "pub"


def test_api_settings_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("DEVSPAWN_API", "http://localhost:9090/")
    monkeypatch.setenv("DEVSPAWN_REGISTRY", "localhost:5000")
    monkeypatch.delenv("DEVSPAWN_APP", raising=False)

    settings = ApiSettings.from_environment()

    assert settings.api_base == "http://localhost:9090"
    assert settings.registry_host == "localhost:5000"
    assert settings.login_url() == "https://app.jamsocket.com/settings"


def test_dev_session_config_defaults_and_validation() -> None:
    config = DevSessionConfig(dockerfile="Dockerfile", service="svc", account="acme")
    assert config.port == 8080
    assert config.watch == []
    assert config.shutdown_grace_s == 10.0

    with pytest.raises(ValidationError):
        DevSessionConfig(dockerfile="Dockerfile", service="", account="acme")
    with pytest.raises(ValidationError):
        DevSessionConfig(dockerfile="Dockerfile", service="svc", account="acme", port=70000)
