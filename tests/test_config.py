"""Tests for config.py - settings loading, credentials and grant persistence."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
import tomlkit

from matrix_commands.config import (
    DEFAULT_MISSING_PERMISSIONS,
    ConfigError,
    load_settings,
    parse_settings,
    persist_permission,
    resolve_credentials,
)

BASE = {
    "matrix": {
        "homeserver": "https://matrix.example.org/",
        "user_id": "@bot:example.org",
        "access_token": "cfg-token",
    }
}


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "MATRIX_ACCESS_TOKEN",
        "matrix_access_token",
        "MATRIX_DEVICE_ID",
        "matrix_device_id",
    ):
        monkeypatch.delenv(name, raising=False)


def _with(**tables) -> dict:
    data = {"matrix": dict(BASE["matrix"])}
    for name, table in tables.items():
        if name == "matrix":
            data["matrix"].update(table)
        else:
            data[name] = table
    return data


# --- parse_settings tests ---


def test_parse_minimal_settings() -> None:
    settings = parse_settings(BASE)

    assert settings.matrix.homeserver == "https://matrix.example.org"
    assert settings.matrix.user_id == "@bot:example.org"
    assert settings.matrix.access_token == "cfg-token"
    assert settings.matrix.device_id == ""
    assert settings.matrix.mention_tag is None
    assert settings.matrix.auto_join is True
    assert settings.commands.missing_permissions == DEFAULT_MISSING_PERMISSIONS
    assert settings.commands.reply_as_notice is False
    assert settings.permissions == {}
    assert settings.log_level == "info"


@pytest.mark.parametrize("key", ["homeserver", "user_id", "access_token"])
def test_parse_missing_required_key(key: str) -> None:
    data = _with()
    del data["matrix"][key]

    with pytest.raises(ConfigError):
        parse_settings(data)


def test_env_overrides_token_and_device(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MATRIX_ACCESS_TOKEN", "env-token")
    monkeypatch.setenv("MATRIX_DEVICE_ID", "ENVDEVICE")

    settings = parse_settings(_with(matrix={"device_id": "CFGDEVICE"}))

    assert settings.matrix.access_token == "env-token"
    assert settings.matrix.device_id == "ENVDEVICE"


def test_env_token_satisfies_missing_config_token(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("matrix_access_token", "env-token")
    data = _with()
    del data["matrix"]["access_token"]

    assert parse_settings(data).matrix.access_token == "env-token"


def test_empty_missing_permissions_disables_notice() -> None:
    settings = parse_settings(_with(commands={"missing_permissions": ""}))

    assert settings.commands.missing_permissions is None


def test_custom_missing_permissions_and_notice_replies() -> None:
    settings = parse_settings(
        _with(commands={"missing_permissions": "nope", "reply_as_notice": True})
    )

    assert settings.commands.missing_permissions == "nope"
    assert settings.commands.reply_as_notice is True


def test_permissions_table() -> None:
    settings = parse_settings(
        _with(permissions={"@alice:example.org": ["admin", " music.* "], "@bob:x": "ops"})
    )

    assert settings.permissions == {
        "@alice:example.org": ("admin", "music.*"),
        "@bob:x": ("ops",),
    }


@pytest.mark.parametrize(
    "tables",
    [
        {"permissions": {"@alice:example.org": [1, 2]}},
        {"permissions": ["admin"]},
        {"commands": "nope"},
        {"commands": {"missing_permissions": 3}},
        {"matrix": {"sync_timeout_ms": 0}},
        {"logging": {"level": "loud"}},
    ],
)
def test_invalid_values_raise(tables: dict) -> None:
    with pytest.raises(ConfigError):
        parse_settings(_with(**tables))


def test_load_settings_reads_file(tmp_path: Path) -> None:
    config_path = tmp_path / "bot.toml"
    config_path.write_text(
        "[matrix]\n"
        'homeserver = "https://hs.example.org"\n'
        'user_id = "@bot:example.org"\n'
        'access_token = "tok"\n'
        'mention_tag = "Bot:"\n'
        "[logging]\n"
        'level = "DEBUG"\n'
    )

    settings = load_settings(config_path)

    assert settings.config_path == config_path
    assert settings.matrix.mention_tag == "Bot:"
    assert settings.log_level == "debug"


def test_load_settings_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "missing.toml")


def test_load_settings_invalid_toml(tmp_path: Path) -> None:
    config_path = tmp_path / "bot.toml"
    config_path.write_text("[matrix\n")

    with pytest.raises(ConfigError):
        load_settings(config_path)


# --- resolve_credentials tests ---


def test_resolve_credentials_fills_device_id() -> None:
    settings = parse_settings(BASE)
    who = {"user_id": "@bot:example.org", "device_id": "WHODEVICE"}

    with patch("matrix_commands.config._whoami", return_value=who) as whoami:
        resolved = resolve_credentials(settings)

    whoami.assert_called_once_with("https://matrix.example.org", "cfg-token")
    assert resolved.matrix.device_id == "WHODEVICE"


def test_resolve_credentials_prefers_whoami_device() -> None:
    settings = parse_settings(_with(matrix={"device_id": "STALE"}))
    who = {"user_id": "@bot:example.org", "device_id": "CURRENT"}

    with patch("matrix_commands.config._whoami", return_value=who):
        resolved = resolve_credentials(settings)

    assert resolved.matrix.device_id == "CURRENT"


def test_resolve_credentials_user_mismatch() -> None:
    settings = parse_settings(BASE)
    who = {"user_id": "@other:example.org", "device_id": "D"}

    with patch("matrix_commands.config._whoami", return_value=who):
        with pytest.raises(ConfigError):
            resolve_credentials(settings)


def test_resolve_credentials_without_device() -> None:
    settings = parse_settings(BASE)

    with patch("matrix_commands.config._whoami", return_value={}):
        with pytest.raises(ConfigError):
            resolve_credentials(settings)


# --- persist_permission tests ---


@pytest.mark.anyio
async def test_persist_permission_none_path() -> None:
    """persist_permission returns early if config_path is None."""
    await persist_permission(None, "@alice:example.org", "admin")


@pytest.mark.anyio
async def test_persist_permission_creates_table(tmp_path: Path) -> None:
    config_path = tmp_path / "bot.toml"
    config_path.write_text('# bot config\n[matrix]\nuser_id = "@bot:example.org"\n')

    await persist_permission(config_path, "@alice:example.org", "admin")

    text = config_path.read_text()
    assert text.startswith("# bot config\n")
    config = tomlkit.parse(text)
    assert list(config["permissions"]["@alice:example.org"]) == ["admin"]  # type: ignore


@pytest.mark.anyio
async def test_persist_permission_appends(tmp_path: Path) -> None:
    config_path = tmp_path / "bot.toml"
    config_path.write_text(
        '[permissions]\n"@alice:example.org" = ["admin"]\n"@bob:example.org" = "ops"\n'
    )

    await persist_permission(config_path, "@alice:example.org", "music.*")
    await persist_permission(config_path, "@alice:example.org", "admin")
    await persist_permission(config_path, "@bob:example.org", "deploy")

    config = tomlkit.parse(config_path.read_text())
    assert list(config["permissions"]["@alice:example.org"]) == ["admin", "music.*"]  # type: ignore
    assert list(config["permissions"]["@bob:example.org"]) == ["ops", "deploy"]  # type: ignore


@pytest.mark.anyio
async def test_persist_permission_exception_handling(tmp_path: Path) -> None:
    """persist_permission logs instead of raising."""
    config_path = tmp_path / "nonexistent" / "bot.toml"

    await persist_permission(config_path, "@alice:example.org", "admin")

    assert not config_path.exists()
