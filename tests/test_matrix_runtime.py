"""Tests for runtime.py - startup sequence, handler wiring and main loop."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import nio
import pytest

from matrix_fixtures import BOT_ID, FakeClient, make_message
from matrix_commands.commands import command
from matrix_commands.config import parse_settings
from matrix_commands.runtime import (
    _auto_join,
    _startup_sequence,
    create_handler,
    run,
    run_bot,
)


def _settings(**matrix):
    data = {
        "matrix": {
            "homeserver": "https://matrix.example.org",
            "user_id": BOT_ID,
            "access_token": "tok",
            "device_id": "DEVICE",
            **matrix,
        },
        "commands": {"missing_permissions": "denied", "reply_as_notice": True},
        "permissions": {"@alice:example.org": ["admin"]},
    }
    return parse_settings(data)


class _Admin:
    @command("shutdown", required_permission="admin")
    def on_shutdown(self) -> str:
        return "bye"


# --- _startup_sequence tests ---


@pytest.mark.anyio
async def test_startup_sequence_success() -> None:
    client = FakeClient()

    result = await _startup_sequence(client, _settings(sync_timeout_ms=5000))  # type: ignore[arg-type]

    assert result is True
    assert client.sync_calls == [{"timeout": 5000, "full_state": True}]


@pytest.mark.anyio
async def test_startup_sequence_sync_fails() -> None:
    client = FakeClient()
    client.sync_response = nio.SyncError("unknown token")

    result = await _startup_sequence(client, _settings())  # type: ignore[arg-type]

    assert result is False


# --- create_handler tests ---


@pytest.mark.anyio
async def test_create_handler_applies_settings() -> None:
    client = FakeClient()
    handler = create_handler(client, _settings(mention_tag="Bot:"))  # type: ignore[arg-type]
    handler.register_command(_Admin())

    assert handler.mention_tag == "Bot:"
    assert handler.missing_permissions_notice == "denied"
    assert handler.registry.lookup("help") is not None
    assert handler.registry.lookup("grant") is not None

    await handler.handle_message(make_message("shutdown", sender="@bob:example.org"))
    await handler.handle_message(make_message("shutdown", sender="@alice:example.org"))

    assert client.replies == ["denied", "bye"]
    assert all(call["content"]["msgtype"] == "m.notice" for call in client.sent)


# --- _auto_join tests ---


@pytest.mark.anyio
async def test_auto_join_accepts_own_invite() -> None:
    client = FakeClient()
    room = SimpleNamespace(room_id="!invited:example.org")
    event = SimpleNamespace(
        state_key=BOT_ID, membership="invite", sender="@alice:example.org"
    )

    await _auto_join(client)(room, event)  # type: ignore[arg-type]

    assert client.joined == ["!invited:example.org"]


@pytest.mark.anyio
async def test_auto_join_ignores_other_members() -> None:
    client = FakeClient()
    room = SimpleNamespace(room_id="!invited:example.org")
    event = SimpleNamespace(
        state_key="@carol:example.org", membership="invite", sender="@alice:example.org"
    )

    await _auto_join(client)(room, event)  # type: ignore[arg-type]

    assert client.joined == []


# --- run_bot tests ---


@pytest.mark.anyio
async def test_run_bot_registers_callbacks_after_initial_sync() -> None:
    client = FakeClient()

    result = await run_bot(_settings(), [_Admin()], client=client)  # type: ignore[arg-type]

    assert result == 0
    assert client.closed is True
    assert len(client.sync_calls) == 1
    filters = [event_filter for _, event_filter in client.callbacks]
    assert filters == [nio.RoomMessageText, nio.InviteMemberEvent]


@pytest.mark.anyio
async def test_run_bot_without_auto_join() -> None:
    client = FakeClient()

    await run_bot(_settings(auto_join=False), client=client)  # type: ignore[arg-type]

    assert [event_filter for _, event_filter in client.callbacks] == [
        nio.RoomMessageText
    ]


@pytest.mark.anyio
async def test_run_bot_stops_when_startup_fails() -> None:
    client = FakeClient()
    client.sync_response = nio.SyncError("unknown token")

    result = await run_bot(_settings(), client=client)  # type: ignore[arg-type]

    assert result == 2
    assert client.callbacks == []
    assert client.closed is True


# --- run tests ---


def test_run_missing_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    result = run(tmp_path / "missing.toml")

    assert result == 2
    assert "Failed to load config" in capsys.readouterr().err


def test_run_credentials_failure(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    config_path = tmp_path / "bot.toml"
    config_path.write_text(
        "[matrix]\n"
        'homeserver = "https://matrix.example.org"\n'
        f'user_id = "{BOT_ID}"\n'
        'access_token = "tok"\n'
    )

    with patch(
        "matrix_commands.config._whoami",
        side_effect=RuntimeError("whoami unauthorized (401)"),
    ):
        result = run(config_path)

    assert result == 2
    assert "whoami unauthorized" in capsys.readouterr().err
