"""Settings for a command bot, read from a TOML file."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import anyio.to_thread
import httpx
import structlog
import tomlkit

logger = structlog.get_logger("matrix_commands.config")

DEFAULT_MISSING_PERMISSIONS = "You are not allowed to use this command!"
DEFAULT_SYNC_TIMEOUT_MS = 30000
LOG_LEVELS = frozenset({"debug", "info", "warning", "error", "critical"})


class ConfigError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class MatrixSettings:
    homeserver: str
    user_id: str
    access_token: str
    device_id: str = ""
    mention_tag: str | None = None
    auto_join: bool = True
    sync_timeout_ms: int = DEFAULT_SYNC_TIMEOUT_MS
    store_dir: Path | None = None


@dataclass(frozen=True, slots=True)
class CommandSettings:
    missing_permissions: str | None = DEFAULT_MISSING_PERMISSIONS
    reply_as_notice: bool = False


@dataclass(frozen=True, slots=True)
class Settings:
    matrix: MatrixSettings
    commands: CommandSettings = CommandSettings()
    permissions: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    log_level: str = "info"
    config_path: Path | None = None


def _expand_path(s: str) -> Path:
    return Path(os.path.expandvars(os.path.expanduser(s)))


def _env(name: str) -> str:
    return (os.environ.get(name) or "").strip()


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    try:
        return tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid TOML in {path}: {exc}") from exc


def _cfg_get(d: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    cur: Any = d
    for key in keys:
        if not isinstance(cur, Mapping) or key not in cur:
            return default
        cur = cur[key]
    return cur


def _table(d: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = d.get(name, {})
    if not isinstance(value, Mapping):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _text(value: Any) -> str:
    return str(value or "").strip()


def _parse_permissions(raw: Mapping[str, Any]) -> dict[str, tuple[str, ...]]:
    parsed: dict[str, tuple[str, ...]] = {}
    for user_id, value in raw.items():
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigError(
                f"permissions for {user_id!r} must be a string or a list of strings"
            )
        perms = tuple(v.strip() for v in value if v.strip())
        if perms:
            parsed[user_id.strip()] = perms
    return parsed


def parse_settings(data: Mapping[str, Any], *, config_path: Path | None = None) -> Settings:
    matrix = _table(data, "matrix")
    commands = _table(data, "commands")

    homeserver = _text(matrix.get("homeserver")).rstrip("/")
    user_id = _text(matrix.get("user_id"))
    if not homeserver:
        raise ConfigError("Missing matrix.homeserver")
    if not user_id:
        raise ConfigError("Missing matrix.user_id")

    env_access_token = _env("MATRIX_ACCESS_TOKEN") or _env("matrix_access_token")
    access_token = env_access_token or _text(matrix.get("access_token"))
    if not access_token:
        raise ConfigError("Missing matrix.access_token (or env MATRIX_ACCESS_TOKEN)")
    device_id = (
        _env("MATRIX_DEVICE_ID")
        or _env("matrix_device_id")
        or _text(matrix.get("device_id"))
    )

    sync_timeout_ms = matrix.get("sync_timeout_ms", DEFAULT_SYNC_TIMEOUT_MS)
    if not isinstance(sync_timeout_ms, int) or sync_timeout_ms <= 0:
        raise ConfigError("matrix.sync_timeout_ms must be a positive integer")

    store_dir = None
    raw_store = matrix.get("store_path")
    if isinstance(raw_store, str) and raw_store.strip():
        store_dir = _expand_path(raw_store.strip())

    missing = commands.get("missing_permissions", DEFAULT_MISSING_PERMISSIONS)
    if missing is not None and not isinstance(missing, str):
        raise ConfigError("commands.missing_permissions must be a string")

    log_level = _text(_cfg_get(data, "logging", "level", default="info")).lower()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"logging.level must be one of {sorted(LOG_LEVELS)}")

    return Settings(
        matrix=MatrixSettings(
            homeserver=homeserver,
            user_id=user_id,
            access_token=access_token,
            device_id=device_id,
            mention_tag=_text(matrix.get("mention_tag")) or None,
            auto_join=bool(matrix.get("auto_join", True)),
            sync_timeout_ms=sync_timeout_ms,
            store_dir=store_dir,
        ),
        commands=CommandSettings(
            # An empty string in TOML disables the notice.
            missing_permissions=missing or None,
            reply_as_notice=bool(commands.get("reply_as_notice", False)),
        ),
        permissions=_parse_permissions(_table(data, "permissions")),
        log_level=log_level,
        config_path=config_path,
    )


def load_settings(path: str | Path) -> Settings:
    config_path = _expand_path(str(path))
    if not config_path.is_file():
        raise ConfigError(f"Missing config at: {config_path}")
    return parse_settings(_load_toml(config_path), config_path=config_path)


def _whoami(homeserver: str, token: str) -> dict[str, Any]:
    hs = homeserver.rstrip("/")
    response = httpx.get(
        f"{hs}/_matrix/client/v3/account/whoami",
        headers={"Authorization": f"Bearer {token}"},
        timeout=20.0,
    )
    if response.status_code == 401:
        raise RuntimeError("whoami unauthorized (401)")
    response.raise_for_status()
    data = response.json()
    if not isinstance(data, dict):
        raise RuntimeError("whoami returned non-object JSON")
    return data


def resolve_credentials(settings: Settings) -> Settings:
    """Check the access token against the homeserver and fill in the device id."""
    matrix = settings.matrix
    who = _whoami(matrix.homeserver, matrix.access_token)
    who_user = str(who.get("user_id") or "")
    who_device = str(who.get("device_id") or "")

    if who_user and who_user != matrix.user_id:
        raise ConfigError(
            "whoami mismatch: access token belongs to "
            f"{who_user!r} but config says {matrix.user_id!r}"
        )

    device_id = matrix.device_id or who_device
    if not device_id:
        raise ConfigError("Missing matrix.device_id and whoami returned none")
    if who_device and device_id != who_device:
        logger.warning(
            "matrix.config.device_id_mismatch",
            configured=device_id,
            whoami=who_device,
        )
        device_id = who_device

    logger.info(
        "matrix.config.creds_resolved",
        user_id=matrix.user_id,
        device_id=device_id,
    )
    return replace(settings, matrix=replace(matrix, device_id=device_id))


def _persist_permission_sync(config_path: Path, user_id: str, permission: str) -> bool:
    doc = tomlkit.parse(config_path.read_text(encoding="utf-8"))
    table = doc.get("permissions")
    if table is None:
        table = tomlkit.table()
        doc["permissions"] = table
    elif not isinstance(table, Mapping):
        raise ConfigError("[permissions] must be a table")

    current = table.get(user_id)
    if current is None:
        values = tomlkit.array()
        values.append(permission)
        table[user_id] = values
    elif isinstance(current, str):
        if current == permission:
            return False
        values = tomlkit.array()
        values.extend([current, permission])
        table[user_id] = values
    else:
        if permission in current:
            return False
        current.append(permission)

    config_path.write_text(tomlkit.dumps(doc), encoding="utf-8")
    return True


async def persist_permission(
    config_path: Path | None, user_id: str, permission: str
) -> None:
    """Record a grant under [permissions] in the config file.

    Formatting and comments of the rest of the file are kept. Failures are
    logged; the in-memory grant stays in effect either way.
    """
    if config_path is None or not isinstance(config_path, Path):
        return
    try:
        written = await anyio.to_thread.run_sync(
            _persist_permission_sync, config_path, user_id, permission
        )
    except Exception as exc:
        logger.warning(
            "matrix.config.persist_permission_failed",
            path=str(config_path),
            user_id=user_id,
            permission=permission,
            error=str(exc),
        )
        return
    if written:
        logger.info(
            "matrix.config.permission_persisted",
            path=str(config_path),
            user_id=user_id,
            permission=permission,
        )
