"""Startup and main loop for a command bot.

`run` is the operator entry point: it loads the config, checks the
credentials and runs the sync loop until interrupted. `run_bot` is the
async core and takes an already built client, which keeps it testable.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import Any

import anyio
import nio
import structlog
from anyio.abc import TaskGroup

from .commands.builtin import GrantCommand, HelpCommand
from .commands.dispatch import MatrixCommandHandler
from .config import ConfigError, Settings, load_settings, resolve_credentials
from .permissions import PermissionStore

logger = structlog.get_logger("matrix_commands.runtime")


def configure_logging(level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
    )


def build_client(settings: Settings) -> nio.AsyncClient:
    matrix = settings.matrix
    encryption = matrix.store_dir is not None
    client = nio.AsyncClient(
        matrix.homeserver,
        matrix.user_id,
        device_id=matrix.device_id,
        store_path=str(matrix.store_dir) if encryption else "",
        config=nio.AsyncClientConfig(
            encryption_enabled=encryption,
            store_sync_tokens=encryption,
        ),
    )
    if encryption:
        matrix.store_dir.mkdir(parents=True, exist_ok=True)
        client.restore_login(matrix.user_id, matrix.device_id, matrix.access_token)
    else:
        client.access_token = matrix.access_token
    return client


def create_handler(
    client: nio.AsyncClient,
    settings: Settings,
    *,
    task_group: TaskGroup | None = None,
) -> MatrixCommandHandler:
    handler = MatrixCommandHandler(
        client,
        mention_tag=settings.matrix.mention_tag,
        task_group=task_group,
        reply_as_notice=settings.commands.reply_as_notice,
        config_path=settings.config_path,
        permissions=PermissionStore(settings.permissions),
        missing_permissions_notice=settings.commands.missing_permissions,
    )
    handler.register_command(HelpCommand(handler))
    handler.register_command(GrantCommand(handler))
    return handler


def _auto_join(
    client: nio.AsyncClient,
) -> Callable[[nio.MatrixRoom, nio.InviteMemberEvent], Awaitable[None]]:
    async def on_invite(room: nio.MatrixRoom, event: nio.InviteMemberEvent) -> None:
        if event.state_key != client.user_id or event.membership != "invite":
            return
        response = await client.join(room.room_id)
        if isinstance(response, nio.ErrorResponse):
            logger.warning(
                "matrix.runtime.join_failed",
                room_id=room.room_id,
                inviter=event.sender,
                error=str(response),
            )
            return
        logger.info("matrix.runtime.joined", room_id=room.room_id, inviter=event.sender)

    return on_invite


async def _startup_sequence(client: nio.AsyncClient, settings: Settings) -> bool:
    """Run the initial sync before any command callback is registered.

    Messages that arrived while the bot was offline are part of this sync
    and are therefore never dispatched.
    """
    response = await client.sync(
        timeout=settings.matrix.sync_timeout_ms, full_state=True
    )
    if isinstance(response, nio.ErrorResponse):
        logger.error("matrix.runtime.initial_sync_failed", error=str(response))
        return False
    logger.info("matrix.runtime.started", user_id=client.user_id)
    return True


async def run_bot(
    settings: Settings,
    executors: Iterable[Any] = (),
    *,
    client: nio.AsyncClient | None = None,
) -> int:
    if client is None:
        client = build_client(settings)
    try:
        if not await _startup_sequence(client, settings):
            return 2
        async with create_handler(client, settings) as handler:
            for executor in executors:
                handler.register_command(executor)
            if settings.matrix.auto_join:
                client.add_event_callback(_auto_join(client), nio.InviteMemberEvent)
            await client.sync_forever(timeout=settings.matrix.sync_timeout_ms)
    finally:
        await client.close()
    return 0


def run(config_path: str | Path, executors: Iterable[Any] = ()) -> int:
    try:
        settings = load_settings(config_path)
    except ConfigError as exc:
        print(f"Failed to load config: {exc}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        settings = resolve_credentials(settings)
    except Exception as exc:
        print(f"Failed to verify Matrix credentials: {exc}", file=sys.stderr)
        return 2

    try:
        return anyio.run(run_bot, settings, list(executors))
    except KeyboardInterrupt:
        return 0
