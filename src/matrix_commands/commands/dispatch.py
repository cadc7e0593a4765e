"""Routing of inbound Matrix messages to registered commands."""

from __future__ import annotations

import functools
from collections.abc import Callable, Sequence
from contextlib import AsyncExitStack
from pathlib import Path
from types import TracebackType
from typing import Any

import anyio
import nio
import structlog
from anyio.abc import TaskGroup

from ..config import DEFAULT_MISSING_PERMISSIONS
from ..permissions import PermissionStore
from ..types import IncomingMessage
from .command import Command
from .executor import invoke_command
from .parameters import InvocationContext, resolve_arguments
from .parse import split_message
from .registry import CommandRegistry, SimpleCommand

logger = structlog.get_logger("matrix_commands.dispatch")


def _user_id(user: nio.MatrixUser | str) -> str:
    if isinstance(user, nio.MatrixUser):
        return user.user_id
    return user


class CommandHandler:
    """Client independent half of a command handler.

    Owns the command registry and the permission store; subclasses bind
    it to a chat client and feed it messages.
    """

    def __init__(
        self,
        *,
        registry: CommandRegistry | None = None,
        permissions: PermissionStore | None = None,
        missing_permissions_notice: str | None = DEFAULT_MISSING_PERMISSIONS,
    ) -> None:
        self.registry = registry if registry is not None else CommandRegistry()
        self.permissions = permissions if permissions is not None else PermissionStore()
        self.missing_permissions_notice = missing_permissions_notice

    def register_command(self, executor: Any) -> list[SimpleCommand]:
        return self.registry.register_executor(executor)

    def register_function(
        self, func: Callable[..., Any], meta: Command | None = None
    ) -> SimpleCommand:
        return self.registry.register(func, meta)

    def get_commands(self) -> list[SimpleCommand]:
        return self.registry.commands()

    def add_permission(self, user: nio.MatrixUser | str, permission: str) -> bool:
        return self.permissions.grant(_user_id(user), permission)

    def has_permission(self, user: nio.MatrixUser | str, permission: str) -> bool:
        return self.permissions.has_permission(_user_id(user), permission)

    def resolve(
        self, tokens: Sequence[str]
    ) -> tuple[SimpleCommand, tuple[str, ...]] | None:
        """Find the command for `tokens` and the effective token list.

        When the first token is unknown it may be a mention; the second
        token is tried instead, but only commands requiring a mention can
        be reached that way.
        """
        if not tokens:
            return None
        simple = self.registry.lookup(tokens[0])
        if simple is not None:
            return simple, tuple(tokens)
        if len(tokens) < 2:
            return None
        simple = self.registry.lookup(tokens[1])
        if simple is None or not simple.command.requires_mention:
            return None
        return simple, tuple(tokens[1:])


class MatrixCommandHandler(CommandHandler):
    """Command handler for a matrix-nio `AsyncClient`.

    Registers itself for `RoomMessageText` events on construction.
    Background commands (`run_async=True`) are started on `task_group`.
    Entering the handler with `async with` opens a task group of its own
    when none was given; background commands are refused while the
    handler has no group to start them on.
    """

    def __init__(
        self,
        client: nio.AsyncClient,
        *,
        mention_tag: str | None = None,
        task_group: TaskGroup | None = None,
        reply_as_notice: bool = False,
        config_path: Path | None = None,
        registry: CommandRegistry | None = None,
        permissions: PermissionStore | None = None,
        missing_permissions_notice: str | None = DEFAULT_MISSING_PERMISSIONS,
    ) -> None:
        super().__init__(
            registry=registry,
            permissions=permissions,
            missing_permissions_notice=missing_permissions_notice,
        )
        self.client = client
        self.task_group = task_group
        self.reply_as_notice = reply_as_notice
        self.config_path = config_path
        self._mention_tag = mention_tag
        self._exit_stack: AsyncExitStack | None = None
        client.add_event_callback(self._on_room_message, nio.RoomMessageText)

    @property
    def mention_tag(self) -> str:
        return self._mention_tag or self.client.user_id

    async def __aenter__(self) -> MatrixCommandHandler:
        if self.task_group is None:
            self._exit_stack = AsyncExitStack()
            await self._exit_stack.__aenter__()
            self.task_group = await self._exit_stack.enter_async_context(
                anyio.create_task_group()
            )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        exit_stack, self._exit_stack = self._exit_stack, None
        if exit_stack is None:
            return None
        try:
            return await exit_stack.__aexit__(exc_type, exc_val, exc_tb)
        finally:
            self.task_group = None

    async def _on_room_message(
        self, room: nio.MatrixRoom, event: nio.RoomMessageText
    ) -> None:
        await self.handle_message(IncomingMessage.from_nio(room, event))

    async def handle_message(self, message: IncomingMessage) -> None:
        if message.sender == self.client.user_id:
            return
        tokens = split_message(message.text)
        resolved = self.resolve(tokens)
        if resolved is None:
            return
        simple, effective = resolved
        meta = simple.command

        if meta.requires_mention and tokens[0] != self.mention_tag:
            return
        if message.is_private and not meta.private_messages:
            return
        if not message.is_private and not meta.channel_messages:
            return

        receiver = message.receiver(self.client, notice=self.reply_as_notice)
        if not self.has_permission(message.sender, meta.required_permission):
            logger.info(
                "matrix.command.permission_denied",
                command=meta.name,
                sender=message.sender,
                permission=meta.required_permission,
            )
            if self.missing_permissions_notice is not None:
                await receiver.send(self.missing_permissions_notice)
            return

        arguments = resolve_arguments(
            simple.parameter_kinds,
            InvocationContext(
                tokens=effective,
                message=message,
                client=self.client,
                notice=self.reply_as_notice,
            ),
        )
        if not meta.run_async:
            await invoke_command(simple, arguments, receiver)
            return
        if self.task_group is None:
            logger.warning(
                "matrix.command.not_running",
                command=meta.name,
                method=simple.method_name,
            )
            return
        self.task_group.start_soon(
            functools.partial(
                invoke_command, simple, arguments, receiver, in_thread=True
            ),
            name=f"matrix-command:{meta.name}",
        )
