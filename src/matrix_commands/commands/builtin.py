"""Built-in commands: the help page and permission grants."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..config import persist_permission
from ..types import IncomingMessage
from .command import NO_DESCRIPTION, command

if TYPE_CHECKING:
    from .dispatch import MatrixCommandHandler

GRANT_PERMISSION = "permissions.grant"
GRANT_USAGE = "usage: `grant <user_id> <permission>`"


def format_help(handler: MatrixCommandHandler) -> str:
    lines = ["commands:"]
    for simple in handler.get_commands():
        meta = simple.command
        if not meta.show_in_help:
            continue
        entry = meta.usage or meta.name
        if meta.requires_mention:
            entry = f"{handler.mention_tag} {entry}"
        if meta.description != NO_DESCRIPTION:
            entry = f"{entry} | {meta.description}"
        lines.append(entry)
    return "\n".join(lines)


class HelpCommand:
    def __init__(self, handler: MatrixCommandHandler) -> None:
        self._handler = handler

    @command("help", "commands", description="Shows this page")
    def on_help(self) -> str:
        return format_help(self._handler)


class GrantCommand:
    """Grants a permission to a user and records it in the config file."""

    def __init__(self, handler: MatrixCommandHandler) -> None:
        self._handler = handler

    @command(
        "grant",
        usage="grant <user_id> <permission>",
        description="Grants a permission to a user",
        required_permission=GRANT_PERMISSION,
    )
    async def on_grant(self, args: list[str], message: IncomingMessage) -> str:
        if len(args) != 2:
            return GRANT_USAGE
        user_id, permission = args
        if not user_id.startswith("@") or ":" not in user_id:
            return f"invalid user id `{user_id}`"
        added = self._handler.add_permission(user_id, permission)
        if not added:
            return f"`{user_id}` already has `{permission}`"
        if self._handler.config_path is not None:
            await persist_permission(self._handler.config_path, user_id, permission)
        return f"granted `{permission}` to `{user_id}` (by {message.sender})"
