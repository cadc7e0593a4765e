"""Command metadata and the `@command` decorator."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from ..permissions import NO_PERMISSION

COMMAND_ATTR = "__matrix_command__"
NO_DESCRIPTION = "none"

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True, slots=True)
class Command:
    """Metadata attached to one command.

    `aliases[0]` is the primary name; every alias is registered as a
    case-insensitive token. `required_permission` of `"none"` or `""`
    lets anyone run the command.
    """

    aliases: tuple[str, ...]
    description: str = NO_DESCRIPTION
    usage: str = ""
    requires_mention: bool = False
    private_messages: bool = True
    channel_messages: bool = True
    required_permission: str = NO_PERMISSION
    show_in_help: bool = True
    run_async: bool = False

    def __post_init__(self) -> None:
        if not self.aliases:
            raise ValueError("command needs at least one alias")
        for alias in self.aliases:
            if not alias or alias != alias.strip() or len(alias.split()) != 1:
                raise ValueError(f"invalid command alias {alias!r}")

    @property
    def name(self) -> str:
        return self.aliases[0]


def command(
    *aliases: str,
    description: str = NO_DESCRIPTION,
    usage: str = "",
    requires_mention: bool = False,
    private_messages: bool = True,
    channel_messages: bool = True,
    required_permission: str = NO_PERMISSION,
    show_in_help: bool = True,
    run_async: bool = False,
) -> Callable[[F], F]:
    """Mark a function or method as a command.

    Usage:
        class PingCommand:
            @command("ping", description="Pong!")
            def on_ping(self) -> str:
                return "pong"

    The function is returned unchanged; registration happens when the
    executor (or function) is handed to a `CommandRegistry`.
    """
    meta = Command(
        aliases=tuple(aliases),
        description=description,
        usage=usage,
        requires_mention=requires_mention,
        private_messages=private_messages,
        channel_messages=channel_messages,
        required_permission=required_permission,
        show_in_help=show_in_help,
        run_async=run_async,
    )

    def decorator(func: F) -> F:
        setattr(func, COMMAND_ATTR, meta)
        return func

    return decorator


def get_command_meta(func: Any) -> Command | None:
    meta = getattr(func, COMMAND_ATTR, None)
    if isinstance(meta, Command):
        return meta
    return None
