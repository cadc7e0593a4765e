"""Type-driven argument resolution for command callables."""

from __future__ import annotations

import collections.abc
import enum
import inspect
import types
import typing
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import nio
import structlog

from ..types import Homeserver, IncomingMessage, Receiver

logger = structlog.get_logger("matrix_commands.parameters")


class ParameterKind(enum.Enum):
    COMMAND = "command"
    ARGS = "args"
    MESSAGE = "message"
    CLIENT = "client"
    ROOM = "room"
    AUTHOR = "author"
    RECEIVER = "receiver"
    SERVER = "server"
    UNKNOWN = "unknown"


_SEQUENCE_ORIGINS = (list, tuple, collections.abc.Sequence)

# Checked in order with issubclass, so subclasses of nio types match too.
_CLASS_KINDS: tuple[tuple[type, ParameterKind], ...] = (
    (IncomingMessage, ParameterKind.MESSAGE),
    (nio.AsyncClient, ParameterKind.CLIENT),
    (nio.MatrixRoom, ParameterKind.ROOM),
    (nio.MatrixUser, ParameterKind.AUTHOR),
    (Receiver, ParameterKind.RECEIVER),
    (Homeserver, ParameterKind.SERVER),
)


@dataclass(frozen=True, slots=True)
class InvocationContext:
    tokens: tuple[str, ...]
    message: IncomingMessage
    client: nio.AsyncClient
    notice: bool = False


def _strip_optional(annotation: Any) -> Any:
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        members = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
        if len(members) == 1:
            return members[0]
    return annotation


def classify_annotation(annotation: Any) -> ParameterKind:
    annotation = _strip_optional(annotation)
    if annotation is str:
        return ParameterKind.COMMAND
    origin = typing.get_origin(annotation)
    if origin is not None:
        if origin in _SEQUENCE_ORIGINS:
            args = [arg for arg in typing.get_args(annotation) if arg is not Ellipsis]
            if all(arg is str for arg in args):
                return ParameterKind.ARGS
        return ParameterKind.UNKNOWN
    if annotation in (list, tuple):
        return ParameterKind.ARGS
    if not inspect.isclass(annotation):
        return ParameterKind.UNKNOWN
    for cls, kind in _CLASS_KINDS:
        if issubclass(annotation, cls):
            return kind
    return ParameterKind.UNKNOWN


def _type_hints(func: Callable[..., Any]) -> dict[str, Any]:
    target = inspect.unwrap(getattr(func, "__func__", func))
    try:
        return typing.get_type_hints(target)
    except Exception as exc:
        # Unresolvable forward references degrade to unknown parameters.
        logger.debug(
            "matrix.command.type_hints_unresolved",
            function=getattr(target, "__qualname__", repr(target)),
            error=str(exc),
        )
        return {}


def parameter_kinds(func: Callable[..., Any]) -> tuple[ParameterKind, ...]:
    """Classify the positional parameters of `func` in declared order.

    `func` is expected to be bound already, so `self` does not appear.
    """
    hints = _type_hints(func)
    kinds: list[ParameterKind] = []
    for param in inspect.signature(func).parameters.values():
        if param.kind not in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            continue
        annotation = hints.get(param.name, param.annotation)
        if annotation is inspect.Parameter.empty:
            kinds.append(ParameterKind.UNKNOWN)
            continue
        kinds.append(classify_annotation(annotation))
    return tuple(kinds)


def _author(ctx: InvocationContext) -> nio.MatrixUser:
    if ctx.message.author is not None:
        return ctx.message.author
    return nio.MatrixUser(ctx.message.sender)


_PROVIDERS: dict[ParameterKind, Callable[[InvocationContext], Any]] = {
    ParameterKind.COMMAND: lambda ctx: ctx.tokens[0],
    ParameterKind.ARGS: lambda ctx: list(ctx.tokens[1:]),
    ParameterKind.MESSAGE: lambda ctx: ctx.message,
    ParameterKind.CLIENT: lambda ctx: ctx.client,
    ParameterKind.ROOM: lambda ctx: ctx.message.channel,
    ParameterKind.AUTHOR: _author,
    ParameterKind.RECEIVER: lambda ctx: ctx.message.receiver(
        ctx.client, notice=ctx.notice
    ),
    ParameterKind.SERVER: lambda ctx: ctx.message.server,
}


def resolve_arguments(
    kinds: Sequence[ParameterKind], ctx: InvocationContext
) -> list[Any]:
    """Build the positional argument list for one invocation."""
    arguments: list[Any] = []
    for kind in kinds:
        provider = _PROVIDERS.get(kind)
        arguments.append(provider(ctx) if provider is not None else None)
    return arguments
