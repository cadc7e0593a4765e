"""Registry of commands keyed by case-folded alias."""

from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from .command import Command, get_command_meta
from .parameters import ParameterKind, parameter_kinds

logger = structlog.get_logger("matrix_commands.registry")


@dataclass(frozen=True, slots=True)
class SimpleCommand:
    """A registered command: metadata plus the callable that runs it."""

    command: Command
    executor: Any
    method: Callable[..., Any]
    parameter_kinds: tuple[ParameterKind, ...]

    @property
    def method_name(self) -> str:
        return getattr(self.method, "__name__", repr(self.method))

    @property
    def executor_name(self) -> str:
        if self.executor is None:
            return getattr(self.method, "__module__", None) or "<function>"
        return type(self.executor).__qualname__


class CommandRegistry:
    """Maps lower-cased command tokens to `SimpleCommand` descriptors.

    Registration happens before dispatch starts. Re-registering a token
    replaces the previous command for that token.
    """

    def __init__(self) -> None:
        self._commands: dict[str, SimpleCommand] = {}
        self._order: list[SimpleCommand] = []

    def register(
        self,
        method: Callable[..., Any],
        meta: Command | None = None,
        *,
        executor: Any = None,
    ) -> SimpleCommand:
        if meta is None:
            meta = get_command_meta(method)
        if meta is None:
            raise ValueError(
                f"{getattr(method, '__qualname__', method)!r} is not a command; "
                "decorate it with @command or pass its metadata"
            )
        if executor is None:
            executor = getattr(method, "__self__", None)
        simple = SimpleCommand(
            command=meta,
            executor=executor,
            method=method,
            parameter_kinds=parameter_kinds(method),
        )
        for alias in meta.aliases:
            key = alias.lower()
            previous = self._commands.get(key)
            if previous is not None:
                logger.warning(
                    "matrix.command.alias_overwritten",
                    alias=key,
                    previous=f"{previous.executor_name}.{previous.method_name}",
                    current=f"{simple.executor_name}.{simple.method_name}",
                )
            self._commands[key] = simple
        self._order.append(simple)
        logger.debug(
            "matrix.command.registered",
            aliases=list(meta.aliases),
            method=simple.method_name,
            executor=simple.executor_name,
        )
        return simple

    def register_executor(self, executor: Any) -> list[SimpleCommand]:
        """Register every decorated method of `executor`."""
        registered: list[SimpleCommand] = []
        for name, _ in inspect.getmembers(type(executor), callable):
            method = getattr(executor, name, None)
            meta = get_command_meta(method)
            if meta is None:
                continue
            registered.append(self.register(method, meta, executor=executor))
        if not registered:
            raise ValueError(
                f"{type(executor).__qualname__} has no methods marked with @command"
            )
        return registered

    def lookup(self, token: str) -> SimpleCommand | None:
        return self._commands.get(token.lower())

    def __contains__(self, token: object) -> bool:
        return isinstance(token, str) and token.lower() in self._commands

    def commands(self) -> list[SimpleCommand]:
        """Registered commands in registration order, still reachable by a token."""
        live = {id(simple) for simple in self._commands.values()}
        return [simple for simple in self._order if id(simple) in live]
