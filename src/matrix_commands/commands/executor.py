"""Invocation of resolved commands."""

from __future__ import annotations

import functools
import inspect
from typing import Any

import anyio.to_thread
import structlog

from ..types import Receiver
from .registry import SimpleCommand

logger = structlog.get_logger("matrix_commands.executor")


async def _call(simple: SimpleCommand, arguments: list[Any], *, in_thread: bool) -> Any:
    method = simple.method
    if inspect.iscoroutinefunction(method):
        return await method(*arguments)
    if in_thread:
        return await anyio.to_thread.run_sync(functools.partial(method, *arguments))
    result = method(*arguments)
    if inspect.isawaitable(result):
        result = await result
    return result


async def invoke_command(
    simple: SimpleCommand,
    arguments: list[Any],
    receiver: Receiver,
    *,
    in_thread: bool = False,
) -> None:
    """Run `simple` with `arguments` and reply with its textual result.

    Failures are logged and never reach the caller; a failed command sends
    no reply.
    """
    try:
        reply = await _call(simple, arguments, in_thread=in_thread)
    except Exception:
        logger.warning(
            "matrix.command.invoke_failed",
            method=simple.method_name,
            executor=simple.executor_name,
            exc_info=True,
        )
        return
    if reply is None:
        return
    text = str(reply)
    if not text:
        return
    await receiver.send(text)
