"""Command handling for Matrix bots.

This package provides command metadata, registration, dispatch and
execution on top of a matrix-nio client.
"""

from __future__ import annotations

from .builtin import GrantCommand, HelpCommand, format_help
from .command import Command, command
from .dispatch import CommandHandler, MatrixCommandHandler
from .executor import invoke_command
from .parameters import ParameterKind, resolve_arguments
from .parse import split_message, strip_reply_fallback
from .registry import CommandRegistry, SimpleCommand

__all__ = [
    "Command",
    "CommandHandler",
    "CommandRegistry",
    "GrantCommand",
    "HelpCommand",
    "MatrixCommandHandler",
    "ParameterKind",
    "SimpleCommand",
    "command",
    "format_help",
    "invoke_command",
    "resolve_arguments",
    "split_message",
    "strip_reply_fallback",
]
