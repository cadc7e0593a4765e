"""Decorator-driven chat commands for Matrix bots."""

from __future__ import annotations

from .commands import (
    Command,
    CommandRegistry,
    MatrixCommandHandler,
    SimpleCommand,
    command,
)
from .config import ConfigError, Settings, load_settings
from .permissions import PermissionStore
from .runtime import run, run_bot
from .types import Homeserver, IncomingMessage, Receiver

__all__ = [
    "Command",
    "CommandRegistry",
    "ConfigError",
    "Homeserver",
    "IncomingMessage",
    "MatrixCommandHandler",
    "PermissionStore",
    "Receiver",
    "Settings",
    "SimpleCommand",
    "command",
    "load_settings",
    "run",
    "run_bot",
]
