"""命令注册表、受控会话与内置命令。"""

from __future__ import annotations

from interactor.commands.builtin import build_default_registry, register_builtin_commands
from interactor.commands.registry import CommandContext, CommandRegistry, CommandSpec, define_command
from interactor.commands.session import ControlledSession, DocumentSession

__all__ = [
    "CommandContext",
    "CommandRegistry",
    "CommandSpec",
    "ControlledSession",
    "DocumentSession",
    "build_default_registry",
    "define_command",
    "register_builtin_commands",
]
