"""
内置命令（document.* / runtime.*）。

这些命令都是对 DocumentSession / RuntimeBuffer 的薄封装；
`runtime.sleep` 用于占用 execute 队列（验证 single-flight 排队语义）。
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from interactor.commands.registry import CommandContext, CommandRegistry, CommandSpec, define_command
from interactor.runtime.buffer import ConsoleEntry, ErrorEntry

MAX_SLEEP_MS = 60_000


class _Input(BaseModel):
    """命令输入基类：拒绝未知字段。"""

    model_config = ConfigDict(extra="forbid")


class _NoInput(_Input):
    """无参数命令。"""


class _KeyInput(_Input):
    """单键命令输入。"""

    key: str = Field(min_length=1, description="Document key")


class _SetInput(_Input):
    """document.set 输入。"""

    key: str = Field(min_length=1, description="Document key")
    value: Any = Field(default=None, description="Any JSON value")


class _LogInput(_Input):
    """runtime.log 输入。"""

    text: str = Field(description="Console message text")
    type: str = Field(default="log", min_length=1, description="Console message type (log/info/warning/error)")
    location: Dict[str, Any] = Field(default_factory=dict, description="Optional source location")


class _ReportErrorInput(_Input):
    """runtime.reportError 输入。"""

    message: str = Field(min_length=1, description="Error message")
    stack: Optional[str] = Field(default=None, description="Optional stack trace")


class _TailInput(_Input):
    """读取 buffer 的输入（可选只取最后 N 条）。"""

    limit: Optional[int] = Field(default=None, ge=1, description="Return only the most recent N entries")


class _SleepInput(_Input):
    """runtime.sleep 输入。"""

    ms: int = Field(ge=0, le=MAX_SLEEP_MS, description="Milliseconds to sleep")


def _tail(entries: List[Dict[str, Any]], limit: Optional[int]) -> List[Dict[str, Any]]:
    """取最后 limit 条（None 表示全部）。"""

    if limit is None:
        return entries
    return entries[-limit:]


def _document_get(cx: CommandContext, input: _KeyInput) -> Any:
    """命令：document.get。"""

    return {"key": input.key, "value": cx.session.get(input.key)}


def _document_set(cx: CommandContext, input: _SetInput) -> Any:
    """命令：document.set。"""

    return {"key": input.key, "revision": cx.session.set(input.key, input.value)}


def _document_delete(cx: CommandContext, input: _KeyInput) -> Any:
    """命令：document.delete。"""

    return {"key": input.key, "deleted": cx.session.delete(input.key)}


def _document_keys(cx: CommandContext, _input: _NoInput) -> Any:
    """命令：document.keys。"""

    return cx.session.keys()


def _document_snapshot(cx: CommandContext, _input: _NoInput) -> Any:
    """命令：document.snapshot。"""

    return cx.session.snapshot()


def _runtime_log(cx: CommandContext, input: _LogInput) -> Any:
    """命令：runtime.log。"""

    cx.buffer.add_console(ConsoleEntry(type=input.type, text=input.text, location=dict(input.location)))
    return {"logged": True}


def _runtime_report_error(cx: CommandContext, input: _ReportErrorInput) -> Any:
    """命令：runtime.reportError。"""

    cx.buffer.add_error(ErrorEntry(message=input.message, stack=input.stack))
    return {"reported": True}


def _runtime_console(cx: CommandContext, input: _TailInput) -> Any:
    """命令：runtime.console。"""

    return _tail(cx.buffer.console_entries(), input.limit)


def _runtime_errors(cx: CommandContext, input: _TailInput) -> Any:
    """命令：runtime.errors。"""

    return _tail(cx.buffer.page_errors(), input.limit)


def _runtime_clear(cx: CommandContext, _input: _NoInput) -> Any:
    """命令：runtime.clear。"""

    return cx.buffer.clear()


def _runtime_sleep(_cx: CommandContext, input: _SleepInput) -> Any:
    """命令：runtime.sleep。"""

    time.sleep(input.ms / 1000.0)
    return {"slept": input.ms}


BUILTIN_COMMANDS: List[CommandSpec] = [
    define_command("document.get", "Read one key from the session document", _KeyInput, _document_get, ["read", "value"]),
    define_command("document.set", "Write one key in the session document", _SetInput, _document_set, ["write", "value"]),
    define_command("document.delete", "Delete one key from the session document", _KeyInput, _document_delete, ["remove"]),
    define_command("document.keys", "List keys of the session document", _NoInput, _document_keys, ["list"]),
    define_command("document.snapshot", "Return the whole session document", _NoInput, _document_snapshot, ["dump", "state"]),
    define_command("runtime.log", "Append an entry to the console buffer", _LogInput, _runtime_log, ["console", "log"]),
    define_command(
        "runtime.reportError", "Append an entry to the error buffer", _ReportErrorInput, _runtime_report_error, ["error"]
    ),
    define_command("runtime.console", "Read buffered console entries", _TailInput, _runtime_console, ["console", "logs"]),
    define_command("runtime.errors", "Read buffered error entries", _TailInput, _runtime_errors, ["error", "logs"]),
    define_command("runtime.clear", "Clear console and error buffers", _NoInput, _runtime_clear, ["console", "error"]),
    define_command("runtime.sleep", "Sleep for a number of milliseconds", _SleepInput, _runtime_sleep, ["wait", "delay"]),
]


def register_builtin_commands(registry: CommandRegistry) -> CommandRegistry:
    """把内置命令注册到 registry（重复注册抛 CommandError）。"""

    for spec in BUILTIN_COMMANDS:
        registry.register(spec)
    return registry


def build_default_registry() -> CommandRegistry:
    """构造仅包含内置命令的注册表。"""

    return register_builtin_commands(CommandRegistry())
