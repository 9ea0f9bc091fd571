"""
CommandRegistry：命令注册表与派发。

本模块提供：
- 注册：`register/get/require/list_definitions`
- 校验：`validate_input`（pydantic input model；调用 handler 之前显式校验）
- 执行：`execute(cx, name, raw_input)`（handler 可为同步函数，也可返回 awaitable）
- 检索：`find(keywords)` / `get_schema(name)`

说明：
- 注册表是 name → (input_model, handler) 的映射，每次请求查找一次；
- 错误统一抛 CommandError，`message` 是可跨 wire 的扁平信息，`details` 只留在本地日志。
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from interactor.core.errors import CommandError, InteractorError, error_message
from interactor.core.utils import summarize_validation_error
from interactor.runtime.buffer import RuntimeBuffer
from interactor.wire.protocol import InstanceInfo

logger = logging.getLogger(__name__)


@dataclass
class CommandContext:
    """
    命令执行上下文（由 worker 注入）。

    字段：
    - session：受控会话（所有 execute 批次共享的同一个会话对象）
    - buffer：worker 进程内 runtime buffer
    - info：当前实例元数据（可选；离线执行时为 None）
    """

    session: Any
    buffer: RuntimeBuffer
    info: Optional[InstanceInfo] = None


CommandHandler = Callable[[CommandContext, Any], Any]


@dataclass(frozen=True)
class CommandSpec:
    """命令注册信息。"""

    name: str
    description: str
    input_model: Type[BaseModel]
    handler: CommandHandler
    keywords: Tuple[str, ...] = field(default_factory=tuple)

    def definition(self) -> Dict[str, Any]:
        """对外可见的命令描述（name/description/keywords）。"""

        return {"name": self.name, "description": self.description, "keywords": list(self.keywords)}


def define_command(
    name: str,
    description: str,
    input_model: Type[BaseModel],
    handler: CommandHandler,
    keywords: Iterable[str] = (),
) -> CommandSpec:
    """构造 CommandSpec 的便捷函数（参数顺序与注册表清单一致）。"""

    return CommandSpec(
        name=name,
        description=description,
        input_model=input_model,
        handler=handler,
        keywords=tuple(keywords),
    )


class CommandRegistry:
    """命令注册表（按注册顺序保存）。"""

    def __init__(self, specs: Iterable[CommandSpec] = ()) -> None:
        """创建注册表；可选地批量注册 specs。"""

        self._specs: Dict[str, CommandSpec] = {}
        for spec in specs:
            self.register(spec)

    def __contains__(self, name: object) -> bool:
        """`name in registry`。"""

        return name in self._specs

    def __len__(self) -> int:
        """已注册命令数量。"""

        return len(self._specs)

    def register(self, spec: CommandSpec, *, override: bool = False) -> None:
        """
        注册命令。

        参数：
        - spec：命令规格
        - override：是否允许覆盖同名命令；默认 False（重复注册抛 CommandError）
        """

        if spec.name in self._specs and not override:
            raise CommandError(f'Duplicate interactor event "{spec.name}"', code="DUPLICATE_COMMAND")
        self._specs[spec.name] = spec

    def get(self, name: str) -> Optional[CommandSpec]:
        """按名称查找；不存在返回 None。"""

        return self._specs.get(name)

    def require(self, name: str) -> CommandSpec:
        """按名称查找；不存在抛 CommandError(UNKNOWN_COMMAND)。"""

        spec = self._specs.get(name)
        if spec is None:
            raise CommandError(f'Unknown interactor event "{name}"', code="UNKNOWN_COMMAND", details={"event": name})
        return spec

    def list_definitions(self) -> List[Dict[str, Any]]:
        """按注册顺序返回全部命令描述。"""

        return [spec.definition() for spec in self._specs.values()]

    def find(self, keywords: Iterable[str]) -> List[Dict[str, Any]]:
        """
        关键字检索（大小写不敏感的子串匹配，任一关键字命中即可）。

        检索范围：name + description + keywords；空关键字列表返回全部。
        """

        normalized = [str(k).strip().lower() for k in keywords]
        normalized = [k for k in normalized if k]
        if not normalized:
            return self.list_definitions()

        out: List[Dict[str, Any]] = []
        for spec in self._specs.values():
            haystack = " ".join([spec.name, spec.description, *spec.keywords]).lower()
            if any(k in haystack for k in normalized):
                out.append(spec.definition())
        return out

    def get_schema(self, name: str) -> Optional[Dict[str, Any]]:
        """返回命令 input 的 JSON schema；未知命令返回 None。"""

        spec = self._specs.get(name)
        if spec is None:
            return None
        return spec.input_model.model_json_schema()

    def validate_input(self, name: str, raw_input: Any) -> BaseModel:
        """
        校验命令输入。

        异常：
        - CommandError(UNKNOWN_COMMAND)：未注册
        - CommandError(INVALID_COMMAND_INPUT)：输入不符合 input model
        """

        spec = self.require(name)
        try:
            return spec.input_model.model_validate(raw_input)
        except ValidationError as e:
            raise CommandError(
                f'Invalid input for interactor event "{name}": {summarize_validation_error(e)}',
                code="INVALID_COMMAND_INPUT",
                details={"event": name, "input": raw_input},
            ) from e

    def execute(self, cx: CommandContext, name: str, raw_input: Any) -> Any:
        """
        校验并执行一条命令。

        说明：
        - handler 返回 awaitable 时在当前线程驱动到完成；
        - handler 抛出的非 InteractorError 异常会带上命令名包装为 CommandError(COMMAND_FAILED)。
        """

        spec = self.require(name)
        payload = self.validate_input(name, raw_input)
        try:
            result = spec.handler(cx, payload)
            if inspect.isawaitable(result):
                result = asyncio.run(_await(result))
        except InteractorError:
            raise
        except Exception as e:
            logger.warning("Interactor event %s failed", name, exc_info=True)
            raise CommandError(
                f'Interactor event "{name}" failed: {error_message(e)}',
                code="COMMAND_FAILED",
                details={"event": name, "input": payload.model_dump(), "exception": type(e).__name__},
            ) from e
        return result


async def _await(awaitable: Any) -> Any:
    """把任意 awaitable 包装成 coroutine（asyncio.run 只接受 coroutine）。"""

    return await awaitable
