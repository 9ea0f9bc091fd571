"""
Interactor 错误分类（异常类型）。

分层：
- TransportError：连接失败、连接被重置、读到 EOF、等待超时（调用方立即可见，不自动重试）
- ProtocolError：非 JSON / envelope 形状不符 / 请求体超限
- DiscoveryError：找不到实例、选择有歧义、同名实例已在运行、名称非法
- CommandError：未知命令、命令输入校验失败、命令执行失败
- RemoteError：worker 返回了 `ok:"false"`（与 TransportError 可区分）

说明：
- 只有 `message` 会跨进程传输（response 的 `error` 字段）；
- `details` 为本地结构化诊断信息，只进日志，不属于对外契约。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class InteractorIssue:
    """结构化问题对象（可序列化，用于 CLI 输出/日志）。"""

    code: str
    message: str
    details: Dict[str, Any]


class InteractorError(Exception):
    """Interactor 结构化错误基类（英文 `code/message/details`）。"""

    default_code = "INTERACTOR_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: Dict[str, Any] | None = None) -> None:
        """创建结构化错误。

        参数：
        - `message`：可读错误信息（会作为 wire 上的 `error` 字段）
        - `code`：稳定错误码（英文大写下划线）；缺省取类级 `default_code`
        - `details`：本地结构化上下文信息
        """

        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"

    def to_issue(self) -> InteractorIssue:
        """把异常转换为可序列化问题对象。"""

        return InteractorIssue(code=self.code, message=self.message, details=dict(self.details))


class TransportError(InteractorError):
    """传输层错误（connect 失败 / reset / EOF / timeout）。"""

    default_code = "TRANSPORT_ERROR"


class ProtocolError(InteractorError):
    """协议层错误（非 JSON、envelope 校验失败、请求体超限）。"""

    default_code = "INVALID_ENVELOPE"


class DiscoveryError(InteractorError):
    """发现层错误（面向用户；对本次调用是终态，不做静默重试）。"""

    default_code = "INSTANCE_NOT_FOUND"


class CommandError(InteractorError):
    """命令注册/校验/执行错误。"""

    default_code = "COMMAND_FAILED"


class RemoteError(InteractorError):
    """worker 返回 `ok:"false"` 的失败响应。"""

    default_code = "REMOTE_ERROR"

    def __init__(self, message: str, *, request_id: str, details: Dict[str, Any] | None = None) -> None:
        """创建远端失败错误。

        参数：
        - `message`：worker 返回的扁平错误信息
        - `request_id`：失败响应携带的 id
        """

        super().__init__(message, details=dict(details or {}, request_id=request_id))
        self.request_id = request_id


def error_message(exc: BaseException) -> str:
    """
    取得可以跨 wire 的扁平错误信息。

    规则：
    - InteractorError：取 `message`（不含 code 前缀）
    - KeyError：去掉默认的引号包裹
    - 其它：`str(exc)`；为空时回退到异常类型名
    """

    if isinstance(exc, InteractorError):
        return exc.message or exc.code
    msg = str(exc).strip()
    if isinstance(exc, KeyError) and len(msg) >= 2 and msg[0] == msg[-1] == "'":
        msg = msg[1:-1]
    return msg or type(exc).__name__
