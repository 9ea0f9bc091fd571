"""
Interactor wire 协议（请求/响应 envelope + 实例元数据）。

约束：
- 每条消息为单行 JSON，以单个换行字节 `\\n` 结尾（见 `interactor.wire.framing`）；
- 每个请求都带关联 id；响应要么是同 id 的成功 payload，要么是带 id 的错误信息，不会同时是两者；
- `ok` 字段是字面字符串 `"true"` / `"false"`（不是 bool），需逐字节保持兼容；
- 编码严格 JSON（拒绝 NaN/Infinity）；解码拒绝非 JSON（抛 ProtocolError(INVALID_JSON)）。
"""

from __future__ import annotations

import json
import re
from typing import Annotated, Any, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from interactor.core.errors import ProtocolError
from interactor.core.utils import summarize_validation_error

NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$"
NAME_RE = re.compile(NAME_PATTERN)


def is_valid_name(name: str) -> bool:
    """校验实例名（`[A-Za-z0-9][A-Za-z0-9_-]{0,63}`）。"""

    return isinstance(name, str) and NAME_RE.fullmatch(name) is not None


class _WireModel(BaseModel):
    """wire 模型基类：按别名（camelCase）收发，忽略未知字段。"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class InfoRequest(_WireModel):
    """`info` 请求：返回实例元数据 + 命令清单（不排队）。"""

    id: str = Field(min_length=1)
    kind: Literal["info"] = "info"


class EventsRequest(_WireModel):
    """`events` 请求：返回命令清单（不排队）。"""

    id: str = Field(min_length=1)
    kind: Literal["events"] = "events"


class ExecuteEvent(_WireModel):
    """execute 批次中的单条命令（`inputJson` 为 JSON 字符串，默认 `{}`）。"""

    event_name: str = Field(alias="eventName", min_length=1)
    input_json: str = Field(default="{}", alias="inputJson")


class ExecuteRequest(_WireModel):
    """`execute` 请求：按顺序执行一条或多条命令（进入 single-flight 队列）。"""

    id: str = Field(min_length=1)
    kind: Literal["execute"] = "execute"
    events: List[ExecuteEvent] = Field(min_length=1)


InteractorRequest = Annotated[Union[InfoRequest, EventsRequest, ExecuteRequest], Field(discriminator="kind")]


class SuccessResponse(_WireModel):
    """成功响应（`dataJson` 为结果的 JSON 字符串，默认 `null`）。"""

    id: str = Field(min_length=1)
    ok: Literal["true"] = "true"
    data_json: str = Field(default="null", alias="dataJson")

    def data(self) -> Any:
        """解码 `dataJson`；非 JSON 时抛 ProtocolError。"""

        return decode_json(self.data_json)


class FailureResponse(_WireModel):
    """失败响应（`error` 为扁平可读信息）。"""

    id: str = Field(min_length=1)
    ok: Literal["false"] = "false"
    error: str = Field(min_length=1)


InteractorResponse = Annotated[Union[SuccessResponse, FailureResponse], Field(discriminator="ok")]


class InstanceInfo(_WireModel):
    """
    实例元数据（`<base>.meta.json` 的内容，也是 `info` 响应的基础部分）。

    字段：
    - name：实例名（匹配 NAME_PATTERN）
    - url：受控会话的目标描述
    - pid：worker 进程号（仅用于 best-effort 存活预检，PID 会复用）
    - started_at：启动时间戳（毫秒；仅供参考，不用于排序）
    - socket_path：channel 地址（Unix socket 路径）
    """

    name: str = Field(pattern=NAME_PATTERN)
    url: str = Field(min_length=1)
    pid: int = Field(ge=1)
    started_at: int = Field(alias="startedAt", ge=0)
    socket_path: str = Field(alias="socketPath", min_length=1)

    def to_wire(self) -> dict[str, Any]:
        """按 wire 字段名（camelCase）导出。"""

        return self.model_dump(by_alias=True)


_REQUEST_ADAPTER: TypeAdapter[Any] = TypeAdapter(InteractorRequest)
_RESPONSE_ADAPTER: TypeAdapter[Any] = TypeAdapter(InteractorResponse)


def _reject_constant(value: str) -> Any:
    """json.loads 的 parse_constant 回调：拒绝 NaN/Infinity（非严格 JSON）。"""

    raise ValueError(f"non-standard JSON constant: {value}")


def encode_json(data: Any) -> str:
    """严格 JSON 编码（单行、紧凑、拒绝 NaN/Infinity）。"""

    return json.dumps(data, ensure_ascii=False, separators=(",", ":"), allow_nan=False)


def decode_json(data: Union[str, bytes]) -> Any:
    """
    严格 JSON 解码。

    异常：
    - ProtocolError(code=INVALID_JSON)：非 JSON / 非 UTF-8 / 非标准常量
    """

    try:
        text = data.decode("utf-8") if isinstance(data, bytes) else data
        return json.loads(text, parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError) as e:
        raise ProtocolError("Invalid JSON payload", code="INVALID_JSON", details={"reason": str(e)}) from e


def encode_message(message: Union[BaseModel, Any]) -> bytes:
    """把一条消息编码为单行帧（UTF-8 + 结尾换行）。"""

    obj = message.model_dump(by_alias=True) if isinstance(message, BaseModel) else message
    return (encode_json(obj) + "\n").encode("utf-8")


def parse_request(obj: Any) -> Union[InfoRequest, EventsRequest, ExecuteRequest]:
    """
    校验请求 envelope。

    异常：
    - ProtocolError(code=INVALID_ENVELOPE)：形状不符（含未知 kind、空 events）
    """

    try:
        return _REQUEST_ADAPTER.validate_python(obj)
    except ValidationError as e:
        raise ProtocolError(
            f"Invalid request: {summarize_validation_error(e)}",
            code="INVALID_ENVELOPE",
            details={"request": obj if isinstance(obj, dict) else repr(obj)},
        ) from e


def parse_response(obj: Any) -> Union[SuccessResponse, FailureResponse]:
    """
    校验响应 envelope。

    异常：
    - ProtocolError(code=INVALID_ENVELOPE)：形状不符
    """

    try:
        return _RESPONSE_ADAPTER.validate_python(obj)
    except ValidationError as e:
        raise ProtocolError(f"Invalid response: {summarize_validation_error(e)}", code="INVALID_ENVELOPE") from e


def success_response(request_id: str, data: Any) -> SuccessResponse:
    """构造成功响应（`None` 编码为 `"null"`）。"""

    return SuccessResponse(id=request_id, data_json=encode_json(data))


def failure_response(request_id: str, message: str) -> FailureResponse:
    """构造失败响应（空信息回退为 `unknown error`）。"""

    return FailureResponse(id=request_id, error=message or "unknown error")
