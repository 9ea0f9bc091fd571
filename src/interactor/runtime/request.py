"""
Client request helper：对已知地址做恰好一次请求/响应往返。

契约：
- 每个连接只发一条请求、只收一条响应；
- connect + 发送 + 等待响应整体受同一个截止时刻约束（不是单次 socket 操作的超时），绝不无限挂起；
- 成功响应的 id 必须与请求 id 一致（失败响应可能带新 id，不校验）；
- 传输失败（TransportError）与协议失败（ProtocolError）、应用层失败响应（`ok:"false"`）三者可区分。
"""

from __future__ import annotations

import socket
import time
from pathlib import Path
from typing import Union

from interactor.core.errors import ProtocolError, TransportError
from interactor.wire.framing import read_frame
from interactor.wire.protocol import (
    EventsRequest,
    ExecuteRequest,
    FailureResponse,
    InfoRequest,
    SuccessResponse,
    decode_json,
    encode_message,
    parse_response,
)

AnyRequest = Union[InfoRequest, EventsRequest, ExecuteRequest]
AnyResponse = Union[SuccessResponse, FailureResponse]


def request_interactor(address: Union[str, Path], request: AnyRequest, *, timeout_sec: float = 30.0) -> AnyResponse:
    """
    对一个已知地址做恰好一次请求/响应往返。

    流程：connect → 写一条请求 → 读到一条换行分帧的响应 → 关闭连接。

    参数：
    - address：worker 的 Unix socket 路径
    - request：请求 envelope
    - timeout_sec：connect + 等待响应的超时上限（必填语义：不会无限挂起）

    返回：
    - SuccessResponse / FailureResponse（`ok:"false"` 不抛异常，由调用方判断）

    异常：
    - TransportError：连接拒绝/不存在、连接重置、EOF、超时
    - ProtocolError：响应非 JSON、形状不符，或成功响应的 id 与请求不一致
    """

    path = str(address)
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as s:
            deadline = time.monotonic() + float(timeout_sec)
            s.settimeout(float(timeout_sec))
            s.connect(path)
            s.settimeout(_remaining(deadline))
            s.sendall(encode_message(request))
            raw = read_frame(s, deadline=deadline)
    except socket.timeout as e:
        raise TransportError(
            f"Timed out after {timeout_sec}s waiting for interactor at {path}",
            code="TIMEOUT",
            details={"address": path},
        ) from e
    except OSError as e:
        raise TransportError(
            f"Failed to reach interactor at {path}: {e.strerror or e}",
            code="CONNECTION_FAILED",
            details={"address": path, "errno": e.errno},
        ) from e
    response = parse_response(decode_json(raw))
    if isinstance(response, SuccessResponse) and response.id != request.id:
        raise ProtocolError(
            f'Interactor response id "{response.id}" does not match request id "{request.id}"',
            code="RESPONSE_ID_MISMATCH",
            details={"address": path, "request_id": request.id, "response_id": response.id},
        )
    return response


def _remaining(deadline: float) -> float:
    """距截止时刻的剩余秒数；已到期时抛 `socket.timeout`。"""

    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise socket.timeout("timed out")
    return remaining
