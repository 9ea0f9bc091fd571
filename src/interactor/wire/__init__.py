"""wire 协议：单行 JSON 分帧 + 请求/响应 envelope。"""

from __future__ import annotations

from interactor.wire.framing import read_frame
from interactor.wire.protocol import (
    EventsRequest,
    ExecuteEvent,
    ExecuteRequest,
    FailureResponse,
    InfoRequest,
    InstanceInfo,
    SuccessResponse,
    decode_json,
    encode_json,
    encode_message,
    is_valid_name,
    parse_request,
    parse_response,
)

__all__ = [
    "EventsRequest",
    "ExecuteEvent",
    "ExecuteRequest",
    "FailureResponse",
    "InfoRequest",
    "InstanceInfo",
    "SuccessResponse",
    "decode_json",
    "encode_json",
    "encode_message",
    "is_valid_name",
    "parse_request",
    "parse_response",
    "read_frame",
]
