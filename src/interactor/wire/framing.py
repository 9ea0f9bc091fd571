"""
换行分帧（byte-stream → 单条 JSON 消息）。

语义：
- 接收方持续缓冲直到出现 `\\n`，换行之前的字节即一条完整消息；
- 连接是单次往返的，换行之后的字节直接丢弃；
- 对端在换行前关闭连接 → TransportError（不会产生半条消息）。
"""

from __future__ import annotations

import socket
import time

from interactor.core.errors import ProtocolError, TransportError

_RECV_CHUNK = 65536


def read_frame(conn: socket.socket, *, max_bytes: int | None = None, deadline: float | None = None) -> bytes:
    """
    从 socket 读取一帧（不含结尾换行）。

    参数：
    - conn：已连接 socket（超时由调用方 `settimeout` 设定；超时异常原样上抛）
    - max_bytes：换行前允许的最大字节数；None 表示不限制
    - deadline：整帧读取的截止时刻（`time.monotonic()` 时钟）；每次 recv 前按剩余时间重设 socket 超时，
      到期抛 `socket.timeout`；None 表示只受调用方的单次操作超时约束

    异常：
    - TransportError(code=CONNECTION_CLOSED)：对端在完整帧之前关闭
    - ProtocolError(code=REQUEST_TOO_LARGE)：超过 max_bytes 仍未出现换行
    """

    buf = bytearray()
    while True:
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise socket.timeout("timed out")
            conn.settimeout(remaining)
        chunk = conn.recv(_RECV_CHUNK)
        if not chunk:
            raise TransportError(
                "Connection closed before a complete message was received",
                code="CONNECTION_CLOSED",
                details={"received_bytes": len(buf)},
            )
        idx = chunk.find(b"\n")
        if idx >= 0:
            buf += chunk[:idx]
            if max_bytes is not None and len(buf) > max_bytes:
                break
            return bytes(buf)
        buf += chunk
        if max_bytes is not None and len(buf) > max_bytes:
            break
    raise ProtocolError(
        f"Request exceeds {max_bytes} bytes",
        code="REQUEST_TOO_LARGE",
        details={"max_bytes": max_bytes},
    )
