"""
受控会话（controlled session）。

worker 持有唯一一个会话对象，所有 execute 批次都作用在它上面（因此 execute 必须串行）。
内置实现 `DocumentSession`：内存中的 JSON 文档（target 描述 + key/value 映射 + revision 计数）。
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Dict, List, Protocol, runtime_checkable

from interactor.core.errors import CommandError


@runtime_checkable
class ControlledSession(Protocol):
    """受控会话协议：worker 退出时会调用 `close()`。"""

    def close(self) -> None:
        """释放会话资源（幂等）。"""


class DocumentSession:
    """
    内存 JSON 文档会话。

    说明：
    - 写操作递增 revision；
    - 关闭后的任何操作抛 CommandError(SESSION_CLOSED)。
    """

    def __init__(self, target: str) -> None:
        """
        创建会话。

        参数：
        - target：会话目标描述（写入实例 metadata 的 `url` 字段）
        """

        self.target = str(target)
        self._lock = threading.Lock()
        self._values: Dict[str, Any] = {}
        self._revision = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        """会话是否已关闭。"""

        return self._closed

    def _ensure_open(self) -> None:
        """关闭后拒绝访问。"""

        if self._closed:
            raise CommandError("Session is closed", code="SESSION_CLOSED")

    def get(self, key: str) -> Any:
        """读取一个键（不存在返回 None）。"""

        with self._lock:
            self._ensure_open()
            return copy.deepcopy(self._values.get(key))

    def set(self, key: str, value: Any) -> int:
        """写入一个键，返回新的 revision。"""

        with self._lock:
            self._ensure_open()
            self._values[key] = copy.deepcopy(value)
            self._revision += 1
            return self._revision

    def delete(self, key: str) -> bool:
        """删除一个键，返回是否存在过。"""

        with self._lock:
            self._ensure_open()
            existed = key in self._values
            if existed:
                del self._values[key]
                self._revision += 1
            return existed

    def keys(self) -> List[str]:
        """按插入顺序返回全部键。"""

        with self._lock:
            self._ensure_open()
            return list(self._values.keys())

    def snapshot(self) -> Dict[str, Any]:
        """返回 target/revision/values 的深拷贝快照。"""

        with self._lock:
            self._ensure_open()
            return {"target": self.target, "revision": self._revision, "values": copy.deepcopy(self._values)}

    def close(self) -> None:
        """关闭会话（幂等）。"""

        with self._lock:
            self._closed = True
