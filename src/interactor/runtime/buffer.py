"""
RuntimeBuffer：worker 进程内的两个有界 append-only 日志（console 事件 / 错误事件）。

说明：
- 每个日志超过上限时淘汰最旧条目；
- 只属于当前 worker 进程，不跨进程共享、不落盘；
- connection 在不同线程上处理，读写都在锁内完成，读方拿到的是单个日志的一致快照。
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Deque, Dict, List, Optional

from interactor.core.utils import now_ms


@dataclass(frozen=True)
class ConsoleEntry:
    """console 事件（type/text/location/timestamp）。"""

    type: str
    text: str
    location: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)


@dataclass(frozen=True)
class ErrorEntry:
    """错误事件（message/stack/timestamp）。"""

    message: str
    stack: Optional[str] = None
    timestamp: int = field(default_factory=now_ms)


class RuntimeBuffer:
    """两个有界日志（上限相同，各自独立淘汰）。"""

    def __init__(self, max_entries: int = 1000) -> None:
        """
        创建 runtime buffer。

        参数：
        - max_entries：每个日志的最大条目数（>=1）
        """

        if int(max_entries) < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = int(max_entries)
        self._lock = threading.Lock()
        self._console: Deque[ConsoleEntry] = deque(maxlen=self.max_entries)
        self._errors: Deque[ErrorEntry] = deque(maxlen=self.max_entries)

    def add_console(self, entry: ConsoleEntry) -> None:
        """追加一条 console 事件。"""

        with self._lock:
            self._console.append(entry)

    def add_error(self, entry: ErrorEntry) -> None:
        """追加一条错误事件。"""

        with self._lock:
            self._errors.append(entry)

    def console_entries(self) -> List[Dict[str, Any]]:
        """console 日志快照（旧 → 新）。"""

        with self._lock:
            return [asdict(e) for e in self._console]

    def page_errors(self) -> List[Dict[str, Any]]:
        """错误日志快照（旧 → 新）。"""

        with self._lock:
            return [asdict(e) for e in self._errors]

    def snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        """在同一把锁内同时取两个日志的快照。"""

        with self._lock:
            return {
                "console": [asdict(e) for e in self._console],
                "errors": [asdict(e) for e in self._errors],
            }

    def clear(self) -> Dict[str, int]:
        """清空两个日志，返回各自被清掉的条目数。"""

        with self._lock:
            counts = {"console": len(self._console), "errors": len(self._errors)}
            self._console.clear()
            self._errors.clear()
        return counts
