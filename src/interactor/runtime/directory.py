"""
Instance Directory：实例 metadata 记录的落盘与读取。

语义：
- 每个运行中的实例在 scope 目录下有两份并列文件：`<base>.sock`（channel）与 `<base>.meta.json`（metadata）；
- metadata 仅是“建议性”记录：存在不代表 worker 可达，必须由 discovery 主动探测佐证；
- worker 异常退出会遗留孤儿文件；读取时单个文件解析失败只跳过该文件，不影响其它记录。
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import List, Union

from pydantic import ValidationError

from interactor.core.errors import ProtocolError
from interactor.runtime.paths import META_EXT, ConcreteScope, ScopeDirs, get_meta_path, get_socket_path
from interactor.wire.protocol import InstanceInfo, decode_json

logger = logging.getLogger(__name__)


def cleanup_path(path: Union[str, Path]) -> None:
    """
    删除文件；文件不存在不是错误（幂等）。

    异常：
    - OSError：除“不存在”以外的删除失败原样上抛
    """

    try:
        Path(path).unlink()
    except FileNotFoundError:
        return


class InstanceDirectory:
    """按 scope 管理实例 metadata / channel 文件。"""

    def __init__(self, dirs: ScopeDirs) -> None:
        """
        创建 Instance Directory。

        参数：
        - dirs：两个 scope 的物理目录
        """

        self.dirs = dirs

    def ensure_dir(self, scope: ConcreteScope) -> Path:
        """确保 scope 目录存在并返回其路径。"""

        d = self.dirs.dir_for(scope)
        d.mkdir(parents=True, exist_ok=True)
        return d

    def socket_path(self, name: str, pid: int, scope: ConcreteScope) -> Path:
        """实例的 channel 地址。"""

        return get_socket_path(name, pid, scope, self.dirs)

    def meta_path(self, name: str, pid: int, scope: ConcreteScope) -> Path:
        """实例的 metadata 文件路径。"""

        return get_meta_path(name, pid, scope, self.dirs)

    def write(self, info: InstanceInfo, scope: ConcreteScope) -> Path:
        """
        写入 metadata（pretty-printed JSON，tab 缩进；POSIX 下尽力 0600）。

        说明：
        - 先写临时文件再 replace，读方不会看到半写入的 JSON；
        - 临时文件后缀不是 `.meta.json`，不会被 `list_scope` 误读。
        """

        self.ensure_dir(scope)
        path = self.meta_path(info.name, info.pid, scope)
        tmp = path.with_name(path.name + ".tmp")
        text = json.dumps(info.to_wire(), ensure_ascii=False, indent="\t")
        fd = os.open(str(tmp), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        tmp.replace(path)
        return path

    def remove(self, info: InstanceInfo, scope: ConcreteScope) -> None:
        """删除 metadata 与 channel 文件（幂等）。"""

        cleanup_path(self.meta_path(info.name, info.pid, scope))
        cleanup_path(info.socket_path)

    def list_scope(self, scope: ConcreteScope) -> List[InstanceInfo]:
        """
        读取一个 scope 下的全部 metadata 记录。

        规则：
        - 只看 `*.meta.json`；按文件名排序，结果稳定；
        - 读失败 / 非 JSON / 形状不符的文件跳过并继续（孤儿或损坏记录属于常规噪声）。
        """

        d = self.ensure_dir(scope)
        out: List[InstanceInfo] = []
        for entry in sorted(d.iterdir()):
            if not entry.name.endswith(META_EXT):
                continue
            try:
                raw = entry.read_text(encoding="utf-8")
                out.append(InstanceInfo.model_validate(decode_json(raw)))
            except (OSError, ProtocolError, ValidationError):
                logger.debug("Skipping unreadable interactor metadata %s", entry, exc_info=True)
                continue
        return out
