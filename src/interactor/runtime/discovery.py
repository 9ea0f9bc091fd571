"""
Discovery Service：把“已知”实例（有 metadata 记录）转换为“存活”实例（真实可达），并解析单一目标。

存活判定（每次调用都重新探测，不跨调用缓存）：
1) 廉价的 OS 预检：对 pid 发送信号 0；进程不存在则直接跳过，不尝试连接；
2) 协议探测：向记录中的地址发送一个 `info` 请求（新的关联 id + 有界等待）；
   无响应 / 响应畸形 / 失败响应 → 视为死亡并跳过（不向调用方暴露错误）。
两步保持显式且有序：失败语义与成本不同，不折叠成一个抽象。
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional

from interactor.config.loader import InteractorConfig
from interactor.core.errors import DiscoveryError, InteractorError
from interactor.core.utils import new_request_id
from interactor.runtime.directory import InstanceDirectory
from interactor.runtime.paths import Scope, ScopeDirs, get_scope_dirs, resolve_lookup_scopes
from interactor.runtime.request import request_interactor
from interactor.wire.protocol import InfoRequest, InstanceInfo, SuccessResponse

logger = logging.getLogger(__name__)


def pid_alive(pid: int) -> bool:
    """
    判断 pid 是否存活（best-effort）。

    说明：
    - 权限不足（EPERM）说明进程存在，只是不属于当前用户，视为存活；
    - PID 会被复用，因此该结果只用于预检，不能单独作为存活依据。
    """

    if int(pid) <= 0:
        return False
    try:
        os.kill(int(pid), 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class Discovery:
    """实例发现（跨 scope 枚举 + 存活过滤 + 目标解析）。"""

    def __init__(self, directory: InstanceDirectory, *, probe_timeout_sec: float = 1.0) -> None:
        """
        创建 Discovery。

        参数：
        - directory：Instance Directory（决定 scope 目录）
        - probe_timeout_sec：协议探测的等待上限（秒）
        """

        self.directory = directory
        self.probe_timeout_sec = float(probe_timeout_sec)

    @classmethod
    def from_config(cls, config: InteractorConfig, *, dirs: Optional[ScopeDirs] = None) -> "Discovery":
        """按有效配置构造 Discovery。"""

        return cls(
            InstanceDirectory(dirs or get_scope_dirs(config)),
            probe_timeout_sec=config.discovery.probe_timeout_sec,
        )

    def list_known(self, scope: Scope = "auto") -> List[InstanceInfo]:
        """
        列出所有已知实例（按 scope 顺序拼接；`auto` 为 local 在前）。

        说明：
        - 单个 scope 目录不可读时记录 warning 并视为空，不影响其它 scope。
        """

        known: List[InstanceInfo] = []
        for selected in resolve_lookup_scopes(scope):
            try:
                known.extend(self.directory.list_scope(selected))
            except OSError:
                logger.warning("Couldn't read interactors from scope %s", selected, exc_info=True)
        return known

    def probe(self, info: InstanceInfo) -> bool:
        """
        判断一条记录是否存活（先 OS 预检，再协议探测）。

        返回：
        - True：进程存在且对 `info` 请求返回了成功响应
        """

        if not pid_alive(info.pid):
            logger.debug("Interactor %s (pid %s) is not running; skipping", info.name, info.pid)
            return False
        try:
            resp = request_interactor(
                info.socket_path,
                InfoRequest(id=new_request_id()),
                timeout_sec=self.probe_timeout_sec,
            )
        except InteractorError:
            logger.debug("Interactor %s did not answer probe at %s", info.name, info.socket_path, exc_info=True)
            return False
        return isinstance(resp, SuccessResponse)

    def list_live(self, scope: Scope = "auto") -> List[InstanceInfo]:
        """列出当前存活的实例（每次调用都重新探测）。"""

        return [info for info in self.list_known(scope) if self.probe(info)]

    def find_by_name(self, name: str, scope: Scope = "auto") -> Optional[InstanceInfo]:
        """按名称精确查找存活实例；不存在返回 None。"""

        for info in self.list_live(scope):
            if info.name == name:
                return info
        return None

    def resolve_by_name_or_single(self, name: Optional[str], scope: Scope = "auto") -> InstanceInfo:
        """
        解析单一目标实例。

        规则：
        - 给定 name：存活实例中精确匹配；不存在 → DiscoveryError(INSTANCE_NOT_FOUND)
        - 未给 name：恰好一个 → 返回；零个 → NO_INSTANCES；多个 → AMBIGUOUS_INSTANCE
          （多个时拒绝而不是任选一个：选错目标对调用方是正确性风险）
        """

        live = self.list_live(scope)
        if name is not None:
            for info in live:
                if info.name == name:
                    return info
            raise DiscoveryError(
                f'No running interactor found for name "{name}"',
                code="INSTANCE_NOT_FOUND",
                details={"name": name, "scope": scope},
            )

        if len(live) == 1:
            return live[0]
        if not live:
            raise DiscoveryError("No running interactors were found", code="NO_INSTANCES", details={"scope": scope})
        raise DiscoveryError(
            "Multiple interactors are running. Pass --name to select one.",
            code="AMBIGUOUS_INSTANCE",
            details={"scope": scope, "names": [i.name for i in live]},
        )
