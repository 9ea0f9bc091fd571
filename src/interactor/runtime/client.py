"""
InteractorClient：按名称（或“唯一存活实例”）定位 worker，并发送 info/events/execute 请求。

对齐 CLI 的用法：
- `interactor ps` / `interactor info` / `interactor execute` 都是本模块之上的薄封装。
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from interactor.config.loader import InteractorConfig, load_config
from interactor.core.errors import RemoteError
from interactor.core.utils import new_request_id
from interactor.runtime.discovery import Discovery
from interactor.runtime.paths import Scope
from interactor.runtime.request import AnyRequest, request_interactor
from interactor.wire.protocol import (
    EventsRequest,
    ExecuteEvent,
    ExecuteRequest,
    FailureResponse,
    InfoRequest,
    InstanceInfo,
    encode_json,
)


class InteractorClient:
    """
    面向调用方的 client：每次调用都重新经 discovery 解析目标，再做单次往返。

    说明：
    - 目标解析不缓存（worker 可能在两次调用之间退出）；
    - `ok:"false"` 在此层转换为 RemoteError，与 TransportError 可区分。
    """

    def __init__(
        self,
        *,
        name: Optional[str] = None,
        scope: Scope = "auto",
        config: Optional[InteractorConfig] = None,
        discovery: Optional[Discovery] = None,
    ) -> None:
        """
        创建 client。

        参数：
        - name：目标实例名；None 表示“恰好一个存活实例”
        - scope：查找范围（auto/local/global）
        - config：有效配置（默认 `load_config()`）
        - discovery：可注入的 Discovery（默认按 config 构造）
        """

        self._config = config or load_config()
        self._discovery = discovery or Discovery.from_config(self._config)
        self._name = name
        self._scope: Scope = scope

    def resolve(self) -> InstanceInfo:
        """解析目标实例（失败抛 DiscoveryError）。"""

        return self._discovery.resolve_by_name_or_single(self._name, self._scope)

    def _call(self, request: AnyRequest, *, target: Optional[InstanceInfo] = None) -> Any:
        """
        发送请求并返回解码后的 `dataJson`；失败响应抛 RemoteError。

        参数：
        - target：已解析的目标实例；None 时先经 discovery 解析
        """

        target = target or self.resolve()
        resp = request_interactor(
            target.socket_path,
            request,
            timeout_sec=self._config.client.request_timeout_sec,
        )
        if isinstance(resp, FailureResponse):
            raise RemoteError(resp.error, request_id=resp.id, details={"instance": target.name})
        return resp.data()

    def info(self, *, target: Optional[InstanceInfo] = None) -> Dict[str, Any]:
        """`info`：实例元数据 + 命令清单。"""

        return self._call(InfoRequest(id=new_request_id()), target=target)

    def events(self, *, target: Optional[InstanceInfo] = None) -> List[Dict[str, Any]]:
        """`events`：命令清单。"""

        return self._call(EventsRequest(id=new_request_id()), target=target)

    def execute(self, events: Sequence[Tuple[str, Mapping[str, Any]]], *, target: Optional[InstanceInfo] = None) -> List[Any]:
        """
        `execute`：按顺序执行一批命令，返回每条命令的结果列表。

        参数：
        - events：`(event_name, input)` 序列（至少一条）
        """

        return self.execute_raw([(n, encode_json(dict(i))) for n, i in events], target=target)

    def execute_raw(self, events: Sequence[Tuple[str, str]], *, target: Optional[InstanceInfo] = None) -> List[Any]:
        """
        与 `execute` 相同，但 input 以原始 JSON 文本发送（由 worker 负责解析与校验）。

        参数：
        - events：`(event_name, input_json)` 序列（至少一条）
        """

        request = ExecuteRequest(
            id=new_request_id(),
            events=[ExecuteEvent(event_name=n, input_json=raw) for n, raw in events],
        )
        results = self._call(request, target=target)
        if not isinstance(results, list):
            raise RemoteError("Interactor execute response was not an array", request_id=request.id)
        return results

    def execute_one(
        self,
        event_name: str,
        input: Optional[Mapping[str, Any]] = None,
        *,
        target: Optional[InstanceInfo] = None,
    ) -> Any:
        """执行单条命令并返回其结果。"""

        results = self.execute([(event_name, input or {})], target=target)
        if len(results) != 1:
            raise RemoteError(
                f"Interactor execute response expected exactly one result, received {len(results)}",
                request_id="",
            )
        return results[0]
