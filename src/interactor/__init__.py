"""
interactor：具名、单实例的本地 worker 进程，通过 Unix socket 上的单行 JSON 协议被控制。

常用入口：
- `InteractorServer`：启动 worker（bind + metadata + single-flight execute 队列）
- `InteractorClient`：按名称/唯一存活实例定位 worker 并发送 info/events/execute
- `Discovery`：枚举已知实例并过滤出存活实例
"""

from __future__ import annotations

from interactor.commands import CommandRegistry, DocumentSession, build_default_registry, define_command
from interactor.config import InteractorConfig, load_config
from interactor.core.errors import (
    CommandError,
    DiscoveryError,
    InteractorError,
    ProtocolError,
    RemoteError,
    TransportError,
)
from interactor.runtime.client import InteractorClient
from interactor.runtime.discovery import Discovery
from interactor.runtime.request import request_interactor
from interactor.runtime.server import InteractorServer

__version__ = "0.1.0"

__all__ = [
    "CommandError",
    "CommandRegistry",
    "Discovery",
    "DiscoveryError",
    "DocumentSession",
    "InteractorClient",
    "InteractorConfig",
    "InteractorError",
    "InteractorServer",
    "ProtocolError",
    "RemoteError",
    "TransportError",
    "__version__",
    "build_default_registry",
    "define_command",
    "load_config",
    "request_interactor",
]
