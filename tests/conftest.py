from __future__ import annotations

import os
import socket
import sys
import threading
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

import pytest

from interactor.commands.registry import CommandRegistry
from interactor.config.loader import InteractorConfig, load_config_dicts
from interactor.runtime.paths import ConcreteScope
from interactor.runtime.server import InteractorServer

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"

requires_unix_sockets = pytest.mark.skipif(
    os.name == "nt" or not hasattr(socket, "AF_UNIX"),
    reason="unix domain sockets are required",
)


def make_config(tmp_path: Path, **overrides: dict) -> InteractorConfig:
    """构造把两个 scope 目录都放进 tmp_path 的测试配置。"""

    base = {
        "scopes": {"local_dir": str(tmp_path / "local"), "global_dir": str(tmp_path / "global")},
        "discovery": {"probe_timeout_sec": 2.0},
        "client": {"request_timeout_sec": 10.0},
        "server": {"shutdown_timeout_sec": 5.0},
    }
    return load_config_dicts([base, dict(overrides)])


@pytest.fixture
def interactor_config(tmp_path: Path) -> InteractorConfig:
    """每个测试独立的 scope 目录。"""

    return make_config(tmp_path)


SpawnServer = Callable[..., InteractorServer]


@pytest.fixture
def spawn_server(interactor_config: InteractorConfig) -> Iterator[SpawnServer]:
    """
    在当前进程的后台线程上启动 worker；测试结束时统一优雅退出。

    用法：`server = spawn_server("default", scope="local", registry=...)`
    """

    running: List[Tuple[InteractorServer, threading.Thread]] = []

    def _spawn(
        name: str = "default",
        *,
        scope: ConcreteScope = "local",
        registry: Optional[CommandRegistry] = None,
        config: Optional[InteractorConfig] = None,
        url: str = "about:blank",
    ) -> InteractorServer:
        """启动一个 worker 并登记以便清理。"""

        server = InteractorServer(
            name=name,
            url=url,
            scope=scope,
            config=config or interactor_config,
            registry=registry,
        )
        thread = server.serve_in_background()
        running.append((server, thread))
        return server

    yield _spawn

    for server, thread in running:
        server.stop()
    for server, thread in running:
        thread.join(timeout=15)
        assert not thread.is_alive(), f"interactor {server.name} did not stop"


@pytest.fixture
def python_env(tmp_path: Path) -> dict:
    """子进程环境：能 import `src/` 下的包，并共享测试的 scope 目录。"""

    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join([str(SRC_ROOT), env.get("PYTHONPATH", "")]).rstrip(os.pathsep)
    env["INTERACTOR_LOCAL_DIR"] = str(tmp_path / "local")
    env["INTERACTOR_GLOBAL_DIR"] = str(tmp_path / "global")
    env["PYTHONUNBUFFERED"] = "1"
    env.setdefault("PYTHONIOENCODING", "utf-8")
    return env


PYTHON = sys.executable
