from __future__ import annotations

import os
import socket
import subprocess
import sys
import threading
from pathlib import Path

import pytest

from interactor.config.loader import InteractorConfig
from interactor.core.errors import DiscoveryError
from interactor.runtime.directory import InstanceDirectory
from interactor.runtime.discovery import Discovery, pid_alive
from interactor.runtime.paths import get_scope_dirs
from interactor.wire.protocol import InstanceInfo

from conftest import SpawnServer, requires_unix_sockets

pytestmark = requires_unix_sockets


def _dead_pid() -> int:
    """返回一个刚刚退出的进程 pid。"""

    p = subprocess.Popen([sys.executable, "-c", "pass"])
    p.wait(timeout=30)
    return int(p.pid)


def _write_record(config: InteractorConfig, name: str, pid: int, socket_path: Path) -> InstanceInfo:
    """直接写一条 metadata 记录（模拟孤儿/伪造记录）。"""

    directory = InstanceDirectory(get_scope_dirs(config))
    info = InstanceInfo(name=name, url="about:blank", pid=pid, started_at=0, socket_path=str(socket_path))
    directory.write(info, "local")
    return info


def test_pid_alive() -> None:
    """当前进程存活；已退出进程不存活；非正数 pid 不存活。"""

    assert pid_alive(os.getpid()) is True
    assert pid_alive(_dead_pid()) is False
    assert pid_alive(0) is False


def test_record_with_dead_pid_is_not_live(interactor_config: InteractorConfig, tmp_path: Path) -> None:
    """进程已不存在的记录：已知但不存活（不尝试连接）。"""

    _write_record(interactor_config, "ghost", _dead_pid(), tmp_path / "ghost.sock")
    discovery = Discovery.from_config(interactor_config)

    assert [i.name for i in discovery.list_known("local")] == ["ghost"]
    assert discovery.list_live("auto") == []


def test_record_with_live_pid_but_no_channel_is_not_live(interactor_config: InteractorConfig, tmp_path: Path) -> None:
    """pid 存活（被复用）但地址无人监听：探测失败 → 不存活。"""

    _write_record(interactor_config, "reused", os.getpid(), tmp_path / "nobody-listens.sock")
    assert Discovery.from_config(interactor_config).list_live("local") == []


def test_record_answering_garbage_is_not_live(interactor_config: InteractorConfig, tmp_path: Path) -> None:
    """地址可连接但应答不是合法响应：不存活。"""

    sock_path = tmp_path / "garbage.sock"
    listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    listener.bind(str(sock_path))
    listener.listen(4)

    def _serve_once() -> None:
        """读一行请求后回一行非 JSON。"""

        conn, _ = listener.accept()
        with conn:
            conn.recv(65536)
            conn.sendall(b"definitely not json\n")

    t = threading.Thread(target=_serve_once, daemon=True)
    t.start()
    try:
        _write_record(interactor_config, "garbage", os.getpid(), sock_path)
        assert Discovery.from_config(interactor_config).list_live("local") == []
    finally:
        t.join(timeout=5)
        listener.close()


def test_resolve_single_named_and_errors(interactor_config: InteractorConfig, spawn_server: SpawnServer) -> None:
    """零个 / 一个 / 指定名称 / 多个 的解析结果。"""

    discovery = Discovery.from_config(interactor_config)

    with pytest.raises(DiscoveryError) as e0:
        discovery.resolve_by_name_or_single(None)
    assert e0.value.code == "NO_INSTANCES"
    assert e0.value.message == "No running interactors were found"

    spawn_server("default")
    assert discovery.resolve_by_name_or_single(None).name == "default"
    assert discovery.resolve_by_name_or_single("default").pid == os.getpid()

    with pytest.raises(DiscoveryError) as e1:
        discovery.resolve_by_name_or_single("other")
    assert e1.value.code == "INSTANCE_NOT_FOUND"
    assert e1.value.message == 'No running interactor found for name "other"'

    spawn_server("other")
    assert discovery.resolve_by_name_or_single("other").name == "other"
    with pytest.raises(DiscoveryError) as e2:
        discovery.resolve_by_name_or_single(None)
    assert e2.value.code == "AMBIGUOUS_INSTANCE"
    assert e2.value.message == "Multiple interactors are running. Pass --name to select one."


def test_auto_scope_lists_local_before_global(interactor_config: InteractorConfig, spawn_server: SpawnServer) -> None:
    """auto：local 在前，global 在后；显式 scope 只看自己。"""

    spawn_server("zeta", scope="local")
    spawn_server("alpha", scope="global")
    discovery = Discovery.from_config(interactor_config)

    assert [i.name for i in discovery.list_live("auto")] == ["zeta", "alpha"]
    assert [i.name for i in discovery.list_live("local")] == ["zeta"]
    assert [i.name for i in discovery.list_live("global")] == ["alpha"]
    assert discovery.find_by_name("alpha", "local") is None


def test_live_and_orphan_records_coexist(
    interactor_config: InteractorConfig, spawn_server: SpawnServer, tmp_path: Path
) -> None:
    """孤儿记录不影响同 scope 内存活实例的解析。"""

    _write_record(interactor_config, "default", _dead_pid(), tmp_path / "stale.sock")
    spawn_server("default")
    live = Discovery.from_config(interactor_config).list_live("local")
    assert [(i.name, i.pid) for i in live] == [("default", os.getpid())]
