from __future__ import annotations

import os
import signal
import subprocess
import time
from pathlib import Path

import pytest

from interactor.config.loader import InteractorConfig
from interactor.runtime.discovery import Discovery
from interactor.runtime.server import InteractorServer
from interactor.wire.protocol import InstanceInfo

from conftest import PYTHON, requires_unix_sockets

pytestmark = [
    requires_unix_sockets,
    pytest.mark.skipif(not hasattr(signal, "SIGKILL"), reason="requires POSIX signals"),
]


def _start_worker(tmp_path: Path, env: dict, name: str) -> subprocess.Popen:
    """以子进程方式运行 `python -m interactor start`（stderr 落盘便于排查）。"""

    with open(tmp_path / f"{name}.log", "wb") as log:
        return subprocess.Popen(
            [PYTHON, "-m", "interactor", "start", "--name", name, "--target", "doc://child"],
            cwd=str(tmp_path),
            env=env,
            stdout=subprocess.DEVNULL,
            stderr=log,
        )


def _wait_live(discovery: Discovery, name: str, proc: subprocess.Popen, timeout: float = 30.0) -> InstanceInfo:
    """等待子进程 worker 变为可达。"""

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        info = discovery.find_by_name(name, "local")
        if info is not None:
            return info
        if proc.poll() is not None:
            raise AssertionError(f"worker exited early with code {proc.returncode}")
        time.sleep(0.05)
    raise AssertionError("worker did not become live in time")


def test_sigkill_leaves_orphan_that_discovery_ignores(
    tmp_path: Path, python_env: dict, interactor_config: InteractorConfig
) -> None:
    """
    worker 被强杀：metadata/socket 作为孤儿遗留；

    断言：
    - 孤儿记录仍是“已知”，但不是“存活”；
    - 同名新 worker 可以正常启动。
    """

    discovery = Discovery.from_config(interactor_config)
    proc = _start_worker(tmp_path, python_env, "victim")
    try:
        info = _wait_live(discovery, "victim", proc)
        assert info.pid == proc.pid
        assert info.url == "doc://child"
    finally:
        proc.kill()
        proc.wait(timeout=30)

    assert [i.name for i in discovery.list_known("local")] == ["victim"]
    assert Path(info.socket_path).exists()
    assert discovery.list_live("auto") == []

    replacement = InteractorServer(name="victim", url="about:blank", scope="local", config=interactor_config)
    thread = replacement.serve_in_background()
    try:
        live = discovery.list_live("local")
        assert [(i.name, i.pid) for i in live] == [("victim", os.getpid())]
    finally:
        replacement.stop()
        thread.join(timeout=15)


def test_sigterm_shuts_down_gracefully(tmp_path: Path, python_env: dict, interactor_config: InteractorConfig) -> None:
    """SIGTERM：worker 正常退出（exit 0）并删除自己的 metadata 与 socket。"""

    discovery = Discovery.from_config(interactor_config)
    proc = _start_worker(tmp_path, python_env, "polite")
    try:
        info = _wait_live(discovery, "polite", proc)
        proc.send_signal(signal.SIGTERM)
        assert proc.wait(timeout=30) == 0
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait(timeout=30)

    assert discovery.list_known("local") == []
    assert not Path(info.socket_path).exists()
