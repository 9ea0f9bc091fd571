from __future__ import annotations

import json
import os
import stat
import tempfile
from pathlib import Path

import pytest

from interactor.runtime.directory import InstanceDirectory, cleanup_path
from interactor.runtime.paths import (
    ScopeDirs,
    get_base_name,
    get_meta_path,
    get_scope_dirs,
    get_socket_path,
    resolve_lookup_scopes,
    sanitize_name,
)
from interactor.wire.protocol import InstanceInfo

from conftest import make_config


def _info(name: str, pid: int, socket_path: Path) -> InstanceInfo:
    """构造测试用 metadata。"""

    return InstanceInfo(name=name, url="about:blank", pid=pid, started_at=1700000000000, socket_path=str(socket_path))


def test_base_name_sanitizes_and_appends_pid() -> None:
    """小写化，非 `[a-z0-9_-]` 替换为 `-`，后缀 pid。"""

    assert sanitize_name("My_Worker-1") == "my_worker-1"
    assert sanitize_name("a.b c") == "a-b-c"
    assert get_base_name("Default", 123) == "default-123"


def test_scope_paths_are_siblings(tmp_path: Path) -> None:
    """channel 与 metadata 同目录、同 base name。"""

    dirs = ScopeDirs(local_dir=tmp_path / "l", global_dir=tmp_path / "g")
    sock = get_socket_path("default", 7, "local", dirs)
    meta = get_meta_path("default", 7, "local", dirs)
    if len(str(tmp_path / "l" / "default-7.sock")) <= 90:
        assert sock == tmp_path / "l" / "default-7.sock"
    assert meta == tmp_path / "l" / "default-7.meta.json"
    assert get_meta_path("default", 7, "global", dirs).parent == tmp_path / "g"


def test_long_socket_path_falls_back_to_short_deterministic_path(tmp_path: Path) -> None:
    """AF_UNIX 路径超长时降级到 tempdir 下的 hash 路径（同输入同输出）。"""

    deep = tmp_path / ("d" * 120)
    dirs = ScopeDirs(local_dir=deep, global_dir=deep)
    p1 = get_socket_path("default", 7, "local", dirs)
    p2 = get_socket_path("default", 7, "local", dirs)
    assert p1 == p2
    assert p1.parent == Path(tempfile.gettempdir())
    assert p1.name.startswith("interactor-") and p1.name.endswith(".sock")
    assert get_socket_path("default", 8, "local", dirs) != p1


def test_lookup_scope_order() -> None:
    """auto = local 在前、global 在后。"""

    assert resolve_lookup_scopes("auto") == ["local", "global"]
    assert resolve_lookup_scopes("local") == ["local"]
    assert resolve_lookup_scopes("global") == ["global"]
    with pytest.raises(ValueError):
        resolve_lookup_scopes("everywhere")  # type: ignore[arg-type]


def test_scope_dirs_from_config(tmp_path: Path) -> None:
    """相对 local_dir 相对 cwd 解析；global_dir 缺省为 `<tempdir>/interactors`。"""

    cfg = make_config(tmp_path, scopes={"local_dir": "rel", "global_dir": None})
    dirs = get_scope_dirs(cfg, cwd=tmp_path)
    assert dirs.local_dir == (tmp_path / "rel").resolve()
    assert dirs.global_dir == (Path(tempfile.gettempdir()) / "interactors").resolve()


def test_write_is_tab_indented_private_and_listable(tmp_path: Path) -> None:
    """metadata：tab 缩进 JSON，0600，可被 list_scope 读回。"""

    directory = InstanceDirectory(ScopeDirs(local_dir=tmp_path / "l", global_dir=tmp_path / "g"))
    info = _info("default", 4242, tmp_path / "l" / "default-4242.sock")
    path = directory.write(info, "local")

    text = path.read_text(encoding="utf-8")
    assert '\n\t"name": "default"' in text
    assert json.loads(text)["socketPath"] == info.socket_path
    if os.name != "nt":
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    assert directory.list_scope("local") == [info]
    assert directory.list_scope("global") == []


def test_list_scope_skips_corrupt_and_unrelated_files(tmp_path: Path) -> None:
    """单个损坏记录只跳过自己；非 `.meta.json` 文件被忽略。"""

    dirs = ScopeDirs(local_dir=tmp_path / "l", global_dir=tmp_path / "g")
    directory = InstanceDirectory(dirs)
    good = _info("good", 11, tmp_path / "l" / "good-11.sock")
    directory.write(good, "local")

    d = dirs.local_dir
    (d / "broken-12.meta.json").write_text("{not json", encoding="utf-8")
    (d / "wrongshape-13.meta.json").write_text(json.dumps({"name": "x"}), encoding="utf-8")
    (d / "badname-14.meta.json").write_text(
        json.dumps({"name": "-bad", "url": "u", "pid": 14, "startedAt": 0, "socketPath": "/x"}),
        encoding="utf-8",
    )
    (d / "notes.txt").write_text("hello", encoding="utf-8")
    (d / "good-11.meta.json.tmp").write_text("{}", encoding="utf-8")

    assert directory.list_scope("local") == [good]


def test_remove_is_idempotent(tmp_path: Path) -> None:
    """删除 metadata + channel；文件已不存在不报错。"""

    directory = InstanceDirectory(ScopeDirs(local_dir=tmp_path / "l", global_dir=tmp_path / "g"))
    sock = tmp_path / "l" / "default-5.sock"
    info = _info("default", 5, sock)
    meta = directory.write(info, "local")
    sock.write_text("", encoding="utf-8")

    directory.remove(info, "local")
    assert not meta.exists()
    assert not sock.exists()

    directory.remove(info, "local")
    cleanup_path(sock)
