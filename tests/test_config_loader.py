from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from interactor.config.defaults import load_default_config_dict
from interactor.config.loader import load_config, load_config_dicts


def test_default_config_is_packaged_and_valid() -> None:
    """内置默认配置随 package 分发，且能通过 schema 校验。"""

    raw = load_default_config_dict()
    assert raw["config_version"] == 1

    cfg = load_config_dicts([])
    assert cfg.scopes.local_dir == ".interactor"
    assert cfg.scopes.global_dir is None
    assert cfg.client.request_timeout_sec == 30.0
    assert cfg.discovery.probe_timeout_sec == 1.0
    assert cfg.server.max_request_bytes == 1024 * 1024
    assert cfg.runtime.max_buffer_entries == 1000


def test_overlays_deep_merge_in_order() -> None:
    """后面的 overlay 覆盖前面的；未提及的字段保留默认值。"""

    cfg = load_config_dicts(
        [
            {"client": {"request_timeout_sec": 5}},
            {"client": {"request_timeout_sec": 7}, "server": {"shutdown_timeout_sec": 0}},
        ]
    )
    assert cfg.client.request_timeout_sec == 7
    assert cfg.server.shutdown_timeout_sec == 0
    assert cfg.server.connection_timeout_sec == 30.0


@pytest.mark.parametrize(
    "overlay",
    [
        {"client": {"request_timeout": 1}},
        {"unknown_section": {}},
        {"client": {"request_timeout_sec": 0}},
        {"runtime": {"max_buffer_entries": 0}},
    ],
)
def test_invalid_config_is_rejected(overlay: dict) -> None:
    """未知字段与越界数值都会被拒绝（不静默吞掉拼写错误）。"""

    with pytest.raises(ValidationError):
        load_config_dicts([overlay])


def test_load_config_layers_workspace_explicit_and_env(tmp_path: Path) -> None:
    """优先级：默认 < `.interactor/config.yaml` < `--config` < 环境变量。"""

    ws_overlay = tmp_path / ".interactor" / "config.yaml"
    ws_overlay.parent.mkdir(parents=True)
    ws_overlay.write_text(
        "client:\n  request_timeout_sec: 3\nscopes:\n  local_dir: from-workspace\n",
        encoding="utf-8",
    )
    explicit = tmp_path / "extra.yaml"
    explicit.write_text("client:\n  request_timeout_sec: 4\n", encoding="utf-8")

    cfg = load_config(["extra.yaml"], cwd=tmp_path, env={})
    assert cfg.client.request_timeout_sec == 4
    assert cfg.scopes.local_dir == "from-workspace"

    cfg2 = load_config(
        [explicit],
        cwd=tmp_path,
        env={"INTERACTOR_LOCAL_DIR": "/srv/local", "INTERACTOR_GLOBAL_DIR": "/srv/global"},
    )
    assert cfg2.scopes.local_dir == "/srv/local"
    assert cfg2.scopes.global_dir == "/srv/global"


def test_load_config_missing_or_non_mapping_file(tmp_path: Path) -> None:
    """overlay 文件不存在 / 根节点不是 mapping → 明确报错。"""

    with pytest.raises(FileNotFoundError):
        load_config([tmp_path / "nope.yaml"], cwd=tmp_path, env={})

    bad = tmp_path / "list.yaml"
    bad.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config([bad], cwd=tmp_path, env={})


def test_empty_overlay_file_is_allowed(tmp_path: Path) -> None:
    """空 YAML 文件等价于空 overlay。"""

    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    cfg = load_config([empty], cwd=tmp_path, env={})
    assert cfg.client.request_timeout_sec == 30.0
