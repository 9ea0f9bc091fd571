"""
配置加载器（YAML）。

设计目标：
- 内置默认配置 + 多个 YAML overlay，按顺序做深度合并（后者覆盖前者）。
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误与误配置被静默吞掉）。
- 环境变量 `INTERACTOR_LOCAL_DIR` / `INTERACTOR_GLOBAL_DIR` 在 overlays 之后生效，
  便于测试与子进程 worker 共享同一组 scope 目录。
"""

from __future__ import annotations

import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from interactor.config.defaults import load_default_config_dict

LOCAL_DIR_ENV = "INTERACTOR_LOCAL_DIR"
GLOBAL_DIR_ENV = "INTERACTOR_GLOBAL_DIR"
WORKSPACE_OVERLAY = Path(".interactor") / "config.yaml"


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型（含 list）：overlay 直接覆盖
    """

    for key, overlay_value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(overlay_value, Mapping):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class InteractorScopesConfig(BaseModel):
    """scope 目录配置（local：工作目录内；global：共享临时目录）。"""

    model_config = ConfigDict(extra="forbid")

    local_dir: str = Field(default=".interactor", min_length=1)
    global_dir: Optional[str] = None


class InteractorClientConfig(BaseModel):
    """client 单次往返的超时上限。"""

    model_config = ConfigDict(extra="forbid")

    request_timeout_sec: float = Field(default=30.0, gt=0)


class InteractorDiscoveryConfig(BaseModel):
    """discovery 存活探测配置。"""

    model_config = ConfigDict(extra="forbid")

    probe_timeout_sec: float = Field(default=1.0, gt=0)


class InteractorServerConfig(BaseModel):
    """
    worker server 配置。

    字段：
    - max_request_bytes：单个请求帧（换行前）的最大字节数；超限返回失败响应
    - connection_timeout_sec：单连接等待完整请求帧的最长时间；超时直接关闭连接
    - shutdown_timeout_sec：优雅退出时等待 in-flight execute 的最长时间
    """

    model_config = ConfigDict(extra="forbid")

    max_request_bytes: int = Field(default=1024 * 1024, ge=1024)
    connection_timeout_sec: float = Field(default=30.0, gt=0)
    shutdown_timeout_sec: float = Field(default=10.0, ge=0)


class InteractorRuntimeConfig(BaseModel):
    """worker 进程内 runtime buffer 配置。"""

    model_config = ConfigDict(extra="forbid")

    max_buffer_entries: int = Field(default=1000, ge=1)


class InteractorConfig(BaseModel):
    """配置根对象。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    scopes: InteractorScopesConfig = Field(default_factory=InteractorScopesConfig)
    client: InteractorClientConfig = Field(default_factory=InteractorClientConfig)
    discovery: InteractorDiscoveryConfig = Field(default_factory=InteractorDiscoveryConfig)
    server: InteractorServerConfig = Field(default_factory=InteractorServerConfig)
    runtime: InteractorRuntimeConfig = Field(default_factory=InteractorRuntimeConfig)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"config file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"config root must be a mapping(dict): {path}")
    return data


def _env_overlay(env: Mapping[str, str]) -> Dict[str, Any]:
    """把 scope 目录相关的环境变量投影为 overlay dict。"""

    scopes: Dict[str, Any] = {}
    local_dir = str(env.get(LOCAL_DIR_ENV) or "").strip()
    global_dir = str(env.get(GLOBAL_DIR_ENV) or "").strip()
    if local_dir:
        scopes["local_dir"] = local_dir
    if global_dir:
        scopes["global_dir"] = global_dir
    return {"scopes": scopes} if scopes else {}


def load_config_dicts(config_dicts: Iterable[Mapping[str, Any]]) -> InteractorConfig:
    """
    加载并合并多个 dict 配置（叠加在内置默认配置之上），返回校验后的 `InteractorConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    """

    merged: Dict[str, Any] = load_default_config_dict()
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return InteractorConfig.model_validate(merged)


def load_config(
    config_paths: Iterable[Path] = (),
    *,
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> InteractorConfig:
    """
    加载有效配置：默认配置 → `.interactor/config.yaml`（若存在）→ 显式 overlays → 环境变量。

    参数：
    - config_paths：显式 YAML overlay 路径列表（相对路径相对 cwd）
    - cwd：工作目录（默认当前目录）
    - env：环境变量映射（默认 `os.environ`）
    """

    base = Path(cwd or Path.cwd()).resolve()
    overlays: list[Dict[str, Any]] = []

    workspace_overlay = base / WORKSPACE_OVERLAY
    if workspace_overlay.is_file():
        overlays.append(_load_yaml_file(workspace_overlay))

    for raw in config_paths:
        p = Path(raw).expanduser()
        if not p.is_absolute():
            p = base / p
        overlays.append(_load_yaml_file(p.resolve()))

    overlays.append(_env_overlay(os.environ if env is None else env))
    return load_config_dicts(overlays)
