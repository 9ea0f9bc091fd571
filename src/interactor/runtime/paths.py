from __future__ import annotations

import hashlib
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Literal, Optional

from interactor.config.loader import InteractorConfig

Scope = Literal["auto", "local", "global"]
ConcreteScope = Literal["local", "global"]

SOCKET_EXT = ".sock"
META_EXT = ".meta.json"
GLOBAL_DIR_NAME = "interactors"

# AF_UNIX 路径长度有上限（Linux 108 / macOS 104 bytes），超过阈值时降级到更短的 tmp 路径。
_MAX_SOCKET_PATH = 90

_UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9_-]")


@dataclass(frozen=True)
class ScopeDirs:
    """两个 scope 的物理目录（local：工作目录内；global：共享临时目录）。"""

    local_dir: Path
    global_dir: Path

    def dir_for(self, scope: ConcreteScope) -> Path:
        """返回指定 scope 的目录。"""

        if scope == "local":
            return self.local_dir
        if scope == "global":
            return self.global_dir
        raise ValueError(f"unknown scope: {scope!r}")


def get_scope_dirs(config: Optional[InteractorConfig] = None, *, cwd: Optional[Path] = None) -> ScopeDirs:
    """
    根据配置解析两个 scope 目录。

    参数：
    - config：有效配置；None 时使用默认配置语义（`.interactor` / `<tempdir>/interactors`）
    - cwd：local 相对路径的解析基准（默认当前目录）
    """

    base = Path(cwd or Path.cwd()).resolve()
    local_raw = config.scopes.local_dir if config is not None else ".interactor"
    global_raw = config.scopes.global_dir if config is not None else None

    local_dir = Path(local_raw).expanduser()
    if not local_dir.is_absolute():
        local_dir = base / local_dir
    global_dir = Path(global_raw).expanduser() if global_raw else Path(tempfile.gettempdir()) / GLOBAL_DIR_NAME
    if not global_dir.is_absolute():
        global_dir = base / global_dir
    return ScopeDirs(local_dir=local_dir.resolve(), global_dir=global_dir.resolve())


def resolve_lookup_scopes(scope: Scope) -> List[ConcreteScope]:
    """逻辑 scope → 物理 scope 列表（`auto` = local 在前、global 在后）。"""

    if scope == "local":
        return ["local"]
    if scope == "global":
        return ["global"]
    if scope == "auto":
        return ["local", "global"]
    raise ValueError(f"unknown scope: {scope!r}")


def sanitize_name(name: str) -> str:
    """实例名规范化：小写，非 `[a-z0-9_-]` 字符替换为 `-`。"""

    return _UNSAFE_NAME_CHARS.sub("-", str(name).lower())


def get_base_name(name: str, pid: int) -> str:
    """实例文件的公共 base name：`<sanitized-name>-<pid>`。"""

    return f"{sanitize_name(name)}-{int(pid)}"


def get_socket_path(name: str, pid: int, scope: ConcreteScope, dirs: ScopeDirs) -> Path:
    """
    计算实例的 channel（Unix socket）地址。

    说明：
    - 常规情况下与 metadata 文件同目录、同 base name；
    - scope 目录较深导致路径超限时，降级为 `<tempdir>/interactor-<hash>.sock`，
      hash 取自原始路径，保证对同一 (name, pid, scope) 仍是确定性的。
    """

    path = dirs.dir_for(scope) / f"{get_base_name(name, pid)}{SOCKET_EXT}"
    if len(str(path)) > _MAX_SOCKET_PATH:
        h = hashlib.sha256(str(path).encode("utf-8", errors="replace")).hexdigest()[:16]
        path = Path(tempfile.gettempdir()) / f"interactor-{h}{SOCKET_EXT}"
    return path


def get_meta_path(name: str, pid: int, scope: ConcreteScope, dirs: ScopeDirs) -> Path:
    """计算实例 metadata 文件路径（`<base>.meta.json`）。"""

    return dirs.dir_for(scope) / f"{get_base_name(name, pid)}{META_EXT}"
