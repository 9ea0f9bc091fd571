from __future__ import annotations

import ast
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Union

from conftest import REPO_ROOT, SRC_ROOT

_DefNode = Union[ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef]


@dataclass(frozen=True)
class MissingDocstring:
    path: Path
    lineno: int
    qualname: str


def _iter_python_files(root: Path) -> Iterable[Path]:
    for path in sorted(root.rglob("*.py")):
        if "__pycache__" in path.parts:
            continue
        yield path


def _find_missing_docstrings(py_path: Path) -> list[MissingDocstring]:
    tree = ast.parse(py_path.read_text(encoding="utf-8"), filename=str(py_path))
    missing: list[MissingDocstring] = []

    def _walk(node: ast.AST, stack: list[str]) -> None:
        for child in ast.iter_child_nodes(node):
            if isinstance(child, (ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef)):
                _check(child, stack)
                _walk(child, stack + [child.name])
            else:
                _walk(child, stack)

    def _check(node: _DefNode, stack: list[str]) -> None:
        if ast.get_docstring(node) is None:
            missing.append(MissingDocstring(py_path, node.lineno, ".".join(stack + [node.name])))

    _walk(tree, [])
    return missing


def test_docstrings_present_for_all_defs_under_src() -> None:
    """
    Docstring 合规护栏。

    规则：
    - 扫描 `src/` 下所有 `.py` 文件；
    - 对每个 `class/def/async def` 要求存在 docstring（包含嵌套定义）。
    """

    missing: list[MissingDocstring] = []
    for py_path in _iter_python_files(SRC_ROOT):
        missing.extend(_find_missing_docstrings(py_path))

    if not missing:
        return

    lines = ["missing docstrings:"]
    for m in sorted(missing, key=lambda m: (str(m.path), m.lineno)):
        lines.append(f"- {m.path.relative_to(REPO_ROOT)}:{m.lineno} {m.qualname}")
    raise AssertionError("\n".join(lines))
