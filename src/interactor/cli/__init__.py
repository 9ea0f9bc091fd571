"""
CLI 模块。

说明：
- 对外入口为 `interactor ...`（由 `pyproject.toml` 的 `[project.scripts]` 注册），也可 `python -m interactor ...`；
- CLI 只做“配置加载 + 调用 runtime 能力 + 文本输出”，不复制核心逻辑。
"""
