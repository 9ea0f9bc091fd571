"""
Interactor CLI（start/ps/execute/find/info）。

约束：
- 使用 argparse（不引入第三方 CLI 依赖）；
- 发现/传输失败统一输出 `error: <message>` 到 stderr，exit code 1；
- `execute` 的 exit code 等于失败的 pair 数量（上限 255）。
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import yaml

from interactor.commands.builtin import build_default_registry
from interactor.config.loader import InteractorConfig, load_config
from interactor.core.errors import InteractorError, error_message
from interactor.runtime.client import InteractorClient
from interactor.runtime.discovery import Discovery
from interactor.runtime.paths import ConcreteScope, Scope
from interactor.runtime.server import InteractorServer
from interactor.wire.protocol import encode_json

logger = logging.getLogger(__name__)

_MAX_EXIT_CODE = 255


class UsageError(ValueError):
    """命令行参数组合不合法（exit code 2）。"""


def _ensure_utf8_stdio() -> None:
    """best-effort 把 stdout/stderr 切到 UTF-8（`C` locale 下输出中文/JSON 不崩）。"""

    for stream in (sys.stdout, sys.stderr):
        reconfigure = getattr(stream, "reconfigure", None)
        if not callable(reconfigure):
            continue
        try:
            reconfigure(encoding="utf-8", errors="replace")
        except (ValueError, OSError):
            continue


def _print_error(message: str) -> None:
    """输出 `error: <message>` 到 stderr。"""

    print(f"error: {message}", file=sys.stderr)


def _build_parser() -> argparse.ArgumentParser:
    """构建 CLI argparse parser。"""

    parser = argparse.ArgumentParser(
        prog="interactor",
        description="Control named interactor workers over unix sockets.",
    )
    root_sub = parser.add_subparsers(dest="command", required=True)

    def _add_common_flags(p: argparse.ArgumentParser) -> None:
        """为子命令添加公共 flags。"""

        p.add_argument("--config", action="append", default=[], help="Overlay config YAML path (repeatable).")
        p.add_argument(
            "--log-level",
            default=None,
            choices=["DEBUG", "INFO", "WARNING", "ERROR"],
            help="Logging level (default: INFO for start, WARNING otherwise).",
        )

    start = root_sub.add_parser("start", help="Start a named interactor in the foreground")
    _add_common_flags(start)
    start.add_argument("-n", "--name", default="default", help="Unique interactor name (default: default)")
    start.add_argument("--target", default="about:blank", help="Target descriptor of the controlled session")
    start.add_argument("--global", dest="use_global", action="store_true", help="Use the shared tmpdir scope")

    ps = root_sub.add_parser("ps", help="List running interactors")
    _add_common_flags(ps)
    ps.add_argument("--global", dest="use_global", action="store_true", help="Use the shared tmpdir scope only")

    execute = root_sub.add_parser("execute", help="Execute one or more interactor events in sequence")
    _add_common_flags(execute)
    execute.add_argument("-n", "--name", default=None, help="Interactor name")
    execute.add_argument("--global", dest="use_global", action="store_true", help="Use the shared tmpdir scope only")
    execute.add_argument("pairs", nargs="*", help="Repeated pairs of <event> <json>")

    find = root_sub.add_parser("find", help="Search available interactor events")
    _add_common_flags(find)
    find.add_argument("keywords", nargs="*", help="Keywords for event search")

    info = root_sub.add_parser("info", help="Show info of a running interactor")
    _add_common_flags(info)
    info.add_argument("-n", "--name", default=None, help="Interactor name")
    info.add_argument("--global", dest="use_global", action="store_true", help="Use the shared tmpdir scope only")

    return parser


def _configure_logging(args: argparse.Namespace) -> None:
    """按 `--log-level` 配置根 logger（库本身从不配置 handler）。"""

    default = "INFO" if args.command == "start" else "WARNING"
    level = getattr(logging, str(args.log_level or default).upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def _load_effective_config(args: argparse.Namespace) -> InteractorConfig:
    """加载默认配置 + `.interactor/config.yaml` + `--config` overlays + 环境变量。"""

    return load_config([Path(p) for p in (args.config or [])])


def _lookup_scope(args: argparse.Namespace) -> Scope:
    """查找类命令的 scope：`--global` → global，否则 auto。"""

    return "global" if getattr(args, "use_global", False) else "auto"


def parse_execute_pairs(items: Sequence[str]) -> List[Tuple[str, str]]:
    """
    把 `<event> <json> ...` 解析为 pair 列表。

    异常：
    - UsageError：没有参数，或参数数量为奇数
    """

    if not items:
        raise UsageError("execute requires at least one <event> <json> pair")
    if len(items) % 2 != 0:
        raise UsageError("execute arguments must be ordered as repeated <event> <json> pairs")
    return [(items[i], items[i + 1]) for i in range(0, len(items), 2)]


def _handle_start(args: argparse.Namespace, config: InteractorConfig) -> int:
    """`start`：前台运行 worker，直到 SIGINT/SIGTERM。"""

    scope: ConcreteScope = "global" if args.use_global else "local"
    server = InteractorServer(name=str(args.name), url=str(args.target), scope=scope, config=config)
    info = server.start()
    print(f'interactor "{info.name}" started')
    print(f"pid={info.pid}")
    print(f"socket={info.socket_path}", flush=True)
    server.run()
    return 0


def _handle_ps(args: argparse.Namespace, config: InteractorConfig) -> int:
    """`ps`：列出存活实例。"""

    live = Discovery.from_config(config).list_live(_lookup_scope(args))
    if not live:
        print("No running interactors found.")
        return 0
    for info in live:
        print(f"{info.name}\tpid={info.pid}\turl={info.url}\tsocket={info.socket_path}")
    return 0


def _handle_execute(args: argparse.Namespace, config: InteractorConfig) -> int:
    """
    `execute`：每个 pair 作为独立的单事件 execute 请求发送。

    说明：
    - 目标只解析一次，之后所有 pair 发往同一实例；
    - 每个 pair 输出一行 `ok <json>` 或 `error <message>`。
    """

    pairs = parse_execute_pairs(args.pairs)
    client = InteractorClient(name=args.name, scope=_lookup_scope(args), config=config)
    target = client.resolve()

    failures = 0
    for event_name, input_json in pairs:
        try:
            results = client.execute_raw([(event_name, input_json)], target=target)
            if len(results) != 1:
                raise InteractorError(
                    f"Interactor execute response expected exactly one result, received {len(results)}",
                    code="INVALID_ENVELOPE",
                )
        except InteractorError as e:
            failures += 1
            print(f"error {error_message(e)}", flush=True)
            continue
        print(f"ok {encode_json(results[0])}", flush=True)
    return min(failures, _MAX_EXIT_CODE)


def _handle_find(args: argparse.Namespace) -> int:
    """`find`：在内置命令注册表中检索。"""

    registry = build_default_registry()
    matches = registry.find(args.keywords or [])
    if not matches:
        print("No matching events found.")
        return 0
    for match in matches:
        schema = registry.get_schema(match["name"])
        print(f"{match['name']}\t{match['description']}\t{encode_json(schema)}")
    return 0


def _handle_info(args: argparse.Namespace, config: InteractorConfig) -> int:
    """`info`：输出目标实例的元数据与命令清单（pretty JSON）。"""

    client = InteractorClient(name=args.name, scope=_lookup_scope(args), config=config)
    data: Any = client.info()
    print(json.dumps(data, ensure_ascii=False, indent=2))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    CLI 入口函数（用于 console_scripts 与测试）。

    参数：
    - argv：命令行参数列表（不含程序名）；为 None 时读取 sys.argv[1:]。

    返回：
    - int：exit code（不会直接 sys.exit，便于测试）。
    """

    _ensure_utf8_stdio()

    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:
        # argparse：`--help` 为 0，参数错误为 2
        code = getattr(exc, "code", 2)
        if code is None:
            return 2
        return int(code)

    _configure_logging(args)

    if args.command == "find":
        return _handle_find(args)

    try:
        config = _load_effective_config(args)
    except (OSError, ValueError, yaml.YAMLError) as e:
        _print_error(f"invalid config: {e}")
        return 1

    handlers = {
        "start": _handle_start,
        "ps": _handle_ps,
        "execute": _handle_execute,
        "info": _handle_info,
    }
    handler = handlers.get(args.command)
    if handler is None:
        _print_error(f"unknown command: {args.command}")
        return 2

    try:
        return handler(args, config)
    except UsageError as e:
        _print_error(str(e))
        return 2
    except InteractorError as e:
        logger.debug("interactor %s failed", args.command, exc_info=True)
        _print_error(error_message(e))
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
