"""
Worker Server：一个具名、单实例的 interactor worker（Unix socket + 单行 JSON）。

行为：
- 启动：校验实例名 → 同 scope 内存在同名存活实例则拒绝启动 → 打开受控会话
  → 清理同地址残留 socket 后 bind → 写 metadata → 进入 accept loop；
- 每个连接在独立线程上处理：一个连接上的畸形/半截消息不会阻塞或污染其它连接；
- `info` / `events` 立即应答，不进入队列；
- `execute` 进入 single-flight 队列：同一 worker 上所有连接的 execute 批次按入队顺序（FIFO）逐个执行；
- 收到 SIGINT/SIGTERM：停止 accept → 在超时内等待 in-flight 批次 → 关闭会话 → 删除 metadata 与 socket。
  进程被强杀时文件会遗留为孤儿，由 discovery 负责容忍与过滤。

已知竞态（保留的行为）：
- 读请求不排队，因此 `info` 可能与正在执行的批次交错；runtime buffer 内部加锁，
  读方看到的是每个日志的一致快照，但可能处在某个批次的中间状态。
"""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import socket
import stat
import threading
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from interactor.commands.builtin import build_default_registry
from interactor.commands.registry import CommandContext, CommandRegistry
from interactor.commands.session import ControlledSession, DocumentSession
from interactor.config.loader import InteractorConfig, load_config
from interactor.core.errors import (
    CommandError,
    DiscoveryError,
    InteractorError,
    ProtocolError,
    TransportError,
    error_message,
)
from interactor.core.utils import new_request_id, now_ms
from interactor.runtime.buffer import RuntimeBuffer
from interactor.runtime.directory import InstanceDirectory, cleanup_path
from interactor.runtime.discovery import Discovery
from interactor.runtime.paths import ConcreteScope, ScopeDirs, get_scope_dirs
from interactor.wire.framing import read_frame
from interactor.wire.protocol import (
    NAME_PATTERN,
    EventsRequest,
    ExecuteRequest,
    FailureResponse,
    InfoRequest,
    InstanceInfo,
    SuccessResponse,
    decode_json,
    encode_message,
    failure_response,
    is_valid_name,
    parse_request,
    success_response,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[str], ControlledSession]

_ACCEPT_POLL_SEC = 0.2


class SingleFlightQueue:
    """
    execute 串行队列（ticket lock）。

    语义：
    - 入队时领取递增 ticket；只有轮到自己的 ticket 才能执行；
    - 顺序严格按领取 ticket 的先后（FIFO），与连接 accept 顺序无关；
    - 每个 worker 实例持有自己独立的队列对象。
    """

    def __init__(self) -> None:
        """创建空队列。"""

        self._cond = threading.Condition()
        self._next_ticket = 0
        self._serving = 0

    @contextlib.contextmanager
    def slot(self) -> Iterator[int]:
        """排队等待并占用执行权；退出上下文时释放给下一个 ticket。"""

        with self._cond:
            ticket = self._next_ticket
            self._next_ticket += 1
            while self._serving != ticket:
                self._cond.wait()
        try:
            yield ticket
        finally:
            with self._cond:
                self._serving += 1
                self._cond.notify_all()

    @property
    def pending(self) -> int:
        """尚未完成的批次数（含正在执行的一个）。"""

        with self._cond:
            return self._next_ticket - self._serving

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """等待队列清空；返回是否在超时内清空。"""

        with self._cond:
            return self._cond.wait_for(lambda: self._serving == self._next_ticket, timeout=timeout)


class InteractorServer:
    """一个具名 worker：拥有一个 channel 地址、一个受控会话与一条 execute 队列。"""

    def __init__(
        self,
        *,
        name: str,
        url: str,
        scope: ConcreteScope = "local",
        config: Optional[InteractorConfig] = None,
        registry: Optional[CommandRegistry] = None,
        session_factory: Optional[SessionFactory] = None,
        dirs: Optional[ScopeDirs] = None,
    ) -> None:
        """
        创建 worker（尚未 bind）。

        参数：
        - name：实例名（匹配 `[A-Za-z0-9][A-Za-z0-9_-]{0,63}`）
        - url：受控会话的目标描述（写入 metadata 的 `url`）
        - scope：metadata/channel 所在 scope（local/global）
        - config：有效配置（默认 `load_config()`）
        - registry：命令注册表（默认内置命令）
        - session_factory：根据 url 打开受控会话（默认 DocumentSession）
        - dirs：scope 目录（默认按 config 解析）
        """

        self.name = str(name)
        self.url = str(url)
        self.scope: ConcreteScope = scope
        self._config = config or load_config()
        self._registry = registry or build_default_registry()
        self._session_factory: SessionFactory = session_factory or DocumentSession
        self._directory = InstanceDirectory(dirs or get_scope_dirs(self._config))
        self._discovery = Discovery(self._directory, probe_timeout_sec=self._config.discovery.probe_timeout_sec)

        self._buffer = RuntimeBuffer(self._config.runtime.max_buffer_entries)
        self._queue = SingleFlightQueue()
        self._shutdown = threading.Event()
        self._closed = threading.Event()
        self._listener: Optional[socket.socket] = None
        self._session: Optional[ControlledSession] = None
        self._info: Optional[InstanceInfo] = None

    @property
    def info(self) -> InstanceInfo:
        """实例元数据（start 之后可用）。"""

        if self._info is None:
            raise RuntimeError("interactor server is not started")
        return self._info

    @property
    def buffer(self) -> RuntimeBuffer:
        """worker 进程内 runtime buffer。"""

        return self._buffer

    @property
    def session(self) -> Optional[ControlledSession]:
        """受控会话（start 之前为 None）。"""

        return self._session

    def start(self) -> InstanceInfo:
        """
        校验 → 查重 → 打开会话 → bind → 写 metadata。

        异常：
        - DiscoveryError(INVALID_NAME)：实例名非法
        - DiscoveryError(INSTANCE_ALREADY_RUNNING)：同 scope 内同名实例存活
        - OSError：bind/listen 失败（会话会被关闭）
        """

        if self._info is not None:
            return self._info
        if not is_valid_name(self.name):
            raise DiscoveryError(
                f'Invalid interactor name "{self.name}". Expected {NAME_PATTERN} and max length 64.',
                code="INVALID_NAME",
                details={"name": self.name},
            )

        existing = self._discovery.find_by_name(self.name, self.scope)
        if existing is not None:
            raise DiscoveryError(
                f'Interactor "{self.name}" is already running (pid {existing.pid}).',
                code="INSTANCE_ALREADY_RUNNING",
                details={"name": self.name, "pid": existing.pid, "scope": self.scope},
            )

        pid = os.getpid()
        socket_path = self._directory.socket_path(self.name, pid, self.scope)
        info = InstanceInfo(
            name=self.name,
            url=self.url,
            pid=pid,
            started_at=now_ms(),
            socket_path=str(socket_path),
        )

        self._session = self._session_factory(self.url)
        try:
            self._directory.ensure_dir(self.scope)
            socket_path.parent.mkdir(parents=True, exist_ok=True)
            # 同一 (name, pid, scope) 的残留 socket（例如 pid 复用）先清理再 bind
            cleanup_path(socket_path)
            s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            try:
                s.bind(str(socket_path))
                os.chmod(socket_path, stat.S_IRUSR | stat.S_IWUSR)  # 0600
                s.listen(64)
                s.settimeout(_ACCEPT_POLL_SEC)
            except OSError:
                s.close()
                raise
            self._listener = s
            self._info = info
            self._directory.write(info, self.scope)
        except Exception:
            self._close_session()
            if self._listener is not None:
                with contextlib.suppress(OSError):
                    self._listener.close()
                self._listener = None
                self._info = None
                with contextlib.suppress(OSError):
                    cleanup_path(socket_path)
            raise

        logger.info("Interactor %r started (pid=%s, socket=%s, url=%s)", self.name, pid, socket_path, self.url)
        return info

    def stop(self) -> None:
        """请求优雅退出（可在任意线程/信号处理器中调用）。"""

        self._shutdown.set()

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """等待 serve_forever 完成清理；返回是否已关闭。"""

        return self._closed.wait(timeout)

    def serve_forever(self) -> None:
        """
        accept loop：直到 `stop()` 被调用。

        说明：
        - 每个连接交给一个 daemon 线程处理（并发）；
        - 退出时执行优雅关闭流程（见模块说明）。
        """

        if self._listener is None:
            self.start()
        listener = self._listener
        assert listener is not None
        try:
            while not self._shutdown.is_set():
                try:
                    conn, _ = listener.accept()
                except socket.timeout:
                    continue
                except OSError:
                    if self._shutdown.is_set():
                        break
                    logger.warning("Interactor %r accept failed", self.name, exc_info=True)
                    continue
                t = threading.Thread(
                    target=self._handle_connection,
                    args=(conn,),
                    name=f"interactor-{self.name}-conn",
                    daemon=True,
                )
                t.start()
        finally:
            self._shutdown_gracefully()

    def serve_in_background(self) -> threading.Thread:
        """start（若尚未）并在 daemon 线程上运行 serve_forever。"""

        self.start()
        t = threading.Thread(target=self.serve_forever, name=f"interactor-{self.name}", daemon=True)
        t.start()
        return t

    def run(self) -> None:
        """前台运行：start → 安装 SIGINT/SIGTERM 处理 → serve_forever。"""

        self.start()
        if threading.current_thread() is threading.main_thread():
            for sig in (signal.SIGINT, signal.SIGTERM):
                signal.signal(sig, lambda _signum, _frame: self.stop())
        self.serve_forever()

    def _shutdown_gracefully(self) -> None:
        """停止 accept → 等待 in-flight execute → 关闭会话 → 删除 metadata/socket。"""

        if self._listener is not None:
            with contextlib.suppress(OSError):
                self._listener.close()
            self._listener = None

        timeout = self._config.server.shutdown_timeout_sec
        if not self._queue.wait_idle(timeout=timeout):
            logger.warning(
                "Interactor %r: abandoning %d pending execute batch(es) after %.1fs",
                self.name,
                self._queue.pending,
                timeout,
            )

        self._close_session()
        if self._info is not None:
            try:
                self._directory.remove(self._info, self.scope)
            except OSError:
                logger.warning("Interactor %r: failed to remove metadata/socket files", self.name, exc_info=True)
        logger.info("Interactor %r stopped", self.name)
        self._closed.set()

    def _close_session(self) -> None:
        """关闭受控会话（失败只记录日志）。"""

        if self._session is None:
            return
        try:
            self._session.close()
        except Exception:
            logger.warning("Interactor %r: failed to close session", self.name, exc_info=True)

    def _handle_connection(self, conn: socket.socket) -> None:
        """
        处理一个连接：读一帧请求 → 应答一帧响应 → 关闭。

        说明：
        - 对端在完整帧之前断开 / 超时：直接关闭，不应答；
        - `connection_timeout_sec` 约束整帧读取（逐字节慢发也会到期）；
        - 请求体超限：应答失败响应；
        - 换行之后的多余字节丢弃（每个连接只处理一个请求）。
        """

        with conn:
            timeout = self._config.server.connection_timeout_sec
            conn.settimeout(timeout)
            try:
                raw = read_frame(
                    conn, max_bytes=self._config.server.max_request_bytes, deadline=time.monotonic() + timeout
                )
            except ProtocolError as e:
                response: Union[SuccessResponse, FailureResponse] = failure_response(new_request_id(), e.message)
            except (TransportError, OSError):
                logger.debug("Interactor %r: connection dropped before a full request", self.name, exc_info=True)
                return
            else:
                response = self._respond(raw)
            try:
                conn.settimeout(timeout)
                conn.sendall(encode_message(response))
            except OSError:
                logger.debug("Interactor %r: client went away before the response was sent", self.name, exc_info=True)

    def _respond(self, raw: bytes) -> Union[SuccessResponse, FailureResponse]:
        """
        解码并处理一条请求，任何失败都转换为失败响应。

        说明：
        - 失败响应尽量回显请求 id；无法取得 id 时使用新的 uuid；
        - 只有扁平 message 跨 wire；非 InteractorError 的异常在本地记录 traceback。
        """

        request_id: Optional[str] = None
        try:
            obj = decode_json(raw)
            if isinstance(obj, dict) and isinstance(obj.get("id"), str) and obj["id"]:
                request_id = obj["id"]
            request = parse_request(obj)
            data = self.handle_request(request)
            return success_response(request.id, data)
        except InteractorError as e:
            issue = e.to_issue()
            logger.debug(
                "Interactor %r request failed: code=%s message=%s details=%s",
                self.name,
                issue.code,
                issue.message,
                issue.details,
            )
            return failure_response(request_id or new_request_id(), error_message(e))
        except Exception as e:
            logger.warning("Interactor %r request failed unexpectedly", self.name, exc_info=True)
            return failure_response(request_id or new_request_id(), error_message(e))

    def handle_request(self, request: Union[InfoRequest, EventsRequest, ExecuteRequest]) -> Any:
        """
        按 kind 路由请求。

        规则：
        - info / events：立即应答（不排队）
        - execute：进入 single-flight 队列
        """

        if isinstance(request, InfoRequest):
            return {**self.info.to_wire(), "events": self._registry.list_definitions()}
        if isinstance(request, EventsRequest):
            return self._registry.list_definitions()
        if isinstance(request, ExecuteRequest):
            with self._queue.slot():
                return self._execute_batch(request)
        raise ProtocolError("Unsupported request kind", code="INVALID_ENVELOPE")

    def _execute_batch(self, request: ExecuteRequest) -> List[Any]:
        """
        按顺序执行一批命令，收集每条命令的结果。

        说明：
        - 每条命令在执行前独立校验；某条失败则整批失败，之前已执行的命令不回滚。
        """

        cx = CommandContext(session=self._session, buffer=self._buffer, info=self._info)
        results: List[Any] = []
        for event in request.events:
            try:
                raw_input = decode_json(event.input_json)
            except ProtocolError as e:
                raise CommandError(
                    f'Invalid JSON input for execute event "{event.event_name}"',
                    code="INVALID_COMMAND_INPUT",
                    details={"event": event.event_name, "reason": e.details.get("reason")},
                ) from e
            results.append(self._registry.execute(cx, event.event_name, raw_input))
        return results

    def status(self) -> Dict[str, Any]:
        """本地诊断快照（不走 wire）。"""

        return {
            "name": self.name,
            "scope": self.scope,
            "started": self._info is not None,
            "pending_executes": self._queue.pending,
            "shutdown_requested": self._shutdown.is_set(),
        }
