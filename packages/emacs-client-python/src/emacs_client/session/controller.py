"""
会话控制器：发送一次请求，然后处理 host 推送的消息直到连接关闭。

host → 客户端消息（每行一条，按首个关键字分发）：
- `-emacs-pid <pid>`：记录 host pid（供信号转发）；
- `-window-system-unsupported`：重试迁移（备用 display，或强制 tty），丢弃本块剩余内容并重发整段尝试；
- `-print <text>` / `-print-nonl <text>`：反转义后写 stdout（可被 suppress_output 关闭）；
- `-error <text>`：反转义后写 stderr，记失败退出码，继续处理后续消息；
- `-suspend`：补齐换行后以 SIGSTOP 停住本进程组；
- 其它：按未知消息打印，继续处理（兼容更新版本的 host）。

循环结束：recv 返回 0 字节（对端关闭）；recv 报错额外记失败退出码。
"""

from __future__ import annotations

import enum
import logging
import os
import re
import signal
import sys
from typing import Callable, Iterable, List, Mapping, Optional

from emacs_client.core.console import Console
from emacs_client.core.errors import TransportError
from emacs_client.protocol.codec import unquote_argument
from emacs_client.runtime.transport import Transport
from emacs_client.session.commands import CommandWriter, write_attempt, write_preamble
from emacs_client.session.intent import RetryState, SessionIntent
from emacs_client.session.signals import SignalBridge
from emacs_client.session.terminal import TerminalInfo, find_tty

logger = logging.getLogger(__name__)

_LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)")

TtyFinder = Callable[..., Optional[TerminalInfo]]


class Dispatch(str, enum.Enum):
    """单条 host 消息处理后的控制流。"""

    CONTINUE = "continue"
    RETRY = "retry"
    STOP = "stop"


def split_messages(chunk: bytes) -> List[str]:
    """
    把一次 recv 的内容按换行切分为消息。

    说明：
    - 末尾的空段（chunk 以换行结尾）被丢弃；
    - 不以换行结尾的残段同样作为一条消息分发（不跨 recv 累积）。
    """

    parts = chunk.split(b"\n")
    if parts and parts[-1] == b"":
        parts.pop()
    return [p.decode("utf-8", errors="replace") for p in parts]


def parse_pid(text: str) -> int:
    """strtol 语义：取开头的十进制整数；无法解析时为 0。"""

    m = _LEADING_INT_RE.match(text)
    return int(m.group(1)) if m else 0


class SessionController:
    """
    单次请求/响应会话。

    说明：
    - Transport 由控制器持有直到 `run()` 结束，任何退出路径都会 close；
    - 终端确认可用且需要登记时才安装 SignalBridge。
    """

    def __init__(
        self,
        intent: SessionIntent,
        transport: Transport,
        *,
        console: Console,
        max_retries: int = 2,
        environ: Optional[Mapping[str, str]] = None,
        stdin: Optional[Iterable[str]] = None,
        tty_finder: Optional[TtyFinder] = None,
        install_signals: bool = True,
    ) -> None:
        """
        创建控制器。

        参数：
        - intent：只读会话意图
        - transport：已连接（TCP 已发送鉴权前导）的 Transport
        - console：输出面
        - max_retries：`-window-system-unsupported` 重试迁移的上限
        - environ：环境变量（终端发现用；默认 os.environ）
        - stdin：eval 交互模式的输入行来源（默认 sys.stdin）
        - tty_finder：终端发现函数（默认 `find_tty`）
        - install_signals：登记 tty 时是否安装 SignalBridge
        """

        self.intent = intent
        self.transport = transport
        self.console = console
        self.state = RetryState.from_intent(intent)
        self._max_retries = int(max_retries)
        self._environ = os.environ if environ is None else environ
        self._stdin = stdin
        self._tty_finder: TtyFinder = tty_finder or find_tty
        self._install_signals = bool(install_signals)
        self.bridge: Optional[SignalBridge] = None
        self._writer = CommandWriter(transport)

    # ---- 发送 ----

    def _terminal(self) -> Optional[TerminalInfo]:
        """
        本次尝试要登记的终端。

        说明：
        - 纯 eval 且不建 frame 时不占用终端；
        - 非 tty 模式下找不到终端不是错误（daemon 可能需要在没有其它 frame 时占用它）。
        """

        if not (self.intent.create_frame or not self.intent.eval):
            return None
        info = self._tty_finder(environ=self._environ, noabort=not self.state.tty)
        if info is not None and self._install_signals and self.bridge is None:
            bridge = SignalBridge(transport=self.transport, state=self.state)
            if bridge.install():
                self.bridge = bridge
        return info

    def _eval_lines(self) -> Optional[List[str]]:
        """eval 交互模式：首次读取 stdin 的全部行并缓存，重试时复用。"""

        if self.intent.arguments or not self.intent.eval:
            return None
        if self.state.stdin_lines is None:
            source = self._stdin if self._stdin is not None else sys.stdin
            self.state.stdin_lines = tuple(source)
        return list(self.state.stdin_lines)

    def send_attempt(self) -> None:
        """按当前 RetryState 重建并发送一整段尝试。"""

        write_attempt(
            self._writer,
            self.intent,
            self.state,
            terminal=self._terminal(),
            eval_lines=self._eval_lines(),
        )

    def send_request(self) -> None:
        """发送前导（-env/-dir）与第一段尝试。"""

        write_preamble(self._writer, self.intent)
        self.send_attempt()

    # ---- 接收 ----

    def _text(self, payload: str) -> str:
        """反转义消息参数。"""

        return unquote_argument(payload)

    def dispatch(self, line: str) -> Dispatch:
        """处理一条 host 消息。"""

        keyword, _, payload = line.partition(" ")

        if keyword == "-emacs-pid":
            self.state.emacs_pid = parse_pid(payload)
            logger.debug("host pid %d", self.state.emacs_pid)
            return Dispatch.CONTINUE

        if keyword == "-window-system-unsupported":
            if self.state.retries >= self._max_retries:
                self.console.host_error(f"window system unsupported; giving up after {self.state.retries} retries\n")
                self.state.fail()
                return Dispatch.STOP
            self.state.window_system_unsupported()
            logger.debug("retry %d: display=%r tty=%s", self.state.retries, self.state.display, self.state.tty)
            return Dispatch.RETRY

        if keyword == "-print":
            if not self.intent.suppress_output:
                self.console.print_text(self._text(payload))
            return Dispatch.CONTINUE

        if keyword == "-print-nonl":
            if not self.intent.suppress_output:
                self.console.print_nonl(self._text(payload))
            return Dispatch.CONTINUE

        if keyword == "-error":
            self.console.host_error(self._text(payload))
            self.state.fail()
            return Dispatch.CONTINUE

        if keyword == "-suspend" and hasattr(signal, "SIGSTOP"):
            self.console.begin_line()
            os.kill(0, signal.SIGSTOP)
            return Dispatch.CONTINUE

        self.console.unknown_message(line)
        return Dispatch.CONTINUE

    def receive_loop(self) -> None:
        """接收并分发，直到对端关闭或 recv 出错。"""

        while True:
            try:
                chunk = self.transport.receive()
            except TransportError as exc:
                self.console.error(exc.message)
                self.state.fail()
                return
            if not chunk:
                return
            for line in split_messages(chunk):
                action = self.dispatch(line)
                if action is Dispatch.RETRY:
                    self.send_attempt()
                    break
                if action is Dispatch.STOP:
                    return

    def run(self) -> int:
        """
        执行完整会话。

        返回：
        - 退出码（0 成功；收到 `-error` 或 recv 出错时为 1）

        异常：
        - TransportError：发送失败（调用方应使整个会话失败）
        - TerminalUnavailableError：请求了 tty frame 但没有可用终端
        """

        try:
            with self.transport:
                self.send_request()
                intent = self.intent
                if not intent.eval and not intent.tty and not intent.nowait and not intent.quiet:
                    self.console.waiting()
                else:
                    self.console.stdout.flush()
                self.receive_loop()
                self.console.finish()
        finally:
            if self.bridge is not None:
                self.bridge.uninstall()
        return self.state.exit_status
