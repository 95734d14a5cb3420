"""
Signal bridge：把客户端终端的生命周期事件同步给 host。

只在确认要登记 tty 的会话中安装；平台缺少相应信号时为 no-op。

处理器：
- SIGWINCH：已知 host pid 时原样转发给 host；
- SIGCONT：本进程组是终端前台 → 发 `-resume`；否则（tty 模式）用 SIGTTIN 停住进程组，继续等待前台；
- SIGTSTP / SIGTTOU：连接仍打开时先发 `-suspend`，再临时恢复默认处理并重新触发同一信号
  （由 OS 真正停住进程），恢复运行后重新挂回本处理器。

说明：
- Python 的信号处理器在主线程字节码之间执行，不会打断 C 层系统调用的 errno；
- `-suspend` 一定在进程真正停住之前写出（发送是同步的）；
- 处理器内部的 kill / 发送失败只记日志，不会从被打断的 recv / send 中抛出。
"""

from __future__ import annotations

import enum
import logging
import os
import signal
from typing import Any, Callable, Dict, Optional

from emacs_client.core.errors import TransportError
from emacs_client.runtime.transport import Transport
from emacs_client.session.intent import RetryState
from emacs_client.session.terminal import foreground_group

logger = logging.getLogger(__name__)

RESUME_DIRECTIVE = "-resume \n"
SUSPEND_DIRECTIVE = "-suspend \n"


class BridgeState(str, enum.Enum):
    """客户端终端状态。"""

    RUNNING = "running"
    SUSPENDED = "suspended"


def signals_supported() -> bool:
    """平台是否具备需要桥接的全部信号。"""

    return all(hasattr(signal, name) for name in ("SIGWINCH", "SIGCONT", "SIGTSTP", "SIGTTOU", "SIGTTIN"))


class SignalBridge:
    """
    终端信号桥。

    说明：
    - 共享同一个 RetryState（读取 host pid 与 tty 标志），与会话控制器使用同一个 Transport；
    - `install()` 幂等；`uninstall()` 恢复安装前的处理器。
    """

    def __init__(self, *, transport: Transport, state: RetryState) -> None:
        """
        创建 bridge（尚未安装）。

        参数：
        - transport：已打开的 host 连接
        - state：会话状态（emacs_pid / tty）
        """

        self._transport = transport
        self._state = state
        self.status = BridgeState.RUNNING
        self._previous: Dict[int, Any] = {}

    @property
    def installed(self) -> bool:
        """是否已安装。"""

        return bool(self._previous)

    def install(self) -> bool:
        """
        安装处理器。

        返回：
        - 是否实际安装（平台不支持时返回 False）
        """

        if self.installed:
            return True
        if not signals_supported():
            return False
        handlers: Dict[int, Callable[[int, Any], None]] = {
            signal.SIGWINCH: self.on_window_change,
            signal.SIGCONT: self.on_continue,
            signal.SIGTSTP: self.on_stop,
            signal.SIGTTOU: self.on_stop,
        }
        for signum, handler in handlers.items():
            self._previous[signum] = signal.signal(signum, handler)
        logger.debug("signal bridge installed")
        return True

    def uninstall(self) -> None:
        """恢复安装前的处理器。"""

        previous, self._previous = self._previous, {}
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)

    def on_window_change(self, signum: int, frame: Optional[Any] = None) -> None:
        """把窗口尺寸变化转发给 host 进程（pid 未知时忽略）。"""

        pid = self._state.emacs_pid
        if pid:
            try:
                os.kill(pid, signum)
            except OSError as exc:
                logger.debug("forwarding signal %d to %d failed: %s", int(signum), pid, exc)

    def on_continue(self, signum: int, frame: Optional[Any] = None) -> None:
        """进程被恢复：前台时通知 host 恢复 tty frame；后台时继续停住。"""

        pgrp = os.getpgrp()
        tcpgrp = foreground_group()
        if tcpgrp == pgrp:
            self.status = BridgeState.RUNNING
            self._notify_host(RESUME_DIRECTIVE)
            logger.debug("resumed in foreground")
        elif 0 <= tcpgrp and self._state.tty:
            try:
                os.kill(-pgrp, signal.SIGTTIN)
            except OSError as exc:
                logger.debug("stopping process group %d failed: %s", pgrp, exc)

    def on_stop(self, signum: int, frame: Optional[Any] = None) -> None:
        """
        终端要求停止：先通知 host，再让 OS 以默认动作停住本进程。
        """

        self.status = BridgeState.SUSPENDED
        try:
            self._notify_host(SUSPEND_DIRECTIVE)
        finally:
            signal.signal(signum, signal.SIG_DFL)
            if hasattr(signal, "pthread_sigmask"):
                signal.pthread_sigmask(signal.SIG_UNBLOCK, {signum})
            try:
                signal.raise_signal(signum)
            finally:
                signal.signal(signum, self.on_stop)

    def _notify_host(self, directive: str) -> None:
        """
        连接仍打开时写出一条指令。

        说明：
        - 发送失败只记 debug 日志；连接问题由被打断的收发调用自行报告
        """

        if not self._transport.is_open:
            return
        try:
            self._transport.send(directive)
        except TransportError as exc:
            logger.debug("sending %s failed: %s", directive.strip(), exc)
