"""终端发现（tty 名称/类型）与前台进程组判定。"""

from __future__ import annotations

from dataclasses import dataclass
import os
import signal
import sys
from typing import Mapping, Optional

from emacs_client.core.errors import TerminalUnavailableError


@dataclass(frozen=True)
class TerminalInfo:
    """当前终端。"""

    name: str
    type: str


def _stdout_fd() -> int:
    """stdout 的文件描述符（测试替换 sys.stdout 时回退到 1）。"""

    try:
        return sys.stdout.fileno()
    except (AttributeError, OSError, ValueError):
        return 1


def find_tty(*, environ: Optional[Mapping[str, str]] = None, noabort: bool = True) -> Optional[TerminalInfo]:
    """
    取得 stdout 所在终端的名称与 `$TERM`。

    参数：
    - noabort：为 True 时找不到终端返回 None；否则抛 TerminalUnavailableError

    说明：
    - 在 Emacs 的 term buffer（`INSIDE_EMACS` 含 `,term:` 且 TERM 以 `eterm` 开头）里打开 frame
      会导致输入锁死，因此同样视为不可用。
    """

    env = os.environ if environ is None else environ
    term_type = env.get("TERM")
    try:
        name = os.ttyname(_stdout_fd())
    except (OSError, AttributeError):
        name = None

    if not name:
        if noabort:
            return None
        raise TerminalUnavailableError("could not get terminal name")
    if not term_type:
        if noabort:
            return None
        raise TerminalUnavailableError("please set the TERM variable to your terminal type")
    inside_emacs = env.get("INSIDE_EMACS") or ""
    if ",term:" in inside_emacs and term_type.startswith("eterm"):
        if noabort:
            return None
        raise TerminalUnavailableError("opening a frame in an Emacs term buffer is not supported")
    return TerminalInfo(name=name, type=term_type)


def foreground_group() -> int:
    """stdout 终端的前台进程组；无控制终端时返回 -1。"""

    try:
        return os.tcgetpgrp(_stdout_fd())
    except (OSError, AttributeError):
        return -1


def stop_if_background() -> None:
    """
    若本进程组处于终端后台，用 SIGTTIN 停住整个进程组，直到被切回前台。

    说明：
    - tty frame 会占用终端，后台启动时必须先等待前台。
    """

    if not hasattr(signal, "SIGTTIN"):
        return
    tcpgrp = foreground_group()
    pgrp = os.getpgrp()
    if 0 <= tcpgrp and tcpgrp != pgrp:
        os.kill(-pgrp, signal.SIGTTIN)
