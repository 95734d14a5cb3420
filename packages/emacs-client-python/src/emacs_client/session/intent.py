"""
会话意图（SessionIntent）与重试状态（RetryState）。

- SessionIntent：调用方一次性给出的“要 host 做什么”，构造后只读；
- RetryState：会话循环内可变的字段（当前 display、备用 display、tty/nowait、退出码、重试次数）。
  每次重试只做一次状态迁移，并据此重建整段每次尝试的命令流。
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Mapping, Optional, Sequence, Tuple

from emacs_client.core.errors import ConfigurationError

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


@dataclass(frozen=True)
class SessionIntent:
    """已校验的会话意图（只读）。"""

    cwd: str
    arguments: Tuple[str, ...] = ()
    tramp_prefix: Optional[str] = None
    display: Optional[str] = None
    alt_display: Optional[str] = None
    parent_id: Optional[str] = None
    frame_parameters: Optional[str] = None
    nowait: bool = False
    create_frame: bool = False
    tty: bool = False
    eval: bool = False
    quiet: bool = False
    suppress_output: bool = False
    # `KEY=VALUE` 形式；仅在 create_frame 时随 `-env` 发送
    environment: Tuple[str, ...] = ()


@dataclass
class RetryState:
    """会话循环中的可变状态。"""

    display: Optional[str]
    alt_display: Optional[str]
    tty: bool
    nowait: bool
    exit_status: int = EXIT_SUCCESS
    retries: int = 0
    emacs_pid: int = 0
    stdin_lines: Optional[Tuple[str, ...]] = field(default=None, repr=False)

    @classmethod
    def from_intent(cls, intent: SessionIntent) -> "RetryState":
        """按意图初始化状态。"""

        return cls(display=intent.display, alt_display=intent.alt_display, tty=intent.tty, nowait=intent.nowait)

    def window_system_unsupported(self) -> None:
        """
        host 不支持所请求的窗口系统：

        - 有备用 display：切换过去并清空备用；
        - 否则：强制 tty 模式，并取消 nowait（tty frame 需要客户端保持连接）。
        """

        if self.alt_display:
            self.display = self.alt_display
            self.alt_display = None
        else:
            self.nowait = False
            self.tty = True
        self.retries += 1

    def fail(self) -> None:
        """记录失败退出码（不中断循环）。"""

        self.exit_status = EXIT_FAILURE


def current_directory(environ: Optional[Mapping[str, str]] = None) -> str:
    """
    取当前工作目录。

    说明：
    - `$PWD` 与 `.` 指向同一目录时优先使用它（保留符号链接形式的路径）；
    - 否则使用 `os.getcwd()`。

    异常：
    - ConfigurationError：无法取得当前目录（例如目录已被删除）
    """

    env = os.environ if environ is None else environ
    pwd = env.get("PWD")
    if pwd and os.path.isabs(pwd):
        try:
            if os.path.samefile(pwd, "."):
                return pwd
        except OSError:
            pass
    try:
        return os.getcwd()
    except OSError as exc:
        raise ConfigurationError(
            "Cannot get current working directory",
            code="CWD_UNAVAILABLE",
            details={"reason": str(exc)},
        ) from exc


def build_intent(
    *,
    cwd: str,
    arguments: Sequence[str] = (),
    environ: Optional[Mapping[str, str]] = None,
    tramp_prefix: Optional[str] = None,
    display: Optional[str] = None,
    alternate_display: Optional[str] = None,
    parent_id: Optional[str] = None,
    frame_parameters: Optional[str] = None,
    nowait: bool = False,
    create_frame: bool = False,
    tty: bool = False,
    eval: bool = False,
    quiet: bool = False,
    suppress_output: bool = False,
) -> SessionIntent:
    """
    由已解析的选项推导最终意图（display/tty 推导规则）。

    规则：
    - `tty` 与 `parent_id` 都意味着 create_frame；
    - create_frame 且非 tty 且未指定 display：备用 display 取配置，display 取 `$DISPLAY`；
    - display 仍为空时提升备用 display（并清空备用）；空串 display 视为未指定；
    - create_frame 但没有任何 display：改为 tty frame。
    """

    env = os.environ if environ is None else environ
    if tty or parent_id:
        create_frame = True

    alt_display: Optional[str] = None
    if create_frame and not tty and not display:
        alt_display = alternate_display
        display = env.get("DISPLAY")

    if not display:
        display = alt_display
        alt_display = None

    if display is not None and not display:
        display = None

    if create_frame and not display:
        tty = True

    environment: Tuple[str, ...] = ()
    if create_frame:
        environment = tuple(f"{k}={v}" for k, v in env.items())

    return SessionIntent(
        cwd=cwd,
        arguments=tuple(arguments),
        tramp_prefix=tramp_prefix or None,
        display=display,
        alt_display=alt_display,
        parent_id=parent_id,
        frame_parameters=frame_parameters,
        nowait=nowait,
        create_frame=create_frame,
        tty=tty,
        eval=eval,
        quiet=quiet,
        suppress_output=suppress_output,
        environment=environment,
    )
