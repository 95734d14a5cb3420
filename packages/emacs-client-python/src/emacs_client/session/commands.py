"""
客户端 → host 命令流构造。

一次会话的命令流（空格分隔、以单个换行结束）：
- 前导（只发一次）：`-env`（仅 create_frame）… `-dir [<tramp>]<cwd>/`
- 每次尝试（重试时整段重建）：`-nowait` `-current-frame` `-display` `-parent-id`
  `-frame-parameters` `-tty` `-window-system`，随后是 `-eval`/`-file`/`-position`，最后 `\\n`
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from emacs_client.protocol.codec import quote_argument
from emacs_client.runtime.paths import is_absolute_file_name
from emacs_client.session.intent import RetryState, SessionIntent
from emacs_client.session.terminal import TerminalInfo

_POSITION_CHARS = frozenset("0123456789:")


class Sink(Protocol):
    """命令流的写出端（Transport 满足该协议）。"""

    def send(self, data: str) -> None:
        """写出一段文本。"""


def is_position_argument(arg: str) -> bool:
    """`+LINE[:COL]` 形式（其后没有文件名）的参数作为独立的 `-position` 发送。"""

    return arg.startswith("+") and all(c in _POSITION_CHARS for c in arg[1:])


class CommandWriter:
    """把指令与转义后的参数写到 Sink。"""

    def __init__(self, sink: Sink) -> None:
        """绑定写出端。"""

        self._sink = sink

    def raw(self, text: str) -> None:
        """原样写出（不转义）。"""

        self._sink.send(text)

    def quoted(self, value: str) -> None:
        """写出转义后的参数（不带分隔空格）。"""

        self._sink.send(quote_argument(value))

    def directive(self, keyword: str, *values: str) -> None:
        """写出 `<keyword> <quoted value> ... `（每个 token 后跟一个空格）。"""

        self._sink.send(keyword + " ")
        for value in values:
            self._sink.send(quote_argument(value) + " ")

    def end(self) -> None:
        """结束本行（触发 Transport flush）。"""

        self._sink.send("\n")


def write_preamble(writer: CommandWriter, intent: SessionIntent) -> None:
    """写出环境变量与工作目录（每个会话只发一次）。"""

    if intent.create_frame:
        for item in intent.environment:
            writer.directive("-env", item)
    writer.raw("-dir ")
    if intent.tramp_prefix:
        writer.quoted(intent.tramp_prefix)
    writer.quoted(intent.cwd)
    writer.raw("/ ")


def write_arguments(writer: CommandWriter, intent: SessionIntent, eval_lines: Optional[Sequence[str]]) -> None:
    """
    写出参数部分。

    - eval 模式：每个参数一个 `-eval`；
    - 否则：`+LINE[:COL]` → `-position`，其余 → `-file`（绝对路径时先写 Tramp 前缀）；
    - 没有参数且为 eval 模式：对 eval_lines（来自 stdin）逐行发 `-eval`。
    """

    if intent.arguments:
        for arg in intent.arguments:
            if intent.eval:
                writer.directive("-eval", arg)
            elif is_position_argument(arg):
                writer.directive("-position", arg)
            else:
                writer.raw("-file ")
                if intent.tramp_prefix and is_absolute_file_name(arg):
                    writer.quoted(intent.tramp_prefix)
                writer.quoted(arg)
                writer.raw(" ")
    elif intent.eval:
        for line in eval_lines or ():
            writer.directive("-eval", line)


def write_attempt(
    writer: CommandWriter,
    intent: SessionIntent,
    state: RetryState,
    *,
    terminal: Optional[TerminalInfo],
    eval_lines: Optional[Sequence[str]] = None,
) -> None:
    """
    写出一次尝试的完整命令段（以换行结束）。

    参数：
    - terminal：已确认可用且需要登记的终端；None 表示不发 `-tty`
    - eval_lines：eval 模式下从 stdin 读到的表达式
    """

    if state.nowait:
        writer.raw("-nowait ")
    if not intent.create_frame:
        writer.raw("-current-frame ")
    if state.display:
        writer.directive("-display", state.display)
    if intent.parent_id:
        writer.directive("-parent-id", intent.parent_id)
    if intent.frame_parameters and intent.create_frame:
        writer.directive("-frame-parameters", intent.frame_parameters)
    if terminal is not None:
        writer.directive("-tty", terminal.name, terminal.type)
    if intent.create_frame and not state.tty:
        writer.raw("-window-system ")
    write_arguments(writer, intent, eval_lines)
    writer.end()

