"""
终端输出面（stdout/stderr）与 UTF-8 启动健壮性。

职责：
- 诊断信息统一写 stderr（错误）或 stdout（提示），写完立即 flush；
- host 推送的 `-print` / `-print-nonl` / `-error` 输出需要避免多余空行，
  因此这里维护一个 “上一次输出是否以换行结尾” 的光标（`skip_newline`）。

说明：
- `ensure_utf8_stdio()` 只能修复“输出编码”问题；入口应尽早调用。
"""

from __future__ import annotations

import sys
from typing import Optional, TextIO

ERROR_MARKER = "*ERROR*: "


def ensure_utf8_stdio() -> None:
    """
    best-effort 将 stdout/stderr reconfigure 为 UTF-8。

    行为：
    - 若流对象支持 `reconfigure()`，则设置 `encoding="utf-8", errors="replace"`；
    - 任何异常均 fail-open（不阻断程序启动）。
    """

    for stream in (sys.stdout, sys.stderr):
        try:
            reconfigure = getattr(stream, "reconfigure", None)
            if callable(reconfigure):
                reconfigure(encoding="utf-8", errors="replace")
        except Exception:
            continue


class Console:
    """
    客户端输出面。

    光标语义：
    - `skip_newline=True`：当前输出位于行首，下一条 `-print` 不需要补前导换行；
    - 初始为 True；打印 "Waiting for Emacs..." 后为 False。
    """

    def __init__(
        self,
        *,
        progname: str = "emacsclient",
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
    ) -> None:
        """
        创建 Console。

        参数：
        - progname：诊断前缀（通常为 argv[0]）
        - stdout/stderr：输出流（测试可注入 StringIO；默认取调用时的 sys.stdout/sys.stderr）
        """

        self.progname = progname
        self._stdout = stdout
        self._stderr = stderr
        self.skip_newline = True

    @property
    def stdout(self) -> TextIO:
        """当前 stdout 流。"""

        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def stderr(self) -> TextIO:
        """当前 stderr 流。"""

        return self._stderr if self._stderr is not None else sys.stderr

    def message(self, text: str, *, is_error: bool = False) -> None:
        """原样写出一条消息并 flush（错误写 stderr，其余写 stdout）。"""

        f = self.stderr if is_error else self.stdout
        f.write(text)
        f.flush()

    def error(self, text: str) -> None:
        """写出 `<progname>: <text>` 诊断行到 stderr。"""

        self.message(f"{self.progname}: {text}\n", is_error=True)

    def notice(self, text: str) -> None:
        """写出 `<progname>: <text>` 提示行到 stdout。"""

        self.message(f"{self.progname}: {text}\n")

    def _track(self, text: str) -> None:
        """根据刚输出的文本更新换行光标（空文本不改变光标）。"""

        if text:
            self.skip_newline = text.endswith("\n")

    def print_text(self, text: str) -> None:
        """`-print`：必要时补前导换行，再输出 text。"""

        self.stdout.write(text if self.skip_newline else "\n" + text)
        self._track(text)

    def print_nonl(self, text: str) -> None:
        """`-print-nonl`：接续上一条输出，从不补前导换行。"""

        self.stdout.write(text)
        self._track(text)

    def host_error(self, text: str) -> None:
        """`-error`：若 stdout 停在行中则先换行，再把错误写到 stderr。"""

        if not self.skip_newline:
            self.stdout.write("\n")
        self.stdout.flush()
        self.stderr.write(ERROR_MARKER + text)
        self.stderr.flush()
        self._track(text)

    def unknown_message(self, line: str) -> None:
        """未知 host 消息：按错误格式原样打印，但不终止会话。"""

        prefix = "" if self.skip_newline else "\n"
        self.stdout.write(f"{prefix}{ERROR_MARKER}Unknown message: {line}\n")
        self.skip_newline = True

    def begin_line(self) -> None:
        """确保光标位于行首（`-suspend` 之前使用）。"""

        if not self.skip_newline:
            self.stdout.write("\n")
        self.skip_newline = True
        self.stdout.flush()

    def waiting(self, text: str = "Waiting for Emacs...") -> None:
        """打印等待提示（不换行）。"""

        self.stdout.write(text)
        self.skip_newline = False
        self.stdout.flush()

    def finish(self) -> None:
        """会话结束：保证输出以换行结尾，并 flush。"""

        if not self.skip_newline:
            self.stdout.write("\n")
            self.skip_newline = True
        self.stdout.flush()
