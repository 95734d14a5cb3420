"""
自动拉起 host daemon，并重试一次连接。

触发条件：`alternate_editor` 为空串，且首次 endpoint 解析失败。

语义：
- 以 `emacs --daemon[=<socket_name>]` 启动 host；daemon 在可接受连接后才让启动进程退出，
  因此这里阻塞等待启动进程的退出码作为“就绪信号”；
- 退出码非 0 → DaemonStartError；
- 之后恰好再解析一次 endpoint（允许失败）；仍失败 → DaemonStartError。
"""

from __future__ import annotations

import logging
import os
import subprocess
from typing import Callable, List, Optional

from emacs_client.config.loader import ClientConfig
from emacs_client.core.console import Console
from emacs_client.core.errors import DaemonStartError
from emacs_client.runtime.resolver import EndpointResolver
from emacs_client.runtime.transport import Transport

logger = logging.getLogger(__name__)

Runner = Callable[[List[str]], int]


def daemon_argv(config: ClientConfig) -> List[str]:
    """
    构造 daemon 启动命令。

    说明：
    - 显式配置了 socket 名时传 `--daemon=<socket_name>`，让 host 监听同一个名字。
    """

    argv = [str(x) for x in config.daemon.command]
    option = config.daemon.option
    if config.client.socket_name:
        option = f"{option}={config.client.socket_name}"
    argv.append(option)
    return argv


def _run_and_wait(argv: List[str]) -> int:
    """启动进程并等待其退出，返回退出码。"""

    proc = subprocess.run(  # noqa: S603
        argv,
        stdin=subprocess.DEVNULL,
        close_fds=True,
    )
    return int(proc.returncode)


def start_daemon(config: ClientConfig, *, runner: Optional[Runner] = None) -> None:
    """
    启动 host daemon 并等待就绪。

    异常：
    - DaemonStartError：无法执行命令，或启动进程以非 0 状态退出
    """

    if os.name == "nt":
        raise DaemonStartError("starting the Emacs daemon is not supported on this platform")
    argv = daemon_argv(config)
    logger.debug("starting daemon: %s", argv)
    run = runner or _run_and_wait
    try:
        code = run(argv)
    except OSError as exc:
        raise DaemonStartError(
            f"error starting emacs daemon: {exc.strerror or exc}",
            details={"argv": argv},
        ) from exc
    if code != 0:
        raise DaemonStartError(
            "Could not start the Emacs daemon",
            details={"argv": argv, "exit_code": code},
        )


def start_daemon_and_reconnect(
    resolver: EndpointResolver,
    config: ClientConfig,
    *,
    console: Console,
    runner: Optional[Runner] = None,
) -> Transport:
    """
    启动 daemon 后恰好重试一次 endpoint 解析。

    返回：
    - 已连接的 Transport
    """

    start_daemon(config, runner=runner)
    console.message("Emacs daemon should have started, trying to connect again\n", is_error=True)
    transport = resolver.connect(allow_failure=True)
    if transport is None:
        raise DaemonStartError("Cannot connect even after starting the Emacs daemon")
    return transport
