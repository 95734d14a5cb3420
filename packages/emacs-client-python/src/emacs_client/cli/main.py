"""
emacs-client-python CLI。

约束：
- 使用 argparse（不引入第三方 CLI 依赖）；
- 选项集合与 emacsclient 保持一致，另加 `--config`（YAML overlay，可重复）与 `--debug`；
- 连接建立失败时：有回退编辑器则 exec 它，否则以退出码 1 结束。
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml
from pydantic import ValidationError

from emacs_client import __version__
from emacs_client.config.loader import ClientConfig, load_config, load_config_dicts
from emacs_client.core.console import Console, ensure_utf8_stdio
from emacs_client.core.errors import ClientError
from emacs_client.runtime.daemon import start_daemon_and_reconnect
from emacs_client.runtime.resolver import EndpointResolver
from emacs_client.session.controller import SessionController
from emacs_client.session.intent import EXIT_FAILURE, build_intent, current_directory
from emacs_client.session.terminal import stop_if_background

logger = logging.getLogger(__name__)

PROG = "emacs-client-py"


def _build_parser() -> argparse.ArgumentParser:
    """构建 CLI argparse parser。"""

    parser = argparse.ArgumentParser(
        prog=PROG,
        add_help=False,
        description=(
            "Tell the Emacs server to visit the specified files.\n"
            "Every FILE can be either just a FILENAME or [+LINE[:COLUMN]] FILENAME."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-V", "--version", action="version", version=f"emacsclient {__version__}")
    parser.add_argument("-H", "--help", action="help", help="Print this usage information message")
    parser.add_argument("-nw", "-t", "--tty", action="store_true", help="Open a new Emacs frame on the current terminal")
    parser.add_argument(
        "-c", "--create-frame", action="store_true", help="Create a new frame instead of trying to use the current Emacs frame"
    )
    parser.add_argument("-F", "--frame-parameters", metavar="ALIST", help="Set the parameters of a new frame")
    parser.add_argument("-e", "--eval", action="store_true", help="Evaluate the FILE arguments as ELisp expressions")
    parser.add_argument("-n", "--no-wait", action="store_true", help="Don't wait for the server to return")
    parser.add_argument("-q", "--quiet", action="store_true", help="Don't display messages on success")
    parser.add_argument(
        "-u", "--suppress-output", action="store_true", help="Don't display return values from the server"
    )
    parser.add_argument("-d", "--display", metavar="DISPLAY", help="Visit the file in the given display")
    parser.add_argument("--parent-id", metavar="ID", help="Open in parent window ID, via XEmbed")
    parser.add_argument(
        "-s", "--socket-name", metavar="SOCKET", help="Set filename of the UNIX socket for communication"
    )
    parser.add_argument("-f", "--server-file", metavar="SERVER", help="Set filename of the TCP authentication file")
    parser.add_argument(
        "-a",
        "--alternate-editor",
        metavar="EDITOR",
        help="Editor to fallback to if the server is not running; "
        "if EDITOR is the empty string, start Emacs in daemon mode and try connecting again",
    )
    parser.add_argument(
        "-T", "--tramp", metavar="PREFIX", help="PREFIX to prepend to filenames sent by emacsclient for locating files remotely via Tramp"
    )
    parser.add_argument("--config", action="append", default=[], help="Overlay config YAML path (repeatable).")
    parser.add_argument("--debug", action="store_true", help="Log debug information to stderr.")
    parser.add_argument("files", nargs="*", metavar="FILE")
    return parser


def _cli_overlay(args: argparse.Namespace) -> Dict[str, Any]:
    """命令行显式给出的连接参数（最高优先级）。"""

    client: Dict[str, Any] = {}
    if args.socket_name is not None:
        client["socket_name"] = args.socket_name
    if args.server_file is not None:
        client["server_file"] = args.server_file
    if args.alternate_editor is not None:
        client["alternate_editor"] = args.alternate_editor
    if args.tramp is not None:
        client["tramp_prefix"] = args.tramp
    return {"client": client} if client else {}


def _load_effective_config(args: argparse.Namespace, console: Console) -> Optional[ClientConfig]:
    """
    加载默认配置 + overlays + 环境变量 + 命令行参数。

    返回：
    - ClientConfig；失败时输出诊断并返回 None
    """

    try:
        config = load_config([Path(p).expanduser() for p in args.config], environ=os.environ)
        overlay = _cli_overlay(args)
        if overlay:
            config = load_config_dicts([config.model_dump(), overlay])
        return config
    except ValidationError as exc:
        console.error(f"config is invalid: {exc}")
    except (OSError, ValueError, yaml.YAMLError) as exc:
        console.error(f"config load failed: {exc}")
    return None


def split_alternate_editor(value: str) -> List[str]:
    """
    把回退编辑器命令拆成 argv。

    规则：
    - 以空格分隔；以 `"` 开头的 token 一直延伸到下一个 `"`（可包含空格）。
    """

    tokens: List[str] = []
    i = 0
    n = len(value)
    while i < n:
        start = i
        while i < n and value[i] in ' "':
            i += 1
        if i >= n:
            break
        sep = '"' if i > start and value[i - 1] == '"' else " "
        end = value.find(sep, i)
        if end < 0:
            tokens.append(value[i:])
            break
        tokens.append(value[i:end])
        i = end + 1
    return tokens


def fail(alternate_editor: Optional[str], files: Sequence[str], *, console: Console) -> int:
    """
    连接无法建立时的收尾：exec 回退编辑器（成功则不会返回），否则返回失败退出码。
    """

    if alternate_editor:
        argv = split_alternate_editor(alternate_editor) + list(files)
        reason = "empty command"
        if argv:
            try:
                os.execvp(argv[0], argv)
            except OSError as exc:
                reason = exc.strerror or str(exc)
        console.error(f'error executing alternate editor "{alternate_editor}": {reason}')
    return EXIT_FAILURE


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI 入口。"""

    ensure_utf8_stdio()
    parser = _build_parser()
    args = parser.parse_intermixed_args(list(argv) if argv is not None else None)
    console = Console(progname=parser.prog)

    if args.debug:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr, format="%(name)s: %(message)s")

    if not (args.files or args.eval or args.create_frame or args.tty):
        console.error(f"file name or argument required\nTry '{parser.prog} --help' for more information")
        return EXIT_FAILURE

    config = _load_effective_config(args, console)
    if config is None:
        return EXIT_FAILURE
    alternate_editor = config.client.alternate_editor

    try:
        intent = build_intent(
            cwd=current_directory(),
            arguments=args.files,
            tramp_prefix=config.client.tramp_prefix,
            display=args.display,
            alternate_display=config.client.alternate_display,
            parent_id=args.parent_id,
            frame_parameters=args.frame_parameters,
            nowait=args.no_wait,
            create_frame=args.create_frame,
            tty=args.tty,
            eval=args.eval,
            quiet=args.quiet,
            suppress_output=args.suppress_output,
        )
        if intent.tty and os.name != "nt":
            stop_if_background()

        # 空串回退编辑器：自动以 daemon 模式拉起 host 后重试一次
        start_daemon_if_needed = alternate_editor == ""
        resolver = EndpointResolver(config, console=console, quiet=args.quiet)
        transport = resolver.connect(allow_failure=alternate_editor is not None)
        if transport is None:
            if not start_daemon_if_needed:
                return fail(alternate_editor, args.files, console=console)
            transport = start_daemon_and_reconnect(resolver, config, console=console)

        controller = SessionController(
            intent,
            transport,
            console=console,
            max_retries=config.session.max_retries,
        )
        return controller.run()
    except ClientError as exc:
        logger.debug("session failed: %s", exc.to_issue())
        console.error(exc.message)
        return fail(alternate_editor, args.files, console=console)


if __name__ == "__main__":
    raise SystemExit(main())
