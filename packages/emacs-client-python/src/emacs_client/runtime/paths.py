from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import sys
from typing import List, Mapping, Optional

# sockaddr_un.sun_path 的容量（含结尾 NUL）；路径长度必须严格小于它。
SUN_PATH_MAX = 104 if sys.platform == "darwin" or "bsd" in sys.platform else 108

_DARWIN_USER_TEMP_DIR = 65537


@dataclass(frozen=True)
class LocalSocketPaths:
    """local socket 名称解析结果。"""

    socket_path: Path
    # 仅当 name 是单个文件名分量（由本模块合成路径）时非空；用于 LOGNAME/USER 回退查找。
    tmpdir: Optional[str]
    server_name: str


def is_bare_name(name: str) -> bool:
    """name 是否不含路径分隔符（`/` 或 `\\`）。"""

    return "/" not in name and "\\" not in name


def is_absolute_file_name(name: str) -> bool:
    """
    判断文件名是否为绝对路径（用于 Tramp 前缀与 server file 定位）。

    说明：
    - `/xxx` 总是绝对路径；空串视为相对路径；
    - Windows 下额外接受 `X:\\`、`X:/` 与 `\\` 开头的形式。
    """

    if not name:
        return False
    if name[0] == "/":
        return True
    if os.name == "nt":
        if len(name) >= 3 and name[0].isalpha() and name[1] == ":" and name[2] in "\\/":
            return True
        if name[0] == "\\":
            return True
    return False


def socket_tmpdir(environ: Mapping[str, str]) -> str:
    """
    local socket 的临时根目录：`$TMPDIR`，macOS 下回退 `confstr`，最后 `/tmp`。
    """

    tmpdir = environ.get("TMPDIR")
    if tmpdir:
        return tmpdir
    if sys.platform == "darwin":
        try:
            value = os.confstr(_DARWIN_USER_TEMP_DIR)
        except (OSError, ValueError):
            value = None
        if value:
            return value
    return "/tmp"


def user_socket_path(tmpdir: str, uid: int, server_name: str) -> Path:
    """拼出 `<tmpdir>/emacs<uid>/<server_name>`。"""

    return Path(tmpdir) / f"emacs{uid}" / server_name


def get_local_socket_paths(name: str, *, environ: Mapping[str, str], euid: int) -> LocalSocketPaths:
    """
    解析 local socket 名称。

    参数：
    - name：socket 名称；不含分隔符时视为 `<tmpdir>/emacs<euid>/` 下的文件名，否则原样使用
    - environ：环境变量（读取 TMPDIR）
    - euid：有效 uid
    """

    if is_bare_name(name):
        tmpdir = socket_tmpdir(environ)
        return LocalSocketPaths(socket_path=user_socket_path(tmpdir, euid, name), tmpdir=tmpdir, server_name=name)
    return LocalSocketPaths(socket_path=Path(name), tmpdir=None, server_name=name)


def server_file_candidates(name: str, *, environ: Mapping[str, str], server_dir: str) -> List[Path]:
    """
    server file 的候选路径（按顺序尝试）。

    规则：
    - 绝对路径：只用它本身；
    - 否则：`$HOME/<server_dir>/<name>`；Windows 下追加 `$APPDATA/<server_dir>/<name>`。
    """

    if is_absolute_file_name(name):
        return [Path(name)]
    out: List[Path] = []
    home = environ.get("HOME")
    if home:
        out.append(Path(home) / server_dir / name)
    if os.name == "nt":
        appdata = environ.get("APPDATA")
        if appdata:
            out.append(Path(appdata) / server_dir / name)
    return out
