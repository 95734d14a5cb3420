"""
Endpoint 发现与连接。

优先级（命中第一个成功者即停止）：
1. 显式 local socket 名（配置或 EMACS_SOCKET_NAME）
2. 显式 server file（配置或 EMACS_SERVER_FILE）→ TCP
3. 隐式 local socket `server`
4. 隐式 server file `server`
5. 都不可用 → ConfigurationError（既没有 socket，也没有回退编辑器）

给出了显式 endpoint（1 或 2）时只在显式项之间回退，不再尝试 3、4。

local socket：
- stat 失败 → unreachable（ENOENT 给出“是否已启动 server”的提示）；
- 属主 ≠ euid → wrong owner；仅此情形下按 LOGNAME/USER 查到的 uid 再找一次；
- 路径超过 sun_path 容量 → ConfigurationError（不可重试）。

TCP：
- server file 第一行 `host:port`，随后是固定长度（默认 64 字节）的原始 token；
- 文件不存在：不算致命（继续尝试下一个候选）；文件存在但格式损坏：ConfigurationError；
- 连接后开启 SO_LINGER，并立即发送 `-auth <token> ` 前导。
"""

from __future__ import annotations

from dataclasses import dataclass
import enum
import errno
import logging
import os
from pathlib import Path
import socket
import struct
from typing import Mapping, Optional, Tuple, Union

from emacs_client.config.loader import ClientConfig
from emacs_client.core.console import Console
from emacs_client.core.errors import ConfigurationError, EndpointUnavailableError
from emacs_client.runtime.paths import (
    SUN_PATH_MAX,
    get_local_socket_paths,
    server_file_candidates,
    user_socket_path,
)
from emacs_client.runtime.transport import Transport

logger = logging.getLogger(__name__)

# server file 第一行最多读取的字节数（含换行），与 host 写出的 "a.b.c.d:port\n" 匹配。
_SERVER_LINE_MAX = 31


@dataclass(frozen=True)
class LocalSocketEndpoint:
    """本机 Unix domain socket endpoint。"""

    path: Path


@dataclass(frozen=True)
class TcpEndpoint:
    """TCP endpoint（来自 server file）。"""

    host: str
    port: int
    auth_token: bytes

    def __repr__(self) -> str:
        """避免在日志/断言输出中泄漏 token。"""

        return f"TcpEndpoint(host={self.host!r}, port={self.port}, auth_token=<{len(self.auth_token)} bytes>)"


Endpoint = Union[LocalSocketEndpoint, TcpEndpoint]


class SocketStatus(enum.Enum):
    """local socket 文件的可用性。"""

    OK = 0
    WRONG_OWNER = 1
    UNREACHABLE = 2


def socket_status(path: Path, *, euid: int) -> Tuple[SocketStatus, int]:
    """
    检查 socket 文件是否存在且属于 euid。

    返回：
    - (status, errno)：errno 仅在 UNREACHABLE 时有意义
    """

    try:
        st = os.stat(path)
    except OSError as exc:
        return SocketStatus.UNREACHABLE, int(exc.errno or 0)
    if st.st_uid != euid:
        return SocketStatus.WRONG_OWNER, 0
    return SocketStatus.OK, 0


def _leading_int(raw: bytes) -> int:
    """atoi 语义：取开头的十进制数字；没有数字时为 0。"""

    digits = bytearray()
    for b in raw.strip():
        if not 48 <= b <= 57:
            break
        digits.append(b)
    return int(digits) if digits else 0


def read_server_file(path: Path, *, auth_key_length: int = 64) -> Optional[TcpEndpoint]:
    """
    解析 TCP server file。

    返回：
    - TcpEndpoint：解析成功
    - None：文件不存在/无法打开

    异常：
    - ConfigurationError：缺少 `:`，或 token 不足 auth_key_length 字节
    """

    try:
        f = open(path, "rb")
    except OSError:
        return None
    with f:
        line = f.readline(_SERVER_LINE_MAX)
        host, sep, port = line.partition(b":")
        if not sep:
            raise ConfigurationError(
                "invalid configuration info",
                code="SERVER_FILE_INVALID",
                details={"path": str(path)},
            )
        token = f.read(auth_key_length)
        if len(token) < auth_key_length:
            raise ConfigurationError(
                "cannot read authentication info",
                code="SERVER_FILE_AUTH_MISSING",
                details={"path": str(path), "read": len(token)},
            )
    return TcpEndpoint(host=host.decode("ascii", errors="replace").strip(), port=_leading_int(port), auth_token=token)


class EndpointResolver:
    """
    按优先级链发现 endpoint，并返回已连接（TCP 已发送鉴权前导）的 Transport。

    说明：
    - 非致命的失败（socket 不存在、connect 被拒）只输出诊断，由链上的下一步继续；
    - 是否允许“全部失败后返回 None”由调用方决定（存在回退编辑器/需要自动拉起 daemon 时允许）。
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        console: Console,
        environ: Optional[Mapping[str, str]] = None,
        quiet: bool = False,
        euid: Optional[int] = None,
    ) -> None:
        """
        创建 resolver。

        参数：
        - config：已合并的配置（`client.socket_name` / `client.server_file` 已包含环境变量覆盖）
        - console：诊断输出
        - environ：环境变量（读取 TMPDIR/HOME/LOGNAME/USER；默认 os.environ）
        - quiet：为 True 时不提示“连接到远程 TCP 地址”
        - euid：有效 uid（默认 os.geteuid()）
        """

        self._config = config
        self._console = console
        self._environ: Mapping[str, str] = os.environ if environ is None else environ
        self._quiet = bool(quiet)
        self._euid = int(euid) if euid is not None else _geteuid()

    @property
    def has_local_sockets(self) -> bool:
        """平台是否支持文件系统中的 local socket。"""

        return hasattr(socket, "AF_UNIX")

    # ---- local socket ----

    def _alternate_user_uid(self) -> Optional[int]:
        """从 LOGNAME/USER 查到与 euid 不同的 uid（例如在 su 下运行）。"""

        user_name = self._environ.get("LOGNAME") or self._environ.get("USER")
        if not user_name:
            return None
        try:
            import pwd

            pw = pwd.getpwnam(user_name)
        except (ImportError, KeyError):
            return None
        if pw.pw_uid == self._euid:
            return None
        return int(pw.pw_uid)

    def _check_path_length(self, path: Path) -> None:
        """路径必须放得进 sockaddr_un.sun_path。"""

        if len(os.fsencode(str(path))) >= SUN_PATH_MAX:
            raise ConfigurationError(
                f"socket-name {path} too long",
                code="SOCKET_NAME_TOO_LONG",
                details={"path": str(path), "limit": SUN_PATH_MAX},
            )

    def resolve_local(self, name: str) -> Optional[LocalSocketEndpoint]:
        """
        把 socket 名解析为已校验的 LocalSocketEndpoint。

        返回：
        - LocalSocketEndpoint：文件存在且属于当前有效用户（含 LOGNAME/USER 回退路径）
        - None：不可用（已输出诊断）
        """

        paths = get_local_socket_paths(name, environ=self._environ, euid=self._euid)
        path = paths.socket_path
        self._check_path_length(path)
        status, err = socket_status(path, euid=self._euid)
        logger.debug("local socket %s: %s", path, status.name)

        if status is SocketStatus.WRONG_OWNER and paths.tmpdir is not None:
            uid = self._alternate_user_uid()
            if uid is not None:
                path = user_socket_path(paths.tmpdir, uid, paths.server_name)
                self._check_path_length(path)
                status, err = socket_status(path, euid=self._euid)
                logger.debug("local socket (uid %d) %s: %s", uid, path, status.name)

        if status is SocketStatus.WRONG_OWNER:
            self._console.error("Invalid socket owner")
            return None
        if status is SocketStatus.UNREACHABLE:
            if err == errno.ENOENT:
                self._console.error(
                    "can't find socket; have you started the server?\n"
                    'To start the server in Emacs, type "M-x server-start".'
                )
            else:
                self._console.error(f"can't stat {path}: {os.strerror(err)}")
            return None
        return LocalSocketEndpoint(path=path)

    def open_local(self, endpoint: LocalSocketEndpoint) -> Optional[Transport]:
        """连接 local socket；失败只输出诊断并返回 None。"""

        s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            s.connect(str(endpoint.path))
        except OSError as exc:
            s.close()
            self._console.error(f"connect: {exc.strerror or exc}")
            return None
        logger.debug("connected to local socket %s", endpoint.path)
        return self._wrap(s)

    def connect_local(self, name: str) -> Optional[Transport]:
        """resolve_local + open_local。"""

        endpoint = self.resolve_local(name)
        if endpoint is None:
            return None
        return self.open_local(endpoint)

    # ---- TCP ----

    def resolve_tcp(self, name: str) -> Optional[TcpEndpoint]:
        """按候选路径读取 server file；全部不存在时返回 None。"""

        for path in server_file_candidates(
            name, environ=self._environ, server_dir=self._config.endpoint.server_dir
        ):
            endpoint = read_server_file(path, auth_key_length=self._config.endpoint.auth_key_length)
            if endpoint is not None:
                logger.debug("server file %s -> %s:%d", path, endpoint.host, endpoint.port)
                return endpoint
        return None

    def open_tcp(self, endpoint: TcpEndpoint) -> Optional[Transport]:
        """
        连接 TCP endpoint，开启 linger，并发送鉴权前导。

        说明：
        - 非 loopback 地址给出提示（非错误），quiet 时省略。
        """

        if endpoint.host != self._config.endpoint.loopback_address and not self._quiet:
            self._console.notice(f"connected to remote socket at {endpoint.host}")
        try:
            s = socket.socket(socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP)
        except OSError as exc:
            self._console.error(f"socket: {exc.strerror or exc}")
            return None
        try:
            s.connect((endpoint.host, endpoint.port))
        except OSError as exc:
            s.close()
            self._console.error(f"connect: {exc.strerror or exc}")
            return None
        s.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, self._config.transport.linger_sec))
        transport = self._wrap(s)
        transport.send(b"-auth " + endpoint.auth_token + b" ")
        return transport

    def connect_tcp(self, name: str) -> Optional[Transport]:
        """resolve_tcp + open_tcp。"""

        endpoint = self.resolve_tcp(name)
        if endpoint is None:
            return None
        return self.open_tcp(endpoint)

    # ---- 优先级链 ----

    def connect(self, *, allow_failure: bool) -> Optional[Transport]:
        """
        按优先级链建立连接。

        规则：
        - 显式 socket 名与显式 server file 依次尝试（socket 优先），任一成功即返回；
          显式 endpoint 全部失败时不再尝试隐式的 `server`；
        - 没有任何显式 endpoint 时，依次尝试隐式 local socket 与隐式 server file。

        参数：
        - allow_failure：为 True 时全部失败返回 None；否则显式 endpoint 失败抛
          EndpointUnavailableError，隐式尝试全部失败抛 ConfigurationError

        异常：
        - ConfigurationError：server file 损坏、socket 路径过长、或无任何可用 endpoint
        """

        client = self._config.client
        server_name = self._config.endpoint.server_name
        explicit_socket = client.socket_name if self.has_local_sockets else None

        if explicit_socket or client.server_file:
            if explicit_socket:
                transport = self.connect_local(explicit_socket)
                if transport is not None:
                    return transport
            if client.server_file:
                transport = self.connect_tcp(client.server_file)
                if transport is not None:
                    return transport
            if allow_failure:
                return None
            if client.server_file:
                raise EndpointUnavailableError(
                    f'error accessing server file "{client.server_file}"',
                    code="SERVER_FILE_UNAVAILABLE",
                    details={"server_file": client.server_file},
                )
            raise EndpointUnavailableError(
                f'error accessing socket "{explicit_socket}"',
                code="SOCKET_UNAVAILABLE",
                details={"socket_name": explicit_socket},
            )

        if self.has_local_sockets:
            transport = self.connect_local(server_name)
            if transport is not None:
                return transport

        transport = self.connect_tcp(server_name)
        if transport is not None or allow_failure:
            return transport

        options = "\t--socket-name\n" if self.has_local_sockets else ""
        raise ConfigurationError(
            "No socket or alternate editor.  Please use:\n\n"
            + options
            + "\t--server-file      (or environment variable EMACS_SERVER_FILE)\n"
            + "\t--alternate-editor (or environment variable ALTERNATE_EDITOR)",
            code="NO_ENDPOINT",
        )

    def _wrap(self, s: socket.socket) -> Transport:
        """按配置的缓冲参数包装 Transport。"""

        return Transport(
            s,
            send_buffer_size=self._config.transport.send_buffer_size,
            recv_buffer_size=self._config.transport.recv_buffer_size,
        )


def _geteuid() -> int:
    """有效 uid；不支持的平台返回 -1。"""

    geteuid = getattr(os, "geteuid", None)
    return int(geteuid()) if callable(geteuid) else -1
