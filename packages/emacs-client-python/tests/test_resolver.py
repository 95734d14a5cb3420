from __future__ import annotations

import io
import os
from pathlib import Path
import shutil
import socket
import tempfile
from typing import Any, Dict, Iterator, List, Tuple

import pytest

from emacs_client.config.loader import ClientConfig, load_config_dicts
from emacs_client.core.console import Console
from emacs_client.core.errors import ConfigurationError, EndpointUnavailableError
from emacs_client.runtime import resolver as resolver_mod
from emacs_client.runtime.resolver import (
    EndpointResolver,
    LocalSocketEndpoint,
    SocketStatus,
    TcpEndpoint,
    read_server_file,
)

pytestmark = pytest.mark.skipif(os.name == "nt", reason="unix domain sockets required")

TOKEN = b"k" * 64


@pytest.fixture
def short_tmp() -> Iterator[Path]:
    # tmp_path 在部分平台上过长，放不进 sun_path
    d = Path(tempfile.mkdtemp(prefix="ec", dir="/tmp"))
    try:
        yield d
    finally:
        shutil.rmtree(d, ignore_errors=True)


def _config(client: Dict[str, Any] | None = None, **sections: Dict[str, Any]) -> ClientConfig:
    overlay: Dict[str, Any] = {"client": client or {}}
    overlay.update(sections)
    return load_config_dicts([overlay])


def _console() -> Tuple[Console, io.StringIO, io.StringIO]:
    out, err = io.StringIO(), io.StringIO()
    return Console(progname="emacsclient", stdout=out, stderr=err), out, err


def _listen_unix(tmpdir: Path, name: str) -> socket.socket:
    d = tmpdir / f"emacs{os.geteuid()}"
    d.mkdir(mode=0o700, exist_ok=True)
    srv = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    srv.bind(str(d / name))
    srv.listen(1)
    return srv


def _listen_tcp() -> socket.socket:
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.bind(("127.0.0.1", 0))
    srv.listen(4)
    return srv


def _write_server_file(path: Path, port: int, token: bytes = TOKEN) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(f"127.0.0.1:{port} 12345\n".encode("ascii") + token)
    return path


def test_explicit_socket_name_connects(short_tmp: Path) -> None:
    srv = _listen_unix(short_tmp, "work")
    console, _, err = _console()
    resolver = EndpointResolver(_config({"socket_name": "work"}), console=console, environ={"TMPDIR": str(short_tmp)})
    try:
        transport = resolver.connect(allow_failure=False)
        assert transport is not None
        conn, _ = srv.accept()
        with transport, conn:
            transport.send("-dir /x/ \n")
            assert conn.recv(64) == b"-dir /x/ \n"
    finally:
        srv.close()
    assert err.getvalue() == ""


def test_explicit_socket_is_tried_before_server_file(short_tmp: Path) -> None:
    unix_srv = _listen_unix(short_tmp, "work")
    tcp_srv = _listen_tcp()
    server_file = _write_server_file(short_tmp / "srv", tcp_srv.getsockname()[1])
    console, _, _ = _console()
    cfg = _config({"socket_name": "work", "server_file": str(server_file)})
    resolver = EndpointResolver(cfg, console=console, environ={"TMPDIR": str(short_tmp)})
    try:
        transport = resolver.connect(allow_failure=False)
        assert transport is not None
        # local socket 命中：不会发送鉴权前导
        assert transport.pending == b""
        transport.close()
    finally:
        unix_srv.close()
        tcp_srv.close()


def test_missing_socket_falls_back_to_server_file(short_tmp: Path) -> None:
    tcp_srv = _listen_tcp()
    server_file = _write_server_file(short_tmp / "srv", tcp_srv.getsockname()[1])
    console, out, err = _console()
    cfg = _config({"socket_name": "absent", "server_file": str(server_file)})
    resolver = EndpointResolver(cfg, console=console, environ={"TMPDIR": str(short_tmp)})
    try:
        transport = resolver.connect(allow_failure=False)
        assert transport is not None
        assert transport.pending == b"-auth " + TOKEN + b" "
        conn, _ = tcp_srv.accept()
        with transport, conn:
            transport.send("\n")
            data = b""
            while not data.endswith(b"\n"):
                data += conn.recv(256)
            assert data == b"-auth " + TOKEN + b" \n"
    finally:
        tcp_srv.close()
    assert "can't find socket; have you started the server?" in err.getvalue()
    # loopback 地址不提示“远程 socket”
    assert out.getvalue() == ""


def test_explicit_endpoint_failure_does_not_try_implicit_server(short_tmp: Path) -> None:
    implicit = _listen_unix(short_tmp, "server")
    console, _, _ = _console()
    resolver = EndpointResolver(_config({"socket_name": "absent"}), console=console, environ={"TMPDIR": str(short_tmp)})
    try:
        with pytest.raises(EndpointUnavailableError) as excinfo:
            resolver.connect(allow_failure=False)
        assert excinfo.value.code == "SOCKET_UNAVAILABLE"
        assert resolver.connect(allow_failure=True) is None
    finally:
        implicit.close()


def test_explicit_server_file_failure_is_reported(short_tmp: Path) -> None:
    console, _, _ = _console()
    cfg = _config({"server_file": str(short_tmp / "missing")})
    resolver = EndpointResolver(cfg, console=console, environ={"TMPDIR": str(short_tmp), "HOME": str(short_tmp)})

    with pytest.raises(EndpointUnavailableError) as excinfo:
        resolver.connect(allow_failure=False)
    assert excinfo.value.code == "SERVER_FILE_UNAVAILABLE"


def test_implicit_chain_exhausted_raises_configuration_error(short_tmp: Path) -> None:
    console, _, err = _console()
    resolver = EndpointResolver(_config(), console=console, environ={"TMPDIR": str(short_tmp), "HOME": str(short_tmp)})

    with pytest.raises(ConfigurationError) as excinfo:
        resolver.connect(allow_failure=False)
    assert excinfo.value.code == "NO_ENDPOINT"
    assert "--alternate-editor" in excinfo.value.message
    assert "can't find socket" in err.getvalue()

    assert resolver.connect(allow_failure=True) is None


def test_implicit_server_file_under_home(short_tmp: Path) -> None:
    tcp_srv = _listen_tcp()
    _write_server_file(short_tmp / ".emacs.d" / "server" / "server", tcp_srv.getsockname()[1])
    console, _, _ = _console()
    resolver = EndpointResolver(_config(), console=console, environ={"TMPDIR": str(short_tmp), "HOME": str(short_tmp)})
    try:
        transport = resolver.connect(allow_failure=False)
        assert transport is not None
        transport.close()
    finally:
        tcp_srv.close()


def test_remote_host_notice_respects_quiet(short_tmp: Path) -> None:
    tcp_srv = _listen_tcp()
    port = tcp_srv.getsockname()[1]
    cfg = _config(endpoint={"loopback_address": "127.0.0.2"})
    endpoint = TcpEndpoint(host="127.0.0.1", port=port, auth_token=TOKEN)
    try:
        console, out, _ = _console()
        t = EndpointResolver(cfg, console=console, environ={}).open_tcp(endpoint)
        assert t is not None
        t.close()
        assert out.getvalue() == "emacsclient: connected to remote socket at 127.0.0.1\n"

        console, out, _ = _console()
        t = EndpointResolver(cfg, console=console, environ={}, quiet=True).open_tcp(endpoint)
        assert t is not None
        t.close()
        assert out.getvalue() == ""
    finally:
        tcp_srv.close()


def test_socket_path_too_long(short_tmp: Path) -> None:
    console, _, _ = _console()
    resolver = EndpointResolver(
        _config({"socket_name": "s" * 200}), console=console, environ={"TMPDIR": str(short_tmp)}
    )
    with pytest.raises(ConfigurationError) as excinfo:
        resolver.connect(allow_failure=True)
    assert excinfo.value.code == "SOCKET_NAME_TOO_LONG"


def test_wrong_owner_retries_with_login_user(monkeypatch: pytest.MonkeyPatch) -> None:
    pwd = pytest.importorskip("pwd")
    calls: List[Path] = []
    statuses = [SocketStatus.WRONG_OWNER, SocketStatus.OK]

    def fake_status(path: Path, *, euid: int) -> Tuple[SocketStatus, int]:
        """按顺序返回预设状态。"""

        calls.append(path)
        return statuses[len(calls) - 1], 0

    class _Pw:
        pw_uid = 1234

    monkeypatch.setattr(resolver_mod, "socket_status", fake_status)
    monkeypatch.setattr(pwd, "getpwnam", lambda name: _Pw())

    console, _, err = _console()
    resolver = EndpointResolver(
        _config(), console=console, environ={"TMPDIR": "/t", "LOGNAME": "alice"}, euid=0
    )
    endpoint = resolver.resolve_local("server")

    assert calls == [Path("/t/emacs0/server"), Path("/t/emacs1234/server")]
    assert endpoint == LocalSocketEndpoint(path=Path("/t/emacs1234/server"))
    assert err.getvalue() == ""


def test_wrong_owner_without_alternate_user(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(resolver_mod, "socket_status", lambda path, *, euid: (SocketStatus.WRONG_OWNER, 0))
    console, _, err = _console()
    resolver = EndpointResolver(_config(), console=console, environ={"TMPDIR": "/t"}, euid=0)

    assert resolver.resolve_local("server") is None
    assert err.getvalue() == "emacsclient: Invalid socket owner\n"


def test_read_server_file(tmp_path: Path) -> None:
    path = tmp_path / "server"
    path.write_bytes(b"127.0.0.1:4711 999\n" + TOKEN + b"trailing")
    ep = read_server_file(path)
    assert ep == TcpEndpoint(host="127.0.0.1", port=4711, auth_token=TOKEN)
    assert "kkk" not in repr(ep)


def test_read_server_file_errors(tmp_path: Path) -> None:
    assert read_server_file(tmp_path / "missing") is None

    no_colon = tmp_path / "no-colon"
    no_colon.write_bytes(b"127.0.0.1 4711\n" + TOKEN)
    with pytest.raises(ConfigurationError) as excinfo:
        read_server_file(no_colon)
    assert excinfo.value.code == "SERVER_FILE_INVALID"

    short = tmp_path / "short"
    short.write_bytes(b"127.0.0.1:4711\n" + b"k" * 10)
    with pytest.raises(ConfigurationError) as excinfo:
        read_server_file(short)
    assert excinfo.value.code == "SERVER_FILE_AUTH_MISSING"
