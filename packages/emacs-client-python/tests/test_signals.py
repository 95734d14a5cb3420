from __future__ import annotations

import os
import signal
import socket
import threading
from typing import List, Tuple

import pytest

from emacs_client.runtime.transport import Transport
from emacs_client.session import signals as signals_mod
from emacs_client.session.intent import RetryState
from emacs_client.session.signals import BridgeState, SignalBridge, signals_supported

pytestmark = pytest.mark.skipif(not signals_supported(), reason="job control signals required")


class _Sock:
    """记录写出字节。"""

    def __init__(self) -> None:
        """初始化。"""

        self.sent: List[bytes] = []

    def send(self, data) -> int:
        """全部写出。"""

        self.sent.append(bytes(data))
        return len(data)

    def close(self) -> None:
        """无操作。"""


def _bridge(*, tty: bool = True, pid: int = 0) -> Tuple[SignalBridge, _Sock, RetryState]:
    sock = _Sock()
    state = RetryState(display=None, alt_display=None, tty=tty, nowait=False, emacs_pid=pid)
    return SignalBridge(transport=Transport(sock), state=state), sock, state  # type: ignore[arg-type]


@pytest.fixture
def kills(monkeypatch: pytest.MonkeyPatch) -> List[Tuple[int, int]]:
    calls: List[Tuple[int, int]] = []
    monkeypatch.setattr(signals_mod.os, "kill", lambda pid, sig: calls.append((pid, sig)))
    return calls


def test_window_change_is_forwarded_to_host(kills: List[Tuple[int, int]]) -> None:
    bridge, _, state = _bridge()
    bridge.on_window_change(signal.SIGWINCH)
    assert kills == []

    state.emacs_pid = 4242
    bridge.on_window_change(signal.SIGWINCH)
    assert kills == [(4242, signal.SIGWINCH)]


def test_continue_in_foreground_sends_resume(monkeypatch: pytest.MonkeyPatch, kills: List[Tuple[int, int]]) -> None:
    monkeypatch.setattr(signals_mod, "foreground_group", lambda: os.getpgrp())
    bridge, sock, _ = _bridge()
    bridge.status = BridgeState.SUSPENDED

    bridge.on_continue(signal.SIGCONT)

    assert sock.sent == [b"-resume \n"]
    assert bridge.status is BridgeState.RUNNING
    assert kills == []


def test_continue_in_background_stops_again(monkeypatch: pytest.MonkeyPatch, kills: List[Tuple[int, int]]) -> None:
    monkeypatch.setattr(signals_mod, "foreground_group", lambda: os.getpgrp() + 1)
    bridge, sock, _ = _bridge(tty=True)

    bridge.on_continue(signal.SIGCONT)

    assert sock.sent == []
    assert kills == [(-os.getpgrp(), signal.SIGTTIN)]


def test_continue_in_background_without_tty_does_nothing(
    monkeypatch: pytest.MonkeyPatch, kills: List[Tuple[int, int]]
) -> None:
    monkeypatch.setattr(signals_mod, "foreground_group", lambda: os.getpgrp() + 1)
    bridge, sock, _ = _bridge(tty=False)

    bridge.on_continue(signal.SIGCONT)

    assert sock.sent == []
    assert kills == []


def test_stop_sends_suspend_before_raising(monkeypatch: pytest.MonkeyPatch) -> None:
    bridge, sock, _ = _bridge()
    events: List[str] = []

    def fake_raise(signum: int) -> None:
        """记录重新触发时的状态。"""

        events.append(f"raise {int(signum)} after {b''.join(sock.sent)!r}")
        assert signal.getsignal(signum) == signal.SIG_DFL

    previous = signal.getsignal(signal.SIGTSTP)
    monkeypatch.setattr(signals_mod.signal, "raise_signal", fake_raise)
    try:
        bridge.on_stop(signal.SIGTSTP)
        assert signal.getsignal(signal.SIGTSTP) == bridge.on_stop
    finally:
        signal.signal(signal.SIGTSTP, previous)

    suspend_bytes = b'-suspend \n'
    assert events == [f"raise {int(signal.SIGTSTP)} after {suspend_bytes!r}"]
    assert bridge.status is BridgeState.SUSPENDED


def test_install_is_idempotent_and_uninstall_restores() -> None:
    before = {s: signal.getsignal(s) for s in (signal.SIGWINCH, signal.SIGCONT, signal.SIGTSTP, signal.SIGTTOU)}
    bridge, _, _ = _bridge()

    assert bridge.install()
    assert bridge.install()
    assert bridge.installed
    assert signal.getsignal(signal.SIGWINCH) == bridge.on_window_change

    bridge.uninstall()
    assert not bridge.installed
    assert {s: signal.getsignal(s) for s in before} == before


class _BrokenSock(_Sock):
    """写出即失败的连接。"""

    def send(self, data) -> int:
        """模拟对端已断开。"""

        raise BrokenPipeError(32, "Broken pipe")


def test_window_change_for_vanished_host_does_not_break_receive() -> None:
    a, b = socket.socketpair()
    state = RetryState(display=None, alt_display=None, tty=True, nowait=False, emacs_pid=4000000)
    transport = Transport(a)
    bridge = SignalBridge(transport=transport, state=state)

    def resize_then_reply() -> None:
        """先触发一次终端尺寸变化，再让 host 回一条消息。"""

        os.kill(os.getpid(), signal.SIGWINCH)
        b.sendall(b"-print ok\n")

    timer = threading.Timer(0.1, resize_then_reply)
    assert bridge.install()
    try:
        timer.start()
        assert transport.receive() == b"-print ok\n"
    finally:
        timer.join(timeout=5)
        bridge.uninstall()
        transport.close()
        b.close()


def test_window_change_ignores_kill_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def denied(pid: int, sig: int) -> None:
        """模拟 host 属于其他用户。"""

        raise PermissionError(1, "Operation not permitted")

    monkeypatch.setattr(signals_mod.os, "kill", denied)
    bridge, _, _ = _bridge(pid=4242)

    bridge.on_window_change(signal.SIGWINCH)


def test_continue_with_dead_connection_still_resumes(
    monkeypatch: pytest.MonkeyPatch, kills: List[Tuple[int, int]]
) -> None:
    monkeypatch.setattr(signals_mod, "foreground_group", lambda: os.getpgrp())
    state = RetryState(display=None, alt_display=None, tty=True, nowait=False, emacs_pid=0)
    bridge = SignalBridge(transport=Transport(_BrokenSock()), state=state)  # type: ignore[arg-type]
    bridge.status = BridgeState.SUSPENDED

    bridge.on_continue(signal.SIGCONT)

    assert bridge.status is BridgeState.RUNNING


def test_stop_with_dead_connection_still_stops(monkeypatch: pytest.MonkeyPatch) -> None:
    raised: List[int] = []
    state = RetryState(display=None, alt_display=None, tty=True, nowait=False, emacs_pid=0)
    bridge = SignalBridge(transport=Transport(_BrokenSock()), state=state)  # type: ignore[arg-type]

    previous = signal.getsignal(signal.SIGTSTP)
    monkeypatch.setattr(signals_mod.signal, "raise_signal", lambda signum: raised.append(int(signum)))
    try:
        bridge.on_stop(signal.SIGTSTP)
        assert signal.getsignal(signal.SIGTSTP) == bridge.on_stop
    finally:
        signal.signal(signal.SIGTSTP, previous)

    assert raised == [int(signal.SIGTSTP)]
    assert bridge.status is BridgeState.SUSPENDED
