"""
Transport：单个 socket 上的缓冲发送 + 分块接收。

发送语义（对齐 host 协议的“一行一条逻辑消息”）：
- `send()` 把数据追加到固定容量的累积缓冲区；
- 缓冲区写满，或最后一个字节是换行时 flush；
- short write：未发送的剩余部分保留到缓冲区开头，等待下一次 flush；
- 发送报错：TransportError（不重试，调用方应让整个会话失败）。

接收语义：
- `receive()` 每次只做一次阻塞读，返回本次读到的原始字节；
- EINTR 透明重试；返回 b"" 表示对端关闭；
- 不在本层按换行切分，也不跨次读取累积半行。
"""

from __future__ import annotations

import logging
import socket
from typing import Optional, Union

from emacs_client.core.errors import TransportError

logger = logging.getLogger(__name__)

SEND_BUFFER_SIZE = 4096
RECV_BUFFER_SIZE = 8192


class Transport:
    """
    进程生命周期内唯一的 host 连接。

    说明：
    - 支持 `with Transport(...) as t:`，保证在任何退出路径上 close 一次；
    - `close()` 幂等。
    """

    def __init__(
        self,
        sock: socket.socket,
        *,
        send_buffer_size: int = SEND_BUFFER_SIZE,
        recv_buffer_size: int = RECV_BUFFER_SIZE,
    ) -> None:
        """
        包装一个已连接的 socket。

        参数：
        - sock：已 connect 的 stream socket（测试可注入任意实现 send/recv/close 的对象）
        - send_buffer_size：发送累积缓冲区容量（字节）
        - recv_buffer_size：单次 recv 的最大字节数
        """

        self._sock: Optional[socket.socket] = sock
        self._capacity = int(send_buffer_size)
        self._recv_size = int(recv_buffer_size)
        self._buf = bytearray()

    @property
    def is_open(self) -> bool:
        """socket 是否仍处于打开状态。"""

        return self._sock is not None

    @property
    def pending(self) -> bytes:
        """尚未发送出去的缓冲字节（只读快照）。"""

        return bytes(self._buf)

    def send(self, data: Union[str, bytes]) -> None:
        """
        追加数据到发送缓冲区，并在消息边界或缓冲区满时 flush。

        参数：
        - data：str 按 UTF-8 编码（surrogateescape，命令行里的非 UTF-8 字节原样还原）；bytes 原样发送
        """

        raw = data.encode("utf-8", errors="surrogateescape") if isinstance(data, str) else bytes(data)
        view = memoryview(raw)
        while len(view):
            part = min(len(view), self._capacity - len(self._buf))
            self._buf += view[:part]
            view = view[part:]
            if len(self._buf) == self._capacity or self._buf.endswith(b"\n"):
                self._flush_once()

    def _flush_once(self) -> None:
        """尝试一次写出全部缓冲字节；short write 时保留剩余部分。"""

        sock = self._require_open()
        try:
            sent = sock.send(self._buf)
        except OSError as exc:
            raise TransportError(
                f"failed to send {len(self._buf)} bytes to socket: {exc.strerror or exc}",
                code="TRANSPORT_SEND_FAILED",
                details={"pending": len(self._buf)},
            ) from exc
        logger.debug("flushed %d/%d bytes", sent, len(self._buf))
        del self._buf[:sent]

    def receive(self) -> bytes:
        """
        阻塞读取一次。

        返回：
        - 本次读到的字节；b"" 表示对端已关闭

        异常：
        - TransportError：recv 报错（EINTR 除外）
        """

        sock = self._require_open()
        while True:
            try:
                return sock.recv(self._recv_size)
            except InterruptedError:
                continue
            except OSError as exc:
                raise TransportError(
                    f"recv: {exc.strerror or exc}",
                    code="TRANSPORT_RECV_FAILED",
                ) from exc

    def _require_open(self) -> socket.socket:
        """返回底层 socket；已关闭时抛 TransportError。"""

        if self._sock is None:
            raise TransportError("socket is closed", code="TRANSPORT_CLOSED")
        return self._sock

    def close(self) -> None:
        """关闭 socket（幂等）。未 flush 的缓冲数据被丢弃。"""

        sock, self._sock = self._sock, None
        if sock is not None:
            if self._buf:
                logger.debug("closing with %d unsent bytes", len(self._buf))
            sock.close()

    def __enter__(self) -> "Transport":
        """进入上下文，返回自身。"""

        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        """退出上下文时关闭 socket。"""

        self.close()
