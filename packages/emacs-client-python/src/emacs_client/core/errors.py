"""
客户端错误分类（异常类型）。

分层：
- 配置错误（ConfigurationError）：server file 损坏、socket 路径过长、无可用 endpoint；致命，不重试。
- 传输错误（TransportError）：send/recv 失败；致命，整个会话失败。
- endpoint 不可达（EndpointUnavailableError）：显式指定的 socket/server file 无法访问。
- 终端不可用（TerminalUnavailableError）：请求了 tty frame，但当前没有可用终端。
- daemon 启动失败（DaemonStartError）：自动拉起 host 进程失败或拉起后仍不可达。

说明：
- host 通过协议发来的 `-error` / `-window-system-unsupported` 不是异常，而是普通的分发分支。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


class EmacsClientError(Exception):
    """客户端错误基类（不建议直接抛出）。"""


@dataclass(frozen=True)
class ClientIssue:
    """结构化问题对象（用于诊断输出）。"""

    code: str
    message: str
    details: Dict[str, Any]


class ClientError(EmacsClientError):
    """结构化客户端错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建客户端错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息（面向用户的诊断文本）
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"

    def to_issue(self) -> ClientIssue:
        """把异常转换为可序列化问题对象。"""

        return ClientIssue(code=self.code, message=self.message, details=dict(self.details))


class ConfigurationError(ClientError):
    """配置/发现文件导致的致命错误。"""

    def __init__(self, message: str, *, code: str = "CONFIG_INVALID", details: Dict[str, Any] | None = None) -> None:
        """创建 `ConfigurationError`。

        参数：
        - `message`：可读错误信息
        - `code`：错误码（默认 `CONFIG_INVALID`）
        - `details`：结构化补充信息
        """

        super().__init__(code=code, message=message, details=details or {})


class EndpointUnavailableError(ClientError):
    """显式 endpoint 不可访问，且调用方不允许继续。"""

    def __init__(self, message: str, *, code: str = "ENDPOINT_UNAVAILABLE", details: Dict[str, Any] | None = None) -> None:
        """创建 `EndpointUnavailableError`。"""

        super().__init__(code=code, message=message, details=details or {})


class TransportError(ClientError):
    """socket 发送/接收失败。"""

    def __init__(self, message: str, *, code: str = "TRANSPORT_FAILED", details: Dict[str, Any] | None = None) -> None:
        """创建 `TransportError`。"""

        super().__init__(code=code, message=message, details=details or {})


class TerminalUnavailableError(ClientError):
    """请求了 tty frame，但无法取得终端名称/类型。"""

    def __init__(self, message: str, *, code: str = "TERMINAL_UNAVAILABLE", details: Dict[str, Any] | None = None) -> None:
        """创建 `TerminalUnavailableError`。"""

        super().__init__(code=code, message=message, details=details or {})


class DaemonStartError(ClientError):
    """自动拉起 host daemon 失败。"""

    def __init__(self, message: str, *, code: str = "DAEMON_START_FAILED", details: Dict[str, Any] | None = None) -> None:
        """创建 `DaemonStartError`。"""

        super().__init__(code=code, message=message, details=details or {})
