"""
emacs-client-python：把工作交给已在运行的 Emacs server 的轻量客户端。

说明：
- 协议层：参数转义（`protocol.codec`）、缓冲收发（`runtime.transport`）；
- 连接层：local socket / TCP server file 发现与鉴权（`runtime.resolver`），daemon 自动拉起（`runtime.daemon`）；
- 会话层：命令流构造、收发分发循环、终端信号桥（`session`）；
- 配置：内置 default.yaml + YAML overlays + 环境变量（`config`），pydantic 校验。
"""

from __future__ import annotations

from emacs_client.core.errors import ClientError, ConfigurationError, EmacsClientError, TransportError
from emacs_client.protocol.codec import quote_argument, unquote_argument
from emacs_client.runtime.resolver import EndpointResolver
from emacs_client.runtime.transport import Transport
from emacs_client.session.controller import SessionController
from emacs_client.session.intent import SessionIntent, build_intent

__all__ = [
    "ClientError",
    "ConfigurationError",
    "EmacsClientError",
    "EndpointResolver",
    "SessionController",
    "SessionIntent",
    "Transport",
    "TransportError",
    "build_intent",
    "quote_argument",
    "unquote_argument",
    "__version__",
]

__version__ = "0.1.0"
