"""
连接层：endpoint 发现、socket Transport、daemon 自动拉起。
"""

from __future__ import annotations

from emacs_client.runtime.resolver import EndpointResolver, LocalSocketEndpoint, TcpEndpoint
from emacs_client.runtime.transport import Transport

__all__ = ["EndpointResolver", "LocalSocketEndpoint", "TcpEndpoint", "Transport"]
