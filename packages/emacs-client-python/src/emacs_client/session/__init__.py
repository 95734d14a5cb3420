"""会话层：意图、命令流、收发循环与终端信号桥。"""

from __future__ import annotations

from emacs_client.session.controller import SessionController
from emacs_client.session.intent import RetryState, SessionIntent, build_intent

__all__ = ["RetryState", "SessionController", "SessionIntent", "build_intent"]
