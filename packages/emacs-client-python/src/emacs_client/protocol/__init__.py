"""Wire 协议编解码。"""

from __future__ import annotations

from emacs_client.protocol.codec import quote_argument, unquote_argument

__all__ = ["quote_argument", "unquote_argument"]
