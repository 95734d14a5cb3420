"""配置（默认 YAML + overlays + pydantic 校验）。"""

from __future__ import annotations

from emacs_client.config.loader import ClientConfig, load_config, load_config_dicts

__all__ = ["ClientConfig", "load_config", "load_config_dicts"]
