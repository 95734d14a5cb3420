"""
默认配置加载器。

设计目标：
- 被当作库引用时，不依赖 repo 相对路径即可运行；
- 默认配置通过 `importlib.resources` 随 package 分发（`emacs_client/assets/default.yaml`）。
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import yaml


def load_default_config_dict() -> Dict[str, Any]:
    """
    读取内置默认配置（YAML）并返回 dict。

    返回：
    - dict：用于与 overlays 做深度合并（overlay 语义由 `emacs_client.config.loader` 定义）

    异常：
    - RuntimeError：读取失败或内容不是 mapping(dict)
    """

    text: str | None = None
    try:
        from importlib.resources import files

        text = files("emacs_client.assets").joinpath("default.yaml").read_text(encoding="utf-8")
    except Exception:
        # 开发态兼容：未按 package 安装时，从源码树内探测。
        candidate = Path(__file__).resolve().parent.parent / "assets" / "default.yaml"
        if candidate.exists():
            text = candidate.read_text(encoding="utf-8")
        if text is None:  # pragma: no cover
            raise RuntimeError("failed to load embedded default config (assets not available)")

    obj = yaml.safe_load(text) or {}
    if not isinstance(obj, dict):
        raise RuntimeError("embedded default config root must be a mapping(dict)")
    return obj
