"""
配置加载器（YAML）。

设计目标：
- 内置默认配置 + 多个 YAML overlay，按顺序深度合并（后者覆盖前者）；
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误被静默吞掉）；
- host 工具链约定的环境变量（EMACS_SOCKET_NAME 等）作为最后一层 overlay 叠加；
  命令行显式参数由 CLI 再覆盖一次。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from emacs_client.config.defaults import load_default_config_dict

# 环境变量 → `client.*` 字段
ENV_OVERRIDES: Dict[str, str] = {
    "EMACS_SOCKET_NAME": "socket_name",
    "EMACS_SERVER_FILE": "server_file",
    "ALTERNATE_EDITOR": "alternate_editor",
    "EMACSCLIENT_TRAMP": "tramp_prefix",
}


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型：overlay 直接覆盖
    - list：整体覆盖（不做去重/拼接）
    """

    for key, overlay_value in overlay.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(overlay_value, Mapping)
        ):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class ClientSection(BaseModel):
    """连接目标与回退策略。"""

    model_config = ConfigDict(extra="forbid")

    socket_name: Optional[str] = None
    server_file: Optional[str] = None
    # 注意：空串有含义（自动拉起 daemon），不能与 None 混同。
    alternate_editor: Optional[str] = None
    tramp_prefix: Optional[str] = None
    alternate_display: Optional[str] = None


class TransportSection(BaseModel):
    """socket 缓冲参数。"""

    model_config = ConfigDict(extra="forbid")

    send_buffer_size: int = Field(default=4096, ge=1)
    recv_buffer_size: int = Field(default=8192, ge=1)
    linger_sec: int = Field(default=1, ge=0)


class EndpointSection(BaseModel):
    """
    endpoint 发现参数。

    说明：
    - `server_name` 是未显式指定时隐式尝试的 socket 名 / server file 名；
    - `auth_key_length` 是 server file 第二段（原始 token）的固定长度。
    """

    model_config = ConfigDict(extra="forbid")

    server_name: str = Field(default="server", min_length=1)
    server_dir: str = Field(default=".emacs.d/server", min_length=1)
    auth_key_length: int = Field(default=64, ge=1)
    loopback_address: str = Field(default="127.0.0.1")


class DaemonSection(BaseModel):
    """自动拉起 host 的命令。"""

    model_config = ConfigDict(extra="forbid")

    command: List[str] = Field(default_factory=lambda: ["emacs"])
    option: str = Field(default="--daemon")

    @field_validator("command")
    @classmethod
    def _command_not_empty(cls, value: List[str]) -> List[str]:
        """daemon.command 至少包含可执行文件名。"""

        if not value or not str(value[0]).strip():
            raise ValueError("daemon.command must not be empty")
        return value


class SessionSection(BaseModel):
    """会话循环参数。"""

    model_config = ConfigDict(extra="forbid")

    max_retries: int = Field(default=2, ge=0)


class ClientConfig(BaseModel):
    """配置根对象。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    client: ClientSection = Field(default_factory=ClientSection)
    transport: TransportSection = Field(default_factory=TransportSection)
    endpoint: EndpointSection = Field(default_factory=EndpointSection)
    daemon: DaemonSection = Field(default_factory=DaemonSection)
    session: SessionSection = Field(default_factory=SessionSection)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"config file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"config file root must be a mapping(dict): {path}")
    return data


def environment_overlay(environ: Mapping[str, str]) -> Dict[str, Any]:
    """
    把环境变量投影为 overlay dict（只包含实际设置了的变量）。

    说明：
    - `ALTERNATE_EDITOR=""` 也会被保留（空串 = 自动拉起 daemon）；
    - 其余变量为空串时视为未设置。
    """

    client: Dict[str, Any] = {}
    for env_key, field in ENV_OVERRIDES.items():
        if env_key not in environ:
            continue
        value = environ[env_key]
        if value == "" and field != "alternate_editor":
            continue
        client[field] = value
    return {"client": client} if client else {}


def load_config_dicts(config_dicts: list[Dict[str, Any]]) -> ClientConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `ClientConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    """

    merged: Dict[str, Any] = {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return ClientConfig.model_validate(merged)


def load_config(
    config_paths: list[Path],
    *,
    environ: Optional[Mapping[str, str]] = None,
    include_defaults: bool = True,
) -> ClientConfig:
    """
    加载默认配置 + YAML overlays + 环境变量 overlay。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    - environ：环境变量（None 表示不叠加环境变量层）
    - include_defaults：是否以内置 default.yaml 作为第一层
    """

    overlays: list[Dict[str, Any]] = []
    if include_defaults:
        overlays.append(load_default_config_dict())
    for path in config_paths:
        overlays.append(_load_yaml_file(Path(path)))
    if environ is not None:
        overlays.append(environment_overlay(environ))
    return load_config_dicts(overlays)
