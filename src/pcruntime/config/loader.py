"""
配置加载器（YAML）。

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者）。
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误与误配置被静默吞掉）。
- 内置默认值见 `pcruntime/assets/default.yaml`。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from pcruntime.config.defaults import load_default_config_dict


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


class PcRuntimeRuntimeConfig(BaseModel):
    """默认 runtime 的名称与候选命令。"""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="Node.js (V8) Process as Context")
    commands: List[str] = Field(default_factory=lambda: ["nodejs", "node"])

    @field_validator("commands")
    @classmethod
    def _commands_non_empty(cls, v: List[str]) -> List[str]:
        """候选命令至少一个，且不允许空白项。"""

        cleaned = [str(x).strip() for x in v if str(x).strip()]
        if not cleaned:
            raise ValueError("runtime.commands must contain at least one command")
        return cleaned


class PcRuntimeProcessConfig(BaseModel):
    """
    子进程启动与就绪探测参数。

    说明：
    - 就绪窗口约为 `ready_attempts * ready_interval_ms`（默认 20 * 50ms ≈ 1s）；
    - `address_dir` 为空时使用系统临时目录。
    """

    model_config = ConfigDict(extra="forbid")

    address_env_var: str = Field(default="PORT", min_length=1)
    address_dir: Optional[str] = None
    address_prefix: str = Field(default="execjs_pcruntime", min_length=1)
    address_attempts: int = Field(default=16, ge=1)
    ready_attempts: int = Field(default=20, ge=1)
    ready_interval_ms: int = Field(default=50, ge=1)
    kill_wait_sec: float = Field(default=1.0, ge=0.0)


class PcRuntimeChannelConfig(BaseModel):
    """本地 RPC channel 参数（script 执行耗时不可预期，超时放宽到分钟级）。"""

    model_config = ConfigDict(extra="forbid")

    timeout_sec: float = Field(default=600, gt=0)


class PcRuntimeLimiterConfig(BaseModel):
    """并发连接上限。"""

    model_config = ConfigDict(extra="forbid")

    max_connections: int = Field(default=128, ge=1)


class PcRuntimeRecoveryConfig(BaseModel):
    """
    transport 故障后的恢复策略。

    说明：
    - `max_retries`：单次 evaluate 因 transport 故障重试的上限；
    - `max_respawn_attempts`：单次恢复内 respawn 的上限；
    - base/cap/jitter 用于两次 respawn 之间的指数退避。
    """

    model_config = ConfigDict(extra="forbid")

    max_retries: int = Field(default=3, ge=0)
    max_respawn_attempts: int = Field(default=3, ge=1)
    base_delay_sec: float = Field(default=0.05, ge=0.0)
    cap_delay_sec: float = Field(default=2.0, ge=0.0)
    jitter_ratio: float = Field(default=0.1, ge=0.0, le=1.0)


class PcRuntimeConfig(BaseModel):
    """配置根对象。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    runtime: PcRuntimeRuntimeConfig = Field(default_factory=PcRuntimeRuntimeConfig)
    process: PcRuntimeProcessConfig = Field(default_factory=PcRuntimeProcessConfig)
    channel: PcRuntimeChannelConfig = Field(default_factory=PcRuntimeChannelConfig)
    limiter: PcRuntimeLimiterConfig = Field(default_factory=PcRuntimeLimiterConfig)
    recovery: PcRuntimeRecoveryConfig = Field(default_factory=PcRuntimeRecoveryConfig)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"配置文件不存在：{path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"配置文件根节点必须为 mapping(dict)：{path}")
    return data


def load_config_dicts(config_dicts: list[Dict[str, Any]]) -> PcRuntimeConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `PcRuntimeConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）；内置默认值总是作为第一层
    """

    merged: Dict[str, Any] = load_default_config_dict()
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return PcRuntimeConfig.model_validate(merged)


def load_config(config_paths: list[Path]) -> PcRuntimeConfig:
    """
    加载并合并多个配置文件，返回校验后的 `PcRuntimeConfig`。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    overlays: list[Dict[str, Any]] = []
    for path in config_paths:
        overlays.append(_load_yaml_file(Path(path)))
    return load_config_dicts(overlays)
