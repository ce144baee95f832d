"""
Bootstrap（环境变量驱动的配置发现）。

设计目标：
- 库核心无隐式 I/O：`RuntimeHandle` / `ExternalRuntime` 只接收显式配置对象；
- 需要“开箱即用”时，调用 `load_effective_config()` 读取默认值 + 环境变量 overlays。

环境变量：
- `PCRUNTIME_CONFIG`：overlay YAML 路径列表（`,` 或 `;` 分隔，按顺序合并）
- `PCRUNTIME_MAX_CONNECTIONS`：覆盖 `limiter.max_connections`
- `PCRUNTIME_TIMEOUT_SEC`：覆盖 `channel.timeout_sec`
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pcruntime.config.loader import PcRuntimeConfig, _load_yaml_file, load_config_dicts


def _get_env_nonempty(key: str, *, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """
    读取 env 并返回非空白字符串（否则视为未设置）。

    参数：
    - key：环境变量名
    """

    v = (env if env is not None else os.environ).get(key)
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _split_paths(raw: str) -> list[str]:
    """将逗号/分号分隔的路径串切分为片段列表（保序，去掉空项）。"""

    parts: list[str] = []
    for chunk in raw.replace(";", ",").split(","):
        s = chunk.strip()
        if s:
            parts.append(s)
    return parts


def _env_overrides(env: Optional[Mapping[str, str]]) -> Dict[str, Any]:
    """把标量环境变量映射为 overlay dict（类型校验交给 pydantic）。"""

    out: Dict[str, Any] = {}
    max_conn = _get_env_nonempty("PCRUNTIME_MAX_CONNECTIONS", env=env)
    if max_conn is not None:
        out.setdefault("limiter", {})["max_connections"] = max_conn
    timeout = _get_env_nonempty("PCRUNTIME_TIMEOUT_SEC", env=env)
    if timeout is not None:
        out.setdefault("channel", {})["timeout_sec"] = timeout
    return out


def load_effective_config(
    *,
    env: Optional[Mapping[str, str]] = None,
    base_dir: Optional[Path] = None,
) -> PcRuntimeConfig:
    """
    按“默认值 → overlay 文件 → 标量环境变量”的顺序合并出最终配置。

    参数：
    - env：环境变量映射（默认 os.environ；测试可注入）
    - base_dir：相对 overlay 路径的锚点（默认 cwd）
    """

    overlays: list[Dict[str, Any]] = []
    raw_paths = _get_env_nonempty("PCRUNTIME_CONFIG", env=env)
    if raw_paths:
        anchor = Path(base_dir) if base_dir is not None else Path.cwd()
        for raw in _split_paths(raw_paths):
            p = Path(raw)
            if not p.is_absolute():
                p = anchor / p
            overlays.append(_load_yaml_file(p.resolve()))
    overlays.append(_env_overrides(env))
    return load_config_dicts(overlays)
