from __future__ import annotations

import hashlib
import secrets
import tempfile
from pathlib import Path
from typing import Optional

from pcruntime.core.errors import AddressAllocationError

# macOS/部分 Unix 的 AF_UNIX 路径长度有上限（常见 ~104 bytes）。
_MAX_SOCKET_PATH_LEN = 100


def _socket_dir(address_dir: Optional[str]) -> Path:
    """
    返回放置 socket 文件的目录。

    说明：
    - 未配置时使用系统临时目录；
    - 配置目录过深（拼出的路径可能超过 AF_UNIX 上限）时降级到系统临时目录。
    """

    tmp = Path(tempfile.gettempdir()).resolve()
    if not address_dir:
        return tmp
    d = Path(address_dir).expanduser().resolve()
    if len(str(d)) > _MAX_SOCKET_PATH_LEN - 48:
        return tmp
    return d


def allocate_address(
    *,
    address_dir: Optional[str] = None,
    prefix: str = "execjs_pcruntime",
    attempts: int = 16,
) -> Path:
    """
    生成一个当前不存在的 rendezvous 地址（Unix socket 文件路径）。

    参数：
    - address_dir：socket 目录（None = 系统临时目录）
    - prefix：文件名前缀
    - attempts：碰撞重试次数上限

    返回：
    - Path：尚未被占用的路径（文件由子进程 listen 时创建）

    异常：
    - AddressAllocationError：重试耗尽仍然碰撞
    """

    base = _socket_dir(address_dir)
    base.mkdir(parents=True, exist_ok=True)
    for _ in range(max(1, int(attempts))):
        name = f"{prefix}{secrets.token_hex(8)}.sock"
        candidate = base / name
        if len(str(candidate)) > _MAX_SOCKET_PATH_LEN:
            h = hashlib.sha256(name.encode("utf-8")).hexdigest()[:16]
            candidate = Path(tempfile.gettempdir()).resolve() / f"pcrt_{h}.sock"
        if not candidate.exists():
            return candidate
    raise AddressAllocationError(f"failed to allocate a unique socket path under {base} after {attempts} attempts")
