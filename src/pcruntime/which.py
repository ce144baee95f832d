"""在 PATH 上查找 JavaScript runtime 可执行文件。"""

from __future__ import annotations

import shlex
import shutil
from typing import Iterable, List, Optional


def split_command_string(command: str) -> List[str]:
    """
    把命令字符串切分为 argv（支持单/双引号）。

    例：`"deno run"` → `["deno", "run"]`
    """

    return shlex.split(command)


def find_command(candidates: Iterable[str], *, path: Optional[str] = None) -> Optional[List[str]]:
    """
    返回第一个能在 PATH 上找到的候选命令（可执行文件解析为绝对路径，其余参数保留）。

    参数：
    - candidates：候选命令字符串（例如 `["nodejs", "node"]`、`["deno run"]`）
    - path：搜索路径（None = 使用 PATH 环境变量）

    返回：
    - argv 列表；全部找不到时返回 None
    """

    for candidate in candidates:
        argv = split_command_string(candidate)
        if not argv:
            continue
        executable = shutil.which(argv[0], path=path)
        if executable is not None:
            return [executable, *argv[1:]]
    return None
