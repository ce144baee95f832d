"""
Runtime 定义与自动探测。

说明：
- `ExternalRuntime` 描述“用哪个命令、跑哪个 runner 脚本”；
- 同一个 `ExternalRuntime` 创建的所有 handle 共享一个连接数 limiter；
- `autodetect()` 返回第一个在 PATH 上可用的 runtime。
"""

from __future__ import annotations

import hashlib
import os
import tempfile
import threading
from importlib.resources import files
from pathlib import Path
from typing import Any, List, Optional, Sequence

from pcruntime.config.loader import PcRuntimeConfig
from pcruntime.context import Context
from pcruntime.core.errors import RuntimeUnavailableError
from pcruntime.runtime.channel import RpcChannel
from pcruntime.runtime.handle import RuntimeHandle
from pcruntime.runtime.limiter import ConnectionLimiter
from pcruntime.runtime.supervisor import ProcessSupervisor
from pcruntime.which import find_command


def default_runner_path() -> Path:
    """
    返回随 package 分发的 `runner.js` 的文件系统路径。

    说明：
    - 包以普通目录安装时直接返回包内路径；
    - 否则（zip 等非文件系统安装）把内容写到临时目录下按内容哈希命名的文件，
      该文件不会随调用结束被删除，respawn 时可反复使用。
    """

    resource = files("pcruntime.assets").joinpath("runner.js")
    if isinstance(resource, Path) and resource.is_file():
        return resource

    text = resource.read_text(encoding="utf-8")
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]
    target = Path(tempfile.gettempdir()) / f"pcruntime_runner_{digest}.js"
    if not target.is_file():
        tmp = target.with_name(f"{target.name}.{os.getpid()}.tmp")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, target)
    return target


class ExternalRuntime:
    """以“子进程即上下文”方式运行的外部 JavaScript runtime。"""

    def __init__(
        self,
        name: str,
        commands: Sequence[str],
        runner_path: Optional[Path] = None,
        *,
        deprecated: bool = False,
        config: Optional[PcRuntimeConfig] = None,
    ) -> None:
        """
        参数：
        - name：runtime 名称（展示用）
        - commands：候选命令（按顺序探测，例如 `["nodejs", "node"]`、`["deno run"]`）
        - runner_path：runner 脚本路径（None = 内置 runner.js）
        - deprecated：是否已废弃
        - config：配置（None = 默认值）
        """

        self.name = name
        self._commands = list(commands)
        self._runner_path = Path(runner_path) if runner_path is not None else None
        self._deprecated = bool(deprecated)
        self._config = config or PcRuntimeConfig()
        self._binary: Optional[List[str]] = None
        self._binary_lock = threading.Lock()

        self._channel = RpcChannel(
            limiter=ConnectionLimiter(self._config.limiter.max_connections),
            timeout_sec=self._config.channel.timeout_sec,
        )
        self._supervisor = ProcessSupervisor(self._channel, config=self._config.process)

    @classmethod
    def from_config(cls, config: PcRuntimeConfig) -> "ExternalRuntime":
        """按配置中的 `runtime.name` / `runtime.commands` 构造。"""

        return cls(config.runtime.name, config.runtime.commands, config=config)

    @property
    def deprecated(self) -> bool:
        return self._deprecated

    @property
    def runner_path(self) -> Path:
        return self._runner_path or default_runner_path()

    @property
    def binary(self) -> Optional[List[str]]:
        """启动命令 argv（惰性探测并缓存；找不到时为 None）。"""

        with self._binary_lock:
            if self._binary is None:
                self._binary = find_command(self._commands)
            return self._binary

    def available(self) -> bool:
        return self.binary is not None

    def create_handle(self, initial_source: str = "") -> RuntimeHandle:
        """
        启动子进程并返回 handle（调用方负责 close）。

        异常：
        - RuntimeUnavailableError：找不到可执行文件
        """

        binary = self.binary
        if binary is None:
            raise RuntimeUnavailableError(f"{self.name}: none of {self._commands} found on PATH")
        return RuntimeHandle.create(
            binary,
            self.runner_path,
            initial_source,
            config=self._config,
            channel=self._channel,
            supervisor=self._supervisor,
        )

    def compile(self, source: str = "") -> Context:
        """创建预加载 `source` 的上下文（调用方负责 close）。"""

        return Context(self, source)

    def eval(self, source: str) -> Any:
        """在一次性上下文中求值表达式。"""

        with self.compile() as ctx:
            return ctx.eval(source)

    def exec(self, source: str) -> Any:
        """在一次性上下文中执行语句块。"""

        with self.compile() as ctx:
            return ctx.exec(source)

    def __repr__(self) -> str:
        return f"ExternalRuntime(name={self.name!r}, commands={self._commands!r})"


NODE = ExternalRuntime("Node.js (V8) Process as Context", ["nodejs", "node"])


def all_runtimes() -> List[ExternalRuntime]:
    return [NODE]


def autodetect() -> ExternalRuntime:
    """
    返回第一个可用且未废弃的 runtime。

    异常：
    - RuntimeUnavailableError：没有任何可用 runtime
    """

    for runtime in all_runtimes():
        if runtime.available() and not runtime.deprecated:
            return runtime
    raise RuntimeUnavailableError("could not find a JavaScript runtime (tried: %s)" % ", ".join(r.name for r in all_runtimes()))
