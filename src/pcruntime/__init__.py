"""
pcruntime（Process as Context JavaScript runtime，Python）。

说明：
- 每个上下文对应一个常驻 JavaScript runtime 子进程（默认 Node.js），
  通过 Unix domain socket 上的 HTTP 请求求值；
- 子进程崩溃后自动 respawn 并重放初始源码；并发连接数受 limiter 约束。
- 当前包含：
  - 核心：ProcessSupervisor / RpcChannel / ConnectionLimiter / RuntimeHandle
  - 错误分类（SpawnTimeoutError / ScriptSyntaxError / ScriptRuntimeError）
  - 配置加载器（YAML overlay + pydantic 校验）
  - 门面：ExternalRuntime / Context / autodetect
"""

from __future__ import annotations

from pcruntime.context import Context
from pcruntime.core.errors import (
    PcRuntimeError,
    RuntimeUnavailableError,
    ScriptError,
    ScriptRuntimeError,
    ScriptSyntaxError,
    SpawnTimeoutError,
)
from pcruntime.runtime.handle import RuntimeHandle
from pcruntime.runtimes import ExternalRuntime, autodetect

__all__ = [
    "Context",
    "ExternalRuntime",
    "PcRuntimeError",
    "RuntimeHandle",
    "RuntimeUnavailableError",
    "ScriptError",
    "ScriptRuntimeError",
    "ScriptSyntaxError",
    "SpawnTimeoutError",
    "__version__",
    "autodetect",
]

__version__ = "0.1.0"
