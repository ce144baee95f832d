"""
Context：一个 JavaScript runtime 子进程 = 一个编译上下文。

说明：
- 构造时预加载 `source`（例如一个库的完整源码），之后的 eval/exec/call 共享该全局状态；
- 子进程崩溃后会自动 respawn 并重放 `source`，此后的调用看到的是重新初始化的状态。
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

from pcruntime.runtime.handle import RuntimeHandle

if TYPE_CHECKING:
    from pcruntime.runtimes import ExternalRuntime

_NON_BLANK_RE = re.compile(r"\S")


class Context:
    """JavaScript 上下文（eval / exec / call）。"""

    def __init__(self, runtime: "ExternalRuntime", source: str = "") -> None:
        """
        启动 runtime 子进程并加载初始源码。

        参数：
        - runtime：提供启动命令与 runner 路径的 `ExternalRuntime`
        - source：预加载的 JavaScript 源码
        """

        self._runtime = runtime
        self._handle: RuntimeHandle = runtime.create_handle(source)

    @property
    def handle(self) -> RuntimeHandle:
        return self._handle

    def eval(self, source: str) -> Any:
        """对表达式求值；空白输入返回 None（不会发请求）。"""

        if not _NON_BLANK_RE.search(source):
            return None
        return self._handle.evaluate(f"({source})")

    def exec(self, source: str) -> Any:
        """以函数体形式执行语句块，返回其 `return` 值。"""

        return self._handle.evaluate(f"(()=>{{{source}}})()")

    def call(self, identifier: str, *args: Any) -> Any:
        """
        调用上下文中的函数。

        参数：
        - identifier：函数表达式（例如 `"CoffeeScript.compile"`）
        - args：参数（需可 JSON 序列化）
        """

        return self._handle.evaluate(f"({identifier}).apply(this, {json.dumps(list(args))})")

    def close(self) -> None:
        self._handle.close()

    def __enter__(self) -> "Context":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
