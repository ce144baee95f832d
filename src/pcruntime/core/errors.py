"""
pcruntime 错误分类（异常类型）。

说明：
- script 级错误（语法/运行时）直接抛给 `evaluate` 调用方，不触发 respawn；
- transport 级错误（连接被拒/重置/超时）只在 handle 内部流转，由恢复逻辑消化；
- 进程 kill 失败只记录日志，不抛出。
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    """三类互不相交的失败（机器可消费）。"""

    TRANSPORT = "transport"
    SYNTAX = "syntax"
    RUNTIME = "runtime"


class PcRuntimeError(Exception):
    """pcruntime 错误基类（不建议直接抛出）。"""


class SpawnTimeoutError(PcRuntimeError):
    """子进程未能在有限重试窗口内就绪（或恢复重试已耗尽）。"""


class AddressAllocationError(PcRuntimeError):
    """无法分配唯一的 rendezvous 地址。"""


class HandleClosedError(PcRuntimeError):
    """handle 已关闭后仍被调用。"""


class RuntimeUnavailableError(PcRuntimeError):
    """找不到可用的 JavaScript runtime 可执行文件。"""


class ProtocolError(PcRuntimeError):
    """子进程返回了不符合 wire 约定的成功响应（例如 body 不是合法 JSON）。"""


class TransportFailure(PcRuntimeError):
    """
    连接级故障（子进程被视为已死亡）。

    说明：
    - 仅在 handle 内部使用，永远不会直接暴露给 `evaluate` 调用方。
    """

    kind = FailureKind.TRANSPORT


class ScriptError(PcRuntimeError):
    """子进程内执行的 script 抛出的错误（基类）。"""

    kind: FailureKind = FailureKind.RUNTIME

    def __init__(self, message: str, *, stack: Optional[str] = None) -> None:
        """
        创建 script 错误。

        参数：
        - message：子进程报告的错误消息（原样保留）
        - stack：子进程报告的 stack trace（可为空）
        """

        super().__init__(message)
        self.message = message
        self.stack = stack or ""

    def __str__(self) -> str:
        """返回子进程报告的原始消息。"""

        return self.message


class ScriptSyntaxError(ScriptError):
    """script 文本无法解析（消息中包含 `SyntaxError:`）。"""

    kind = FailureKind.SYNTAX


class ScriptRuntimeError(ScriptError):
    """script 执行期间抛出的错误（携带子进程的 stack trace）。"""

    kind = FailureKind.RUNTIME
