"""
进程外 JavaScript runtime 核心：子进程监管、本地 RPC channel、并发上限与故障恢复。
"""

from __future__ import annotations

from pcruntime.runtime.channel import RpcChannel, RpcRequest
from pcruntime.runtime.handle import RuntimeHandle
from pcruntime.runtime.limiter import ConnectionLimiter
from pcruntime.runtime.supervisor import ProcessSupervisor, RuntimeProcess

__all__ = [
    "ConnectionLimiter",
    "ProcessSupervisor",
    "RpcChannel",
    "RpcRequest",
    "RuntimeHandle",
    "RuntimeProcess",
]
