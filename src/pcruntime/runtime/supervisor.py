"""
子进程监管：spawn（含就绪探测）与 kill。

语义：
- 地址通过单个环境变量传给子进程（runner.js 读取 `PORT`）；
- 就绪判定分两步：socket 文件出现（轮询），再发一次空 body 的存活探测；
- kill 失败（进程已不存在等）只记录日志，不向上抛出。
"""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from pcruntime.config.loader import PcRuntimeProcessConfig
from pcruntime.core.errors import SpawnTimeoutError, TransportFailure
from pcruntime.runtime.channel import RpcChannel
from pcruntime.runtime.paths import allocate_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeProcess:
    """子进程身份（pid + rendezvous 地址 + 启动参数）。"""

    pid: int
    address: Path
    command: tuple[str, ...]
    initial_script_path: str
    popen: Optional[subprocess.Popen] = field(default=None, compare=False, repr=False)


class ProcessSupervisor:
    """
    启动/探测/终止 JavaScript runtime 子进程。

    说明：
    - respawn = kill 旧进程 + spawn 新进程，由 `RuntimeHandle` 编排；
    - 本类不持有任何进程状态，可被多个 handle 共享。
    """

    def __init__(self, channel: RpcChannel, *, config: Optional[PcRuntimeProcessConfig] = None) -> None:
        """
        创建 supervisor。

        参数：
        - channel：用于存活探测的 RPC channel
        - config：启动/就绪参数（默认值见 `assets/default.yaml`）
        """

        self._channel = channel
        self._cfg = config or PcRuntimeProcessConfig()

    def _wait_ready(self, proc: subprocess.Popen, address: Path) -> bool:
        """
        轮询 socket 文件是否出现。

        返回：
        - True：文件已出现
        - False：重试耗尽，或子进程提前退出
        """

        interval = self._cfg.ready_interval_ms / 1000.0
        for _ in range(self._cfg.ready_attempts):
            if address.exists():
                return True
            if proc.poll() is not None:
                logger.debug("Runtime process pid=%s exited early with code %s", proc.pid, proc.returncode)
                return False
            time.sleep(interval)
        return address.exists()

    def spawn(self, command: Sequence[str], initial_script_path: str) -> RuntimeProcess:
        """
        启动子进程并等待其可以响应请求。

        参数：
        - command：runtime 启动命令（例如 `["/usr/bin/node"]`、`["deno", "run"]`）
        - initial_script_path：交给 runtime 执行的 runner 脚本路径

        返回：
        - RuntimeProcess

        异常：
        - SpawnTimeoutError：可执行文件无法启动（OSError）
        - SpawnTimeoutError：socket 未在窗口内出现，或存活探测失败
        """

        if not command:
            raise ValueError("command must not be empty")

        address = allocate_address(
            address_dir=self._cfg.address_dir,
            prefix=self._cfg.address_prefix,
            attempts=self._cfg.address_attempts,
        )
        argv = [str(x) for x in command] + [str(initial_script_path)]
        env = dict(os.environ)
        env[self._cfg.address_env_var] = str(address)

        try:
            proc = subprocess.Popen(  # noqa: S603
                argv,
                env=env,
                stdin=subprocess.DEVNULL,
                close_fds=True,
            )
        except OSError as exc:
            raise SpawnTimeoutError(f"failed to launch runtime {argv[0]!r}: {exc}") from exc
        process = RuntimeProcess(
            pid=int(proc.pid),
            address=address,
            command=tuple(str(x) for x in command),
            initial_script_path=str(initial_script_path),
            popen=proc,
        )
        logger.debug("Spawned runtime process pid=%s address=%s argv=%s", proc.pid, address, argv)

        if not self._wait_ready(proc, address):
            self.kill(process)
            raise SpawnTimeoutError(
                f"runtime did not create {address} within "
                f"{self._cfg.ready_attempts * self._cfg.ready_interval_ms}ms (pid={proc.pid})"
            )

        try:
            self._channel.probe(address)
        except TransportFailure as exc:
            self.kill(process)
            raise SpawnTimeoutError(f"runtime at {address} did not answer the liveness probe (pid={proc.pid})") from exc

        return process

    def kill(self, process: RuntimeProcess) -> None:
        """
        强制终止子进程（SIGKILL），并回收 socket 文件（best-effort）。

        说明：
        - 进程已不存在不视为错误，只记录 warning。
        """

        proc = process.popen
        try:
            if proc is not None:
                proc.kill()
                proc.wait(timeout=self._cfg.kill_wait_sec)
            else:
                os.kill(process.pid, signal.SIGKILL)
        except (OSError, subprocess.TimeoutExpired):
            logger.warning("Failed to kill runtime process pid=%s", process.pid, exc_info=True)
        else:
            logger.debug("Killed runtime process pid=%s", process.pid)
        with contextlib.suppress(OSError):
            process.address.unlink()
