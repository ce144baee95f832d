"""
Runtime handle：supervisor + channel + 故障恢复的组合门面。

语义：
- `create()` 启动子进程并预加载初始 script（建立基线状态）；
- `evaluate()` 可被多线程并发调用；
- script 级错误直接抛出，不触发 respawn；
- transport 故障视为子进程已死：恰好一个调用方在恢复锁内 kill + respawn + 重放初始 script，
  其它调用方观察到进程引用变化后直接重试；
- 生命周期显式管理：`close()` / `with` 作用域结束时 kill 子进程（不依赖 GC finalizer）。

当前进程引用（`_process`）是不可变对象，只在恢复锁内整体替换；读取方无锁读取，
读到旧值时通过重试收敛。
"""

from __future__ import annotations

import logging
import random
import threading
import time
from pathlib import Path
from typing import Any, Optional, Sequence

from pcruntime.config.loader import PcRuntimeConfig, PcRuntimeRecoveryConfig
from pcruntime.core.errors import HandleClosedError, SpawnTimeoutError, TransportFailure
from pcruntime.runtime.channel import RpcChannel
from pcruntime.runtime.limiter import ConnectionLimiter
from pcruntime.runtime.supervisor import ProcessSupervisor, RuntimeProcess

logger = logging.getLogger(__name__)


def _launch(
    supervisor: ProcessSupervisor,
    channel: RpcChannel,
    command: Sequence[str],
    initial_script_path: str,
    initial_script_text: str,
) -> RuntimeProcess:
    """
    spawn 一个子进程并预加载初始 script。

    说明：
    - 预加载期间的 transport 故障视为“未就绪”，映射为 SpawnTimeoutError；
    - 预加载失败（任何原因）都会先 kill 新进程，避免泄露。
    """

    process = supervisor.spawn(command, initial_script_path)
    try:
        channel.evaluate(process.address, initial_script_text)
    except TransportFailure as exc:
        supervisor.kill(process)
        raise SpawnTimeoutError(f"runtime pid={process.pid} died while loading the initial script") from exc
    except BaseException:
        supervisor.kill(process)
        raise
    return process


class RuntimeHandle:
    """
    持有一个 JavaScript runtime 子进程的 handle。

    Example:
        with RuntimeHandle.create(["node"], runner_path, "var n = 0;") as h:
            h.evaluate("++n")
    """

    def __init__(
        self,
        *,
        supervisor: ProcessSupervisor,
        channel: RpcChannel,
        process: RuntimeProcess,
        initial_script_text: str,
        recovery: Optional[PcRuntimeRecoveryConfig] = None,
    ) -> None:
        """
        包装一个已就绪（且已预加载）的子进程；一般应通过 `create()` 构造。

        参数：
        - supervisor：用于 kill/respawn
        - channel：用于 evaluate
        - process：当前子进程
        - initial_script_text：respawn 后需重放的初始 script
        - recovery：恢复重试策略
        """

        self._supervisor = supervisor
        self._channel = channel
        self._process: Optional[RuntimeProcess] = process
        self._command = tuple(process.command)
        self._initial_script_path = process.initial_script_path
        self._initial_script_text = initial_script_text
        self._recovery = recovery or PcRuntimeRecoveryConfig()
        self._recovery_lock = threading.Lock()
        self._respawn_count = 0
        # 每完成一轮恢复（成功或失败）递增；失败时记录最近一次的异常
        self._recovery_epoch = 0
        self._last_recovery_failure: Optional[SpawnTimeoutError] = None

    @classmethod
    def create(
        cls,
        command: Sequence[str],
        initial_script_path: str | Path,
        initial_script_text: str = "",
        *,
        config: Optional[PcRuntimeConfig] = None,
        channel: Optional[RpcChannel] = None,
        supervisor: Optional[ProcessSupervisor] = None,
    ) -> "RuntimeHandle":
        """
        启动子进程、预加载初始 script，并返回 handle。

        参数：
        - command：runtime 启动命令 argv
        - initial_script_path：runner 脚本路径（作为最后一个参数传给 runtime）
        - initial_script_text：预加载的 JavaScript 源码
        - config：配置（None = 默认值）
        - channel / supervisor：可注入（共享 limiter 或测试替身）

        异常：
        - SpawnTimeoutError：子进程未就绪
        - ScriptSyntaxError / ScriptRuntimeError：初始 script 执行失败
        """

        cfg = config or PcRuntimeConfig()
        if channel is None:
            channel = RpcChannel(
                limiter=ConnectionLimiter(cfg.limiter.max_connections),
                timeout_sec=cfg.channel.timeout_sec,
            )
        if supervisor is None:
            supervisor = ProcessSupervisor(channel, config=cfg.process)
        process = _launch(supervisor, channel, command, str(initial_script_path), initial_script_text)
        return cls(
            supervisor=supervisor,
            channel=channel,
            process=process,
            initial_script_text=initial_script_text,
            recovery=cfg.recovery,
        )

    @property
    def process(self) -> Optional[RuntimeProcess]:
        """当前子进程（关闭后为 None）。"""

        return self._process

    @property
    def closed(self) -> bool:
        return self._process is None

    @property
    def respawn_count(self) -> int:
        """handle 生命周期内成功 respawn 的次数。"""

        return self._respawn_count

    def _current(self) -> RuntimeProcess:
        process = self._process
        if process is None:
            raise HandleClosedError("runtime handle is closed")
        return process

    def evaluate(self, source: str) -> Any:
        """
        在子进程中执行 JavaScript 源码并返回 JSON 解码后的结果。

        参数：
        - source：JavaScript 源码（UTF-8）

        返回：
        - 结果值；script 无返回值时为 None

        异常：
        - ScriptSyntaxError / ScriptRuntimeError：script 级失败（不会 respawn）
        - SpawnTimeoutError：恢复重试耗尽
        - HandleClosedError：handle 已关闭
        - ValueError：source 无法编码为 UTF-8（不会 respawn）
        """

        recoveries = 0
        while True:
            process = self._current()
            epoch = self._recovery_epoch
            try:
                return self._channel.evaluate(process.address, source)
            except TransportFailure as exc:
                if self._process is not process:
                    # 其它调用方已经完成 respawn（或 handle 已关闭）
                    continue
                if recoveries >= self._recovery.max_retries:
                    raise SpawnTimeoutError(
                        f"runtime still unreachable after {recoveries} recoveries (pid={process.pid})"
                    ) from exc
                recoveries += 1
                logger.warning(
                    "Runtime pid=%s unreachable at %s; recovering (%s/%s): %s",
                    process.pid,
                    process.address,
                    recoveries,
                    self._recovery.max_retries,
                    exc,
                )
                self._recover(process, epoch)

    def _backoff_delay(self, attempt: int) -> float:
        """指数退避 + 抖动（attempt 从 0 开始；上限受 cap 控制）。"""

        base = min(self._recovery.cap_delay_sec, self._recovery.base_delay_sec * (2 ** attempt))
        jitter = random.uniform(0.0, base * self._recovery.jitter_ratio)
        return min(self._recovery.cap_delay_sec, base + jitter)

    def _recover(self, stale: RuntimeProcess, epoch: int) -> None:
        """
        用新子进程替换 `stale`（双重检查：只有第一个拿到锁的调用方真正 respawn）。

        参数：
        - stale：调用方观察到已失联的子进程
        - epoch：调用方发请求前读到的 `_recovery_epoch`

        说明：
        - 在锁上排队期间若已有一轮针对同一 `stale` 的恢复失败，直接复用该失败，
          不再各自重跑一轮 respawn。

        异常：
        - SpawnTimeoutError：respawn 重试耗尽
        """

        with self._recovery_lock:
            if self._process is not stale:
                return
            if self._recovery_epoch != epoch and self._last_recovery_failure is not None:
                raise SpawnTimeoutError(
                    f"runtime pid={stale.pid} could not be respawned by a concurrent recovery"
                ) from self._last_recovery_failure
            self._supervisor.kill(stale)

            last_exc: Optional[BaseException] = None
            for attempt in range(self._recovery.max_respawn_attempts):
                if attempt:
                    time.sleep(self._backoff_delay(attempt - 1))
                try:
                    fresh = _launch(
                        self._supervisor,
                        self._channel,
                        self._command,
                        self._initial_script_path,
                        self._initial_script_text,
                    )
                except SpawnTimeoutError as exc:
                    last_exc = exc
                    logger.warning(
                        "Respawn attempt %s/%s failed",
                        attempt + 1,
                        self._recovery.max_respawn_attempts,
                        exc_info=True,
                    )
                    continue
                self._process = fresh
                self._respawn_count += 1
                self._recovery_epoch += 1
                self._last_recovery_failure = None
                logger.debug("Respawned runtime pid=%s -> pid=%s", stale.pid, fresh.pid)
                return

            failure = SpawnTimeoutError(f"failed to respawn runtime after {self._recovery.max_respawn_attempts} attempts")
            self._last_recovery_failure = failure
            self._recovery_epoch += 1
            raise failure from last_exc

    def close(self) -> None:
        """kill 子进程并关闭 handle（幂等）。"""

        with self._recovery_lock:
            process = self._process
            self._process = None
        if process is not None:
            self._supervisor.kill(process)

    def __enter__(self) -> "RuntimeHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
