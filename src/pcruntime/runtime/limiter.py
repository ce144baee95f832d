from __future__ import annotations

import contextlib
import threading
from typing import Iterator

DEFAULT_MAX_CONNECTIONS = 128


class ConnectionLimiter:
    """
    同时打开的连接数上限（计数信号量）。

    约束：
    - 每次建立连接前 acquire 一个 permit，响应读取完毕后（含异常路径）release 一次；
    - 容量需低于进程打开文件数上限，默认 128。
    """

    def __init__(self, capacity: int = DEFAULT_MAX_CONNECTIONS) -> None:
        if int(capacity) < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = int(capacity)
        self._sem = threading.BoundedSemaphore(self._capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def acquire(self) -> None:
        """阻塞直到有空闲 permit。"""

        self._sem.acquire()

    def release(self) -> None:
        """归还一个 permit（多余的 release 会抛 ValueError）。"""

        self._sem.release()

    @contextlib.contextmanager
    def permit(self) -> Iterator[None]:
        """持有一个 permit 的作用域；任何退出路径都会归还。"""

        self.acquire()
        try:
            yield
        finally:
            self.release()
