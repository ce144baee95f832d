"""
本地 RPC channel（HTTP/1.1 over Unix domain socket）。

Wire 约定（需与未修改的 runner.js 逐字节兼容）：
- 每次调用新建连接，交换一次请求/响应后关闭（`Connection: close`）；
- `POST /`：空 body 的存活探测，期望 200 + 空 body；
- `POST /eval`：`Content-Type: text/javascript`，body 为 percent-encoded 的 UTF-8 script；
- 成功：200，body 为 percent-encoded JSON；空 body 表示“无值”；
- 失败：非 200，body 为 percent-encoded 的 `<message>\\0<stack>`。

注意：
- 子进程用 `decodeURIComponent` 解码，它不会把 `+` 还原为空格；
  因此空格必须编码为 `%20`（使用 `quote`，不得使用 form 编码的 `quote_plus`）。
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import quote, unquote

import httpx

from pcruntime.core.errors import ProtocolError, TransportFailure
from pcruntime.runtime.classifier import classify_failure, split_error_body
from pcruntime.runtime.limiter import ConnectionLimiter

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 600.0

# 与 JavaScript encodeURIComponent 一致的非转义字符集（字母数字 + `-_.~` 由 quote 默认保留）。
_URI_COMPONENT_SAFE = "!*'()"

Address = Union[str, Path]


def encode_component(text: str) -> str:
    """按 `encodeURIComponent` 语义对 UTF-8 文本做 percent-encoding（空格 → `%20`）。"""

    return quote(text, safe=_URI_COMPONENT_SAFE, encoding="utf-8")


def decode_component(text: str) -> str:
    """`decodeURIComponent` 的对应实现（不把 `+` 视为空格）。"""

    return unquote(text, encoding="utf-8", errors="replace")


@dataclass(frozen=True)
class RpcRequest:
    """一次请求（按调用构造，不保留）。"""

    path: str
    content_type: Optional[str] = None
    body: Optional[str] = None


PROBE_REQUEST = RpcRequest(path="/")


class RpcChannel:
    """
    一次连接一次请求的本地 RPC channel。

    说明：
    - 所有连接都先从 limiter 取 permit；permit 在响应读完（或出错）后归还；
    - 任何连接级异常统一转为 `TransportFailure`（由 handle 的恢复逻辑消化）。
    """

    def __init__(self, *, limiter: Optional[ConnectionLimiter] = None, timeout_sec: float = DEFAULT_TIMEOUT_SEC) -> None:
        """
        创建 channel。

        参数：
        - limiter：连接数上限（None 时独立创建一个默认容量的 limiter）
        - timeout_sec：connect/read/write 超时秒数
        """

        self._limiter = limiter if limiter is not None else ConnectionLimiter()
        self._timeout = httpx.Timeout(float(timeout_sec))

    @property
    def limiter(self) -> ConnectionLimiter:
        return self._limiter

    def _exchange(self, address: Address, request: RpcRequest) -> httpx.Response:
        """
        打开一条连接，发送请求并完整读取响应后关闭。

        说明：
        - 非 stream 模式的 `client.post` 会在返回前读完 body；
        - 该方法在 permit 作用域内调用（测试可替换以观测并发连接数）。
        """

        headers = {"Connection": "close"}
        content: Optional[bytes] = None
        if request.content_type is not None:
            headers["Content-Type"] = request.content_type
            content = encode_component(request.body or "").encode("ascii")

        transport = httpx.HTTPTransport(uds=str(address))
        with httpx.Client(transport=transport, timeout=self._timeout) as client:
            return client.post(f"http://localhost{request.path}", content=content, headers=headers)

    def send(self, address: Address, request: RpcRequest) -> httpx.Response:
        """
        在 permit 作用域内发送一次请求。

        异常：
        - TransportFailure：连接被拒/socket 不存在/重置/超时/响应截断
        """

        with self._limiter.permit():
            try:
                return self._exchange(address, request)
            except (httpx.TransportError, OSError) as exc:
                logger.debug("Transport failure on %s%s: %s", address, request.path, exc)
                raise TransportFailure(f"{type(exc).__name__}: {exc}") from exc

    def probe(self, address: Address) -> None:
        """存活探测：确认子进程真的在响应请求，而不只是 socket 文件存在。"""

        resp = self.send(address, PROBE_REQUEST)
        if resp.status_code != 200:
            raise TransportFailure(f"liveness probe returned HTTP {resp.status_code}")

    def evaluate(self, address: Address, source: str) -> Any:
        """
        发送 `/eval` 并解析结果。

        返回：
        - JSON 解码后的值；空 body 返回 None

        异常：
        - ScriptSyntaxError / ScriptRuntimeError：script 级失败
        - ProtocolError：200 但 body 不是合法 JSON
        - TransportFailure：连接级失败
        - ValueError：source 含孤立代理字符（无法编码为 UTF-8），请求不会发出
        """

        try:
            source.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise ValueError(f"script is not valid UTF-8 text (lone surrogate at index {exc.start})") from exc
        resp = self.send(address, RpcRequest(path="/eval", content_type="text/javascript", body=source))
        return parse_eval_response(resp.status_code, resp.content)


def parse_eval_response(status_code: int, raw: bytes) -> Any:
    """把 `/eval` 的响应（状态码 + 原始 body）映射为值或异常。"""

    body = decode_component(raw.decode("utf-8", errors="replace"))
    if status_code == 200:
        if not body.strip():
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"invalid JSON result from runtime: {body[:200]!r}") from exc
    message, stack = split_error_body(body)
    raise classify_failure(message, stack)
