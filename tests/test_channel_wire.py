from __future__ import annotations

import json
import threading
import time
from pathlib import Path

import httpx
import pytest

from pcruntime.core.errors import ProtocolError, ScriptRuntimeError, ScriptSyntaxError, TransportFailure
from pcruntime.runtime.channel import RpcChannel, RpcRequest, decode_component, encode_component, parse_eval_response
from pcruntime.runtime.limiter import ConnectionLimiter


def test_encode_component_uses_percent_20_for_space_and_escapes_plus() -> None:
    assert encode_component("a b+c") == "a%20b%2Bc"
    assert "+" not in encode_component("1 + 1")


def test_encode_component_matches_encode_uri_component_unreserved_set() -> None:
    assert encode_component("AZaz09-_.!~*'()") == "AZaz09-_.!~*'()"
    assert encode_component("é&/?=") == "%C3%A9%26%2F%3F%3D"


def test_decode_component_keeps_literal_plus() -> None:
    assert decode_component("1%20+%201") == "1 + 1"
    assert decode_component(encode_component("日本語 \0 x")) == "日本語 \0 x"


def test_parse_success_body_is_percent_encoded_json() -> None:
    raw = encode_component(json.dumps({"a": [1, "x y"]})).encode("ascii")
    assert parse_eval_response(200, raw) == {"a": [1, "x y"]}


@pytest.mark.parametrize("raw", [b"", b"   ", b"%20"])
def test_parse_empty_success_body_means_no_value(raw: bytes) -> None:
    assert parse_eval_response(200, raw) is None


def test_parse_invalid_json_raises_protocol_error() -> None:
    with pytest.raises(ProtocolError):
        parse_eval_response(200, b"not%20json")


def test_parse_error_body_splits_message_and_stack() -> None:
    raw = encode_component("Error: boom\0Error: boom\n    at (execjs):1:7").encode("ascii")
    with pytest.raises(ScriptRuntimeError) as ei:
        parse_eval_response(500, raw)
    assert ei.value.message == "Error: boom"
    assert "(execjs):1:7" in ei.value.stack


def test_parse_syntax_error_body() -> None:
    raw = encode_component("SyntaxError: Unexpected end of input\0").encode("ascii")
    with pytest.raises(ScriptSyntaxError):
        parse_eval_response(500, raw)


def test_parse_error_body_without_nul_has_empty_stack() -> None:
    with pytest.raises(ScriptRuntimeError) as ei:
        parse_eval_response(500, encode_component("oops").encode("ascii"))
    assert ei.value.stack == ""


def test_missing_socket_is_transport_failure(tmp_path: Path) -> None:
    channel = RpcChannel(timeout_sec=2.0)
    with pytest.raises(TransportFailure):
        channel.evaluate(tmp_path / "missing.sock", "1")


class _CountingChannel(RpcChannel):
    """记录同时打开的连接数（不真正建立连接）。"""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.requests: list[RpcRequest] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _exchange(self, address, request):
        with self._lock:
            self.requests.append(request)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(0.02)
            return httpx.Response(200, content=encode_component("42").encode("ascii"))
        finally:
            with self._lock:
                self.active -= 1


def test_concurrent_evaluate_never_exceeds_permit_capacity() -> None:
    capacity = 3
    channel = _CountingChannel(limiter=ConnectionLimiter(capacity))
    results: list[int] = []
    lock = threading.Lock()

    def worker() -> None:
        for _ in range(5):
            v = channel.evaluate("/unused.sock", "42")
            with lock:
                results.append(v)

    threads = [threading.Thread(target=worker) for _ in range(capacity * 4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == capacity * 4 * 5
    assert set(results) == {42}
    assert 1 <= channel.max_active <= capacity


def test_eval_request_framing() -> None:
    channel = _CountingChannel()
    channel.evaluate("/unused.sock", "a b")
    req = channel.requests[-1]
    assert req.path == "/eval"
    assert req.content_type == "text/javascript"
    assert req.body == "a b"


class _FailingChannel(RpcChannel):
    def _exchange(self, address, request):
        raise httpx.ConnectError("connection refused")


def test_permit_released_after_transport_failure() -> None:
    limiter = ConnectionLimiter(2)
    channel = _FailingChannel(limiter=limiter)
    for _ in range(5):
        with pytest.raises(TransportFailure):
            channel.evaluate("/unused.sock", "1")

    # 两个 permit 都应可立即取得（没有泄露）
    assert limiter._sem.acquire(blocking=False)
    assert limiter._sem.acquire(blocking=False)
    limiter.release()
    limiter.release()


def test_lone_surrogate_source_is_rejected_before_connecting() -> None:
    channel = _CountingChannel()
    with pytest.raises(ValueError, match="UTF-8"):
        channel.evaluate("/unused.sock", "'\ud800'")
    assert channel.requests == []
