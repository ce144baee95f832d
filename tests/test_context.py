from __future__ import annotations

import os
import shlex
import sys

import pytest

from pcruntime import runtimes as runtimes_mod
from pcruntime.core.errors import RuntimeUnavailableError, ScriptRuntimeError
from pcruntime.runtimes import ExternalRuntime, autodetect, default_runner_path

pytestmark = pytest.mark.skipif(os.name == "nt", reason="AF_UNIX runtime channel is POSIX-only")


@pytest.fixture
def fake_runtime(fake_runner_path, test_config) -> ExternalRuntime:
    return ExternalRuntime("Fake", [shlex.quote(sys.executable)], runner_path=fake_runner_path, config=test_config)


def test_binary_is_resolved_lazily(fake_runtime: ExternalRuntime) -> None:
    assert fake_runtime.available()
    assert fake_runtime.binary[0].endswith(os.path.basename(sys.executable))
    assert "Fake" in repr(fake_runtime)


def test_context_eval_exec_call(fake_runtime: ExternalRuntime) -> None:
    with fake_runtime.compile("var counter = 10;") as ctx:
        assert ctx.eval("counter") == 10
        assert ctx.eval('{"a": 1}') == {"a": 1}
        assert ctx.exec("++counter; return counter") == 11
        assert ctx.exec("var x = 1") is None
        assert ctx.call("add", 1, 2, 3) == 6
        assert ctx.call("echo", "a b", None) == ["a b", None]


def test_blank_eval_does_not_touch_runtime(fake_runtime: ExternalRuntime) -> None:
    with fake_runtime.compile() as ctx:
        ctx.handle.close()
        # 空白输入直接返回，不需要子进程
        assert ctx.eval("  \n ") is None


def test_call_unknown_function_is_runtime_error(fake_runtime: ExternalRuntime) -> None:
    with fake_runtime.compile() as ctx:
        with pytest.raises(ScriptRuntimeError):
            ctx.call("nope", 1)


def test_one_shot_eval_and_exec(fake_runtime: ExternalRuntime) -> None:
    assert fake_runtime.eval("[1, 2]") == [1, 2]
    assert fake_runtime.exec("return 7") == 7


def test_contexts_from_one_runtime_are_isolated(fake_runtime: ExternalRuntime) -> None:
    with fake_runtime.compile("var n = 1;") as a, fake_runtime.compile("var n = 100;") as b:
        assert a.eval("++n") == 2
        assert b.eval("++n") == 101
        assert a.handle.process.pid != b.handle.process.pid


def test_unavailable_runtime_raises() -> None:
    rt = ExternalRuntime("Missing", ["definitely-not-a-js-runtime-xyz"])
    assert not rt.available()
    with pytest.raises(RuntimeUnavailableError):
        rt.compile("1")


def test_autodetect_skips_unavailable_and_deprecated(monkeypatch, fake_runtime: ExternalRuntime) -> None:
    missing = ExternalRuntime("Missing", ["definitely-not-a-js-runtime-xyz"])
    old = ExternalRuntime("Old", [shlex.quote(sys.executable)], deprecated=True)

    monkeypatch.setattr(runtimes_mod, "all_runtimes", lambda: [missing, old, fake_runtime])
    assert autodetect() is fake_runtime

    monkeypatch.setattr(runtimes_mod, "all_runtimes", lambda: [missing, old])
    with pytest.raises(RuntimeUnavailableError):
        autodetect()


def test_default_runner_is_packaged() -> None:
    p = default_runner_path()
    assert p.name == "runner.js"
    assert "process.env.PORT" in p.read_text(encoding="utf-8")


class _NonFilesystemResource:
    """模拟 zip 安装下的资源（不是 pathlib.Path）。"""

    def __init__(self, text: str) -> None:
        self._text = text

    def joinpath(self, name: str) -> "_NonFilesystemResource":
        return self

    def read_text(self, encoding: str = "utf-8") -> str:
        return self._text


def test_default_runner_outlives_lookup_for_non_filesystem_install(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(runtimes_mod, "files", lambda package: _NonFilesystemResource("// runner\n"))
    monkeypatch.setattr(runtimes_mod.tempfile, "tempdir", str(tmp_path))

    first = default_runner_path()
    second = default_runner_path()

    assert first == second
    assert first.parent == tmp_path
    assert first.read_text(encoding="utf-8") == "// runner\n"
    assert list(tmp_path.glob("*.tmp")) == []
