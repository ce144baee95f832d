"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest

from pcruntime.config.loader import PcRuntimeConfig, load_config_dicts
from pcruntime.runtime.handle import RuntimeHandle

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_RUNNER = FIXTURES_DIR / "fake_runner.py"


@pytest.fixture
def fake_runner_path() -> Path:
    """Fake runtime 脚本路径（作为 initial_script_path 传给 python）。"""
    return FAKE_RUNNER


@pytest.fixture
def fake_command() -> list[str]:
    """启动 fake runtime 的命令（runner 路径由 supervisor 追加）。"""
    return [sys.executable, "-u"]


@pytest.fixture
def test_config(tmp_path: Path) -> PcRuntimeConfig:
    """放宽就绪窗口（CI 上 python 冷启动可能超过 1s），去掉退避等待。"""
    return load_config_dicts(
        [
            {
                "process": {"address_dir": str(tmp_path), "ready_attempts": 200, "ready_interval_ms": 25},
                "channel": {"timeout_sec": 30},
                "limiter": {"max_connections": 16},
                "recovery": {"base_delay_sec": 0.0, "cap_delay_sec": 0.0},
            }
        ]
    )


@pytest.fixture
def fake_handle(fake_command, fake_runner_path, test_config) -> Iterator[RuntimeHandle]:
    """预加载 `var counter = 0;` 的 handle（测试结束时关闭）。"""
    handle = RuntimeHandle.create(fake_command, fake_runner_path, "var counter = 0;", config=test_config)
    try:
        yield handle
    finally:
        handle.close()
