"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import shutil
import sys
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from shell_process_mcp.config import Config  # noqa: E402
from shell_process_mcp.runtime import EventBus, ProcessEngine  # noqa: E402

# 测试使用的 shell：优先 bash，否则 sh
TEST_SHELL = shutil.which("bash") or "/bin/sh"


@pytest.fixture
def project_root() -> Path:
    """项目根目录。"""
    return PROJECT_ROOT


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """临时工作目录。"""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def test_config() -> Config:
    """缩短超时的测试配置。"""
    return Config(
        shell=TEST_SHELL,
        term_timeout=0.5,
        kill_timeout=0.3,
        drain_timeout=0.3,
        extra_allowed_commands=frozenset({"sh", "sleep", "printf", "env", "false", "true"}),
    )


@pytest.fixture
def recorded_events() -> list:
    """收集事件的列表。"""
    return []


@pytest.fixture
def engine(test_config: Config, recorded_events: list) -> ProcessEngine:
    """订阅了全部事件的执行引擎。"""
    bus = EventBus()
    bus.subscribe_all(recorded_events.append)
    return ProcessEngine(config=test_config, events=bus)
