"""执行选项、结果与错误类型测试。"""

from __future__ import annotations

import json

import pytest

from shell_process_mcp.runtime import (
    ExecOptions,
    ExecResult,
    ForbiddenError,
    KillError,
    NoProcessError,
    ProcessExecutionError,
    ProcessModuleError,
    SpawnError,
    WorkingDirectoryError,
)


class TestExecOptions:
    """ExecOptions 测试。"""

    def test_defaults(self):
        options = ExecOptions()
        assert options.cwd is None
        assert dict(options.env) == {}
        assert options.has_timeout is False
        assert options.allow_unsafe is False
        assert tuple(options.env_paths) == ()

    def test_from_mapping_host_keys(self):
        """接受宿主端写法。"""
        options = ExecOptions.from_mapping(
            {
                "cwd": "/tmp",
                "env": {"A": "1"},
                "timeout": 5,
                "allowUnsafe": True,
                "envPaths": ["/opt/bin"],
                "identifier": "abc",
            }
        )
        assert options.cwd == "/tmp"
        assert options.env == {"A": "1"}
        assert options.timeout == 5.0
        assert options.has_timeout is True
        assert options.allow_unsafe is True
        assert options.env_paths == ("/opt/bin",)
        assert options.identifier == "abc"

    def test_from_mapping_python_keys(self):
        """接受 Python 写法。"""
        options = ExecOptions.from_mapping({"allow_unsafe": True, "env_paths": ["/x"]})
        assert options.allow_unsafe is True
        assert options.env_paths == ("/x",)

    def test_env_paths_single_string(self):
        """单个字符串形式的 envPaths 视为一个目录。"""
        options = ExecOptions.from_mapping({"envPaths": "/opt/tools/bin"})
        assert options.env_paths == ("/opt/tools/bin",)
        assert ExecOptions(env_paths="/usr/local/bin").env_paths == ("/usr/local/bin",)

    def test_from_empty_mapping(self):
        assert ExecOptions.from_mapping(None) == ExecOptions()
        assert ExecOptions.from_mapping({}) == ExecOptions()

    @pytest.mark.parametrize("timeout", [0, -1, None])
    def test_non_positive_timeout(self, timeout):
        assert ExecOptions(timeout=timeout).has_timeout is False


class TestExecResult:
    """ExecResult 测试。"""

    def test_to_dict_success(self):
        result = ExecResult(pid=10, code=0, stdout="out", command="ls", identifier="x")
        data = result.to_dict()

        assert result.ok is True
        assert set(data) == {
            "pid", "code", "stdout", "stderr", "cwd", "command", "identifier", "timestamp",
        }

    def test_to_dict_timeout_and_signal(self):
        result = ExecResult(pid=10, code=-15, timed_out=True, signal=15)
        data = result.to_dict()

        assert result.ok is False
        assert data["timedOut"] is True
        assert data["signal"] == 15

    def test_timed_out_zero_exit_is_not_ok(self):
        """超时后即使以 0 退出也不算成功。"""
        assert ExecResult(pid=10, code=0, timed_out=True).ok is False


class TestErrors:
    """错误类型测试。"""

    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (ForbiddenError("curl", "Command not allowed: curl"), "FORBIDDEN"),
            (WorkingDirectoryError("/missing"), "CD_ERROR"),
            (SpawnError("ls", FileNotFoundError("no shell")), "EXEC_ERROR"),
            (KillError(1, OSError("EINVAL")), "KILL_ERROR"),
            (NoProcessError(1), "NO_PROCESS"),
        ],
    )
    def test_codes(self, error: ProcessModuleError, code: str):
        assert error.code == code
        assert error.to_dict() == {"code": code, "message": error.message}
        assert str(error) == error.message

    def test_messages(self):
        assert WorkingDirectoryError("/x").message == "Directory not found or not directory: /x"
        assert NoProcessError(42).message == "No running process with pid 42"
        assert SpawnError("ls", OSError("boom")).message == "Failed to run process: boom"

    def test_process_error_carries_result(self):
        result = ExecResult(pid=7, code=2, stdout="partial", stderr="bad")
        error = ProcessExecutionError(result)

        assert error.code == "PROCESS_ERROR"
        assert error.exit_code == 2
        assert json.loads(error.message)["stdout"] == "partial"
        assert error.to_dict()["result"]["stderr"] == "bad"
