"""执行引擎异常类。

shell-process-mcp runtime v0.1.0

每个异常都带有一个稳定的错误码，供宿主端区分失败类型：
FORBIDDEN / CD_ERROR / EXEC_ERROR / PROCESS_ERROR / KILL_ERROR / NO_PROCESS
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .types import ExecResult

__all__ = [
    "ProcessModuleError",
    "ForbiddenError",
    "WorkingDirectoryError",
    "SpawnError",
    "ProcessExecutionError",
    "KillError",
    "NoProcessError",
]


class ProcessModuleError(Exception):
    """执行引擎基础异常。

    Attributes:
        code: 错误码
        message: 错误消息
    """

    code: str = "PROCESS_MODULE_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """转换为字典。"""
        return {"code": self.code, "message": self.message}


class ForbiddenError(ProcessModuleError):
    """命令不在白名单内。

    Attributes:
        command: 被拒绝的命令
        reason: 拒绝原因
    """

    code = "FORBIDDEN"

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(reason)


class WorkingDirectoryError(ProcessModuleError):
    """工作目录不存在或不是目录。"""

    code = "CD_ERROR"

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Directory not found or not directory: {path}")


class SpawnError(ProcessModuleError):
    """子进程启动失败。"""

    code = "EXEC_ERROR"

    def __init__(self, command: str, cause: BaseException) -> None:
        self.command = command
        self.cause = cause
        super().__init__(f"Failed to run process: {cause}")


class ProcessExecutionError(ProcessModuleError):
    """子进程以非零退出码结束或超时被终止。

    result 携带完整的结构化结果，调用方可以取回部分输出。

    Attributes:
        result: 执行结果
    """

    code = "PROCESS_ERROR"

    def __init__(self, result: "ExecResult") -> None:
        self.result = result
        try:
            message = json.dumps(result.to_dict(), ensure_ascii=False)
        except (TypeError, ValueError):
            message = f"Process exited with code {result.code}"
        super().__init__(message)

    @property
    def exit_code(self) -> int:
        """子进程退出码。"""
        return self.result.code

    def to_dict(self) -> dict[str, Any]:
        """转换为字典（包含结果）。"""
        data = super().to_dict()
        data["result"] = self.result.to_dict()
        return data


class KillError(ProcessModuleError):
    """信号发送失败。"""

    code = "KILL_ERROR"

    def __init__(self, pid: int, cause: BaseException) -> None:
        self.pid = pid
        self.cause = cause
        super().__init__(f"Failed to kill {pid}: {cause}")


class NoProcessError(ProcessModuleError):
    """注册表中没有该 pid。"""

    code = "NO_PROCESS"

    def __init__(self, pid: int) -> None:
        self.pid = pid
        super().__init__(f"No running process with pid {pid}")
