"""执行引擎类型定义。

shell-process-mcp runtime v0.1.0

定义调用参数（ExecOptions）与执行结果（ExecResult）。
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "ExecOptions",
    "ExecResult",
]


def _pick(options: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """按顺序返回第一个存在且非 None 的键值。"""
    for key in keys:
        value = options.get(key)
        if value is not None:
            return value
    return default


@dataclass
class ExecOptions:
    """单次执行的选项。

    Attributes:
        cwd: 工作目录（None 或空字符串表示不切换）
        env: 逐键覆盖的环境变量
        timeout: 超时秒数，大于 0 时生效
        allow_unsafe: 跳过白名单检查
        env_paths: 追加到 PATH 最前面的目录
        identifier: 调用方提供的关联标识，随每个事件回传
    """

    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: float | None = None
    allow_unsafe: bool = False
    env_paths: Sequence[str] = field(default_factory=tuple)
    identifier: str | None = None

    def __post_init__(self) -> None:
        """规范化字段类型。"""
        if self.cwd is not None:
            self.cwd = str(self.cwd)
        if self.env is None:
            self.env = {}
        if self.env_paths is None:
            self.env_paths = ()
        elif isinstance(self.env_paths, str):
            # 单个目录按一项处理
            self.env_paths = (self.env_paths,)
        else:
            self.env_paths = tuple(self.env_paths)
        if self.timeout is not None:
            self.timeout = float(self.timeout)

    @property
    def has_timeout(self) -> bool:
        """是否设置了有效的超时。"""
        return self.timeout is not None and self.timeout > 0

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any] | None) -> "ExecOptions":
        """从宿主传入的字典构造选项。

        同时接受宿主端写法（allowUnsafe / envPaths）和 Python 写法
        （allow_unsafe / env_paths）。

        Args:
            options: 选项字典，可以为 None

        Returns:
            ExecOptions 实例
        """
        if not options:
            return cls()
        return cls(
            cwd=_pick(options, "cwd"),
            env=dict(_pick(options, "env", default={})),
            timeout=_pick(options, "timeout"),
            allow_unsafe=bool(_pick(options, "allowUnsafe", "allow_unsafe", default=False)),
            env_paths=_pick(options, "envPaths", "env_paths", default=()),
            identifier=_pick(options, "identifier"),
        )


@dataclass
class ExecResult:
    """一次执行的最终结果。

    非零退出时同样的结构会随 PROCESS_ERROR 一起抛出，
    调用方可以从中取回部分输出。

    Attributes:
        pid: 子进程 ID
        code: 退出码（被信号终止时为负的信号值）
        stdout: 累积的标准输出
        stderr: 累积的标准错误
        cwd: 工作目录
        command: 构建后的命令行
        identifier: 调用方关联标识
        timestamp: 结果产生时间（Unix 秒）
        timed_out: 是否因超时被终止
        signal: 终止子进程的信号（已知时）
    """

    pid: int
    code: int
    stdout: str = ""
    stderr: str = ""
    cwd: str | None = None
    command: str = ""
    identifier: str | None = None
    timestamp: float = field(default_factory=time.time)
    timed_out: bool = False
    signal: int | None = None

    @property
    def ok(self) -> bool:
        """是否以退出码 0 结束且未超时。"""
        return self.code == 0 and not self.timed_out

    def to_dict(self) -> dict[str, Any]:
        """转换为字典。"""
        data: dict[str, Any] = {
            "pid": self.pid,
            "code": self.code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "cwd": self.cwd,
            "command": self.command,
            "identifier": self.identifier,
            "timestamp": self.timestamp,
        }
        if self.timed_out:
            data["timedOut"] = True
        if self.signal is not None:
            data["signal"] = self.signal
        return data
