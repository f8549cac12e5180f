"""进程注册表模块。

记录所有已启动、尚未完成收尾（reconcile）的子进程：
- TrackedProcess: 单个在途子进程的信息
- ProcessRegistry: pid -> TrackedProcess 的映射，是“什么在运行”的唯一来源

条目在启动成功后立即登记，并且只在执行引擎的收尾步骤中移除一次。
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

__all__ = ["ProcessRegistry", "TrackedProcess"]

logger = logging.getLogger(__name__)


@dataclass
class TrackedProcess:
    """在途子进程的信息。

    Attributes:
        pid: 子进程 ID
        handle: asyncio 子进程句柄
        command_line: 构建后的命令行（不含 cd 前缀）
        cwd: 工作目录
        identifier: 调用方关联标识
        started_at: 启动时间
        kill_signal: 显式 kill 请求的信号（未请求时为 None）
        reconciled: 收尾完成后被 set
    """

    pid: int
    handle: asyncio.subprocess.Process
    command_line: str
    cwd: Optional[str] = None
    identifier: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    kill_signal: Optional[int] = None
    reconciled: asyncio.Event = field(default_factory=asyncio.Event)

    def __repr__(self) -> str:
        elapsed = time.time() - self.started_at
        status = "reconciled" if self.reconciled.is_set() else "running"
        return (
            f"TrackedProcess(pid={self.pid}, "
            f"command={self.command_line[:40]!r}, "
            f"identifier={self.identifier}, "
            f"status={status}, "
            f"elapsed={elapsed:.1f}s)"
        )


class ProcessRegistry:
    """在途子进程的注册表。

    提供：
    - 登记 / 查询 / 移除
    - 键集合快照（list_running 使用）

    线程安全：所有操作都经过同一把锁，锁只在字典操作期间持有，
    不跨越任何 I/O。

    Example:
        ```python
        registry = ProcessRegistry()
        registry.insert(TrackedProcess(pid=proc.pid, handle=proc, command_line="ls"))

        if proc.pid in registry:
            print(registry.snapshot_keys())

        registry.remove(proc.pid)
        ```
    """

    def __init__(self) -> None:
        """初始化注册表。"""
        self._processes: Dict[int, TrackedProcess] = {}
        self._lock = threading.Lock()

    def insert(self, process: TrackedProcess) -> None:
        """登记子进程。

        Args:
            process: 子进程信息

        Raises:
            ValueError: 如果 pid 已被登记
        """
        with self._lock:
            if process.pid in self._processes:
                raise ValueError(f"Process {process.pid} already registered")
            self._processes[process.pid] = process
        logger.debug(f"Registered process: {process}")

    def lookup(self, pid: int) -> Optional[TrackedProcess]:
        """查询子进程。

        Args:
            pid: 子进程 ID

        Returns:
            子进程信息，不存在则返回 None
        """
        with self._lock:
            return self._processes.get(pid)

    def remove(self, pid: int) -> Optional[TrackedProcess]:
        """移除子进程。

        Args:
            pid: 子进程 ID

        Returns:
            被移除的条目，不存在则返回 None
        """
        with self._lock:
            process = self._processes.pop(pid, None)
        if process is not None:
            logger.debug(f"Unregistered process: {process}")
        return process

    def snapshot_keys(self) -> frozenset[int]:
        """返回当前 pid 集合的快照。

        快照不保证存活：返回的 pid 在使用时可能已经结束。
        """
        with self._lock:
            return frozenset(self._processes)

    def values(self) -> list[TrackedProcess]:
        """返回当前条目列表的快照（按启动时间排序）。"""
        with self._lock:
            processes = list(self._processes.values())
        return sorted(processes, key=lambda p: p.started_at)

    def __len__(self) -> int:
        """返回注册表中的子进程数量。"""
        with self._lock:
            return len(self._processes)

    def __contains__(self, pid: int) -> bool:
        """检查 pid 是否在注册表中。"""
        with self._lock:
            return pid in self._processes
