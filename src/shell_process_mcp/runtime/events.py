"""进程事件模型与事件总线。

shell-process-mcp runtime v0.1.0

每次执行按以下顺序推送事件：
    start -> stdout/stderr* -> exit 或 error-timeout（只有一个终止事件）

所有事件都携带 pid / type / command / identifier / cwd / timestamp，
并发执行时宿主可以用 pid 或 identifier 区分事件流。
设计原则：
1. 向前兼容 - 使用 extra='ignore' 忽略未知字段
2. 顺序投递 - EventBus 同步、按发出顺序投递
3. 订阅者隔离 - 单个订阅者抛异常不影响其他订阅者和执行引擎
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from typing import Any, Callable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "EVENT_TYPES",
    "ProcessEventBase",
    "StartEvent",
    "OutputEvent",
    "ExitEvent",
    "TimeoutEvent",
    "ProcessEvent",
    "EventCallback",
    "EventBus",
]

logger = logging.getLogger(__name__)

EVENT_TYPES = ("start", "stdout", "stderr", "exit", "error-timeout")


class ProcessEventBase(BaseModel):
    """所有进程事件的基类。

    Attributes:
        pid: 子进程 ID
        type: 事件类型
        command: 构建后的命令行
        identifier: 调用方关联标识
        cwd: 工作目录
        timestamp: Unix 时间戳（秒）
    """

    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
    )

    pid: int
    type: str
    command: str = ""
    identifier: str | None = None
    cwd: str | None = None
    timestamp: float = Field(default_factory=time.time)


class StartEvent(ProcessEventBase):
    """子进程已启动并已登记。"""

    type: Literal["start"] = "start"


class OutputEvent(ProcessEventBase):
    """增量输出（stdout 或 stderr 的一个已解码片段）。"""

    type: Literal["stdout", "stderr"]
    data: str


class ExitEvent(ProcessEventBase):
    """子进程结束并完成收尾。

    stdout 为完整的累积输出。
    """

    type: Literal["exit"] = "exit"
    code: int
    stdout: str = ""


class TimeoutEvent(ProcessEventBase):
    """子进程因超时被终止。"""

    type: Literal["error-timeout"] = "error-timeout"
    data: str


ProcessEvent = Union[StartEvent, OutputEvent, ExitEvent, TimeoutEvent]

# 类型别名：事件回调函数
EventCallback = Callable[[ProcessEvent], None]


class EventBus:
    """按事件类型分发的事件总线。

    Example:
        ```python
        bus = EventBus()
        unsubscribe = bus.subscribe("stdout", lambda e: print(e.data, end=""))
        bus.subscribe_all(lambda e: log.append(e))
        ...
        unsubscribe()
        ```
    """

    ALL = "*"

    def __init__(self) -> None:
        """初始化事件总线。"""
        self._listeners: dict[str, list[EventCallback]] = defaultdict(list)

    def subscribe(self, event_type: str, callback: EventCallback) -> Callable[[], None]:
        """订阅指定类型的事件。

        Args:
            event_type: 事件类型（见 EVENT_TYPES），"*" 表示全部
            callback: 回调函数

        Returns:
            取消订阅的函数

        Raises:
            ValueError: 未知的事件类型
        """
        if event_type != self.ALL and event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        self._listeners[event_type].append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(event_type, [])
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def subscribe_all(self, callback: EventCallback) -> Callable[[], None]:
        """订阅全部事件。"""
        return self.subscribe(self.ALL, callback)

    def remove_all_listeners(self, event_type: str | None = None) -> None:
        """移除指定类型（None 表示全部）的订阅者。"""
        if event_type is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event_type, None)

    def listener_count(self, event_type: str | None = None) -> int:
        """返回订阅者数量。"""
        if event_type is None:
            return sum(len(v) for v in self._listeners.values())
        return len(self._listeners.get(event_type, []))

    def emit(self, event: ProcessEvent) -> None:
        """同步投递事件。

        先投递给该类型的订阅者，再投递给全部事件的订阅者。
        """
        listeners = [*self._listeners.get(event.type, []), *self._listeners.get(self.ALL, [])]
        for callback in listeners:
            try:
                callback(event)
            except Exception as e:
                logger.warning(
                    f"Error in event listener for {event.type} pid={event.pid}: {e}"
                )

    @staticmethod
    def to_payload(event: ProcessEvent) -> dict[str, Any]:
        """转换为 JSON 友好的字典。"""
        return event.model_dump(mode="json")
