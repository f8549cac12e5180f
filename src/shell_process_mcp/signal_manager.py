"""信号管理模块。

实现信号隔离策略，将 OS 信号转换为对子进程的操作：
- SIGINT: 终止运行中的子进程（而不是直接退出服务器）
- SIGTERM: 优雅退出（终止所有子进程 + 清理 + 退出）

支持的配置：
- SPM_SIGINT_MODE: cancel | exit | cancel_then_exit
- SPM_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import TYPE_CHECKING, Callable, Optional

from .config import SigintMode, get_config

if TYPE_CHECKING:
    from .runtime import ProcessEngine

__all__ = ["SignalManager", "SigintMode"]

logger = logging.getLogger(__name__)


class SignalManager:
    """信号管理器。

    管理 SIGINT 和 SIGTERM 信号的处理：
    - 将 SIGINT 转换为“终止运行中的子进程”操作
    - 将 SIGTERM 转换为“优雅退出”操作

    Example:
        ```python
        engine = ProcessEngine()
        signal_manager = SignalManager(engine)

        async def main():
            await signal_manager.start()
            try:
                await server.run(...)
            finally:
                await signal_manager.stop()
        ```

    Attributes:
        engine: 执行引擎
        sigint_mode: SIGINT 处理模式
        double_tap_window: 双击退出窗口时间（秒）
    """

    def __init__(
        self,
        engine: "ProcessEngine",
        sigint_mode: Optional[SigintMode] = None,
        double_tap_window: Optional[float] = None,
        on_shutdown: Optional[Callable[[], None]] = None,
    ) -> None:
        """初始化信号管理器。

        Args:
            engine: 执行引擎
            sigint_mode: SIGINT 处理模式（默认从配置读取）
            double_tap_window: 双击退出窗口时间（默认从配置读取）
            on_shutdown: 关闭时的回调函数
        """
        self.engine = engine

        # 从配置读取默认值
        config = get_config()
        self.sigint_mode = sigint_mode if sigint_mode is not None else config.sigint_mode
        self.double_tap_window = (
            double_tap_window if double_tap_window is not None else config.sigint_double_tap_window
        )
        self._on_shutdown = on_shutdown

        # 内部状态
        self._last_sigint_time: float = 0.0
        self._shutdown_requested: bool = False
        self._force_exit: bool = False  # 双击 SIGINT 触发的强制退出标志
        self._shutdown_event: Optional[asyncio.Event] = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: set[asyncio.Task] = set()

    @property
    def is_shutdown_requested(self) -> bool:
        """是否已请求关闭。"""
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """是否请求强制退出（双击 SIGINT）。"""
        return self._force_exit

    async def start(self) -> None:
        """启动信号监听。

        必须在 asyncio 事件循环中调用。
        """
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
            logger.debug(
                f"Signal handlers installed (mode={self.sigint_mode.value}, "
                f"double_tap_window={self.double_tap_window}s)"
            )
        else:
            signal.signal(signal.SIGINT, lambda sig, frame: self._loop.call_soon_threadsafe(self._handle_sigint))
            logger.debug(f"SIGINT handler installed on Windows (mode={self.sigint_mode.value})")

    async def stop(self) -> None:
        """停止信号监听并等待未完成的终止任务。"""
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except (ValueError, RuntimeError) as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif sys.platform == "win32":
            signal.signal(signal.SIGINT, signal.default_int_handler)

        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        """等待关闭信号。"""
        if self._shutdown_event:
            await self._shutdown_event.wait()

    def _terminate_children(self) -> int:
        """调度终止所有运行中的子进程，返回子进程数量。"""
        count = len(self.engine.list_running())
        if count and self._loop:
            task = self._loop.create_task(self.engine.terminate_all())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return count

    def _handle_sigint(self) -> None:
        """处理 SIGINT 信号。

        - 如果有运行中的子进程：终止子进程
        - 如果没有子进程或模式为 EXIT：请求关闭
        - 如果在双击窗口内再次收到 SIGINT：强制退出
        """
        current_time = time.time()
        time_since_last = current_time - self._last_sigint_time
        self._last_sigint_time = current_time

        # 检查双击退出
        if time_since_last < self.double_tap_window and self._shutdown_requested:
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._force_shutdown()
            return

        if self.sigint_mode == SigintMode.EXIT:
            logger.info("SIGINT received (mode=exit), requesting shutdown")
            self._request_shutdown()

        elif self.sigint_mode == SigintMode.CANCEL:
            if self.engine.has_running():
                count = self._terminate_children()
                logger.info(f"SIGINT received (mode=cancel), terminating {count} process(es)")
            else:
                logger.info("SIGINT received (mode=cancel), no running processes, requesting shutdown")
                self._request_shutdown()

        elif self.sigint_mode == SigintMode.CANCEL_THEN_EXIT:
            if self.engine.has_running():
                count = self._terminate_children()
                logger.info(
                    f"SIGINT received (mode=cancel_then_exit), terminating {count} process(es). "
                    f"Press Ctrl+C again within {self.double_tap_window}s to exit."
                )
                # 标记为已请求关闭，但不触发实际关闭
                self._shutdown_requested = True
            else:
                logger.info(
                    "SIGINT received (mode=cancel_then_exit), no running processes, requesting shutdown"
                )
                self._request_shutdown()

    def _handle_sigterm(self) -> None:
        """处理 SIGTERM 信号：终止所有子进程并请求关闭。"""
        logger.info("SIGTERM received, initiating graceful shutdown")
        self._terminate_children()
        self._request_shutdown()

    def _notify_shutdown(self) -> None:
        # 调用关闭回调
        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        # 设置关闭事件
        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)

    def _request_shutdown(self) -> None:
        """请求关闭。"""
        self._shutdown_requested = True
        self._notify_shutdown()

    def _force_shutdown(self) -> None:
        """强制退出。

        实际的进程退出由 run_server() 在清理完成后执行。
        """
        logger.warning("Forcing immediate shutdown")
        self._force_exit = True
        self._shutdown_requested = True
        count = self._terminate_children()
        if count:
            logger.info(f"Force shutdown: terminating {count} process(es)")
        self._notify_shutdown()

    def request_graceful_shutdown(self) -> None:
        """程序化请求优雅退出。"""
        logger.info("Programmatic shutdown requested")
        self._terminate_children()
        self._request_shutdown()
