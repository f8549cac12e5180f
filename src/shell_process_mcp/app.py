"""Shell Process MCP 应用入口。

包含服务器生命周期管理和主入口点。
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sys

from mcp.server.stdio import stdio_server

from .config import get_config
from .runtime import ProcessEngine
from .server import create_server
from .signal_manager import SignalManager

__all__ = ["run_server", "main", "JsonSerializingFormatter"]

logger = logging.getLogger(__name__)


async def run_server() -> None:
    """运行 MCP Server。

    使用并发任务架构：
    - server_task: 通过 stdio 运行 MCP server
    - shutdown_watcher: 监听 shutdown 事件并取消 server_task

    退出时终止所有仍在运行的子进程。
    """
    config = get_config()
    logger.info(f"Starting Shell Process MCP Server: {config}")

    engine = ProcessEngine(config=config)
    server = create_server(engine)
    server_task: asyncio.Task | None = None
    shutdown_watcher: asyncio.Task | None = None

    def on_shutdown() -> None:
        """信号管理器触发的关闭回调。"""
        logger.info("Shutdown callback triggered")
        # 关闭 stdin 以中断 stdio_server 的阻塞读取
        try:
            sys.stdin.close()
            logger.debug("stdin closed to unblock stdio_server")
        except OSError as e:
            logger.debug(f"Error closing stdin: {e}")

    signal_manager = SignalManager(engine, on_shutdown=on_shutdown)

    async def _run_server_impl() -> None:
        """运行 MCP server 的内部实现。"""
        logger.debug("Starting MCP server with stdio transport")
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
        logger.debug("MCP server completed normally")

    async def _watch_shutdown() -> None:
        """监听 shutdown 事件并取消 server task。"""
        await signal_manager.wait_for_shutdown()
        logger.info("Shutdown signal received, cancelling server task...")
        if server_task and not server_task.done():
            server_task.cancel()

    try:
        await signal_manager.start()
        logger.info(
            f"Signal manager started (mode={signal_manager.sigint_mode.value}, "
            f"double_tap_window={signal_manager.double_tap_window}s)"
        )

        server_task = asyncio.create_task(_run_server_impl(), name="mcp-server")
        shutdown_watcher = asyncio.create_task(_watch_shutdown(), name="shutdown-watcher")

        try:
            await server_task
        except asyncio.CancelledError:
            logger.info("Server task cancelled by shutdown signal")

    finally:
        logger.info("run_server: entering finally block")

        if shutdown_watcher and not shutdown_watcher.done():
            shutdown_watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await shutdown_watcher

        # 终止所有仍在运行的子进程
        terminated = await engine.terminate_all()
        if terminated:
            logger.info(f"run_server: terminated {terminated} running process(es)")

        await signal_manager.stop()

        logger.info("run_server: cleanup completed")

        if signal_manager.is_force_exit:
            logger.warning("Force exit requested, terminating with exit code 130")
            sys.exit(130)  # 128 + SIGINT(2) = 130


class JsonSerializingFormatter(logging.Formatter):
    """尝试将日志参数中的对象 JSON 序列化。"""

    def format(self, record: logging.LogRecord) -> str:
        if record.args and isinstance(record.args, tuple):
            new_args = []
            for arg in record.args:
                try:
                    if hasattr(arg, "model_dump"):
                        # Pydantic 模型（进程事件）
                        new_args.append(json.dumps(arg.model_dump(mode="json"), ensure_ascii=False))
                    elif hasattr(arg, "to_dict"):
                        new_args.append(json.dumps(arg.to_dict(), ensure_ascii=False, default=str))
                    elif isinstance(arg, dict):
                        new_args.append(json.dumps(arg, ensure_ascii=False, default=str))
                    else:
                        new_args.append(arg)
                except (TypeError, ValueError):
                    new_args.append(arg)
            record.args = tuple(new_args)
        return super().format(record)


def main() -> None:
    """主入口点。"""
    config = get_config()

    log_handlers: list[logging.Handler] = []
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(JsonSerializingFormatter(log_format))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        # 默认模式：输出到 stderr（stdout 留给 MCP stdio 传输）
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(log_format))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # 配置 root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    # 只对 shell_process_mcp 命名空间启用详细日志
    logging.getLogger("shell_process_mcp").setLevel(log_level)

    asyncio.run(run_server())


if __name__ == "__main__":
    main()
