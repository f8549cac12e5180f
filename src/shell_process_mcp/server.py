"""Shell Process MCP Server。

把执行引擎的操作暴露为 MCP 工具，并把进程事件转发给客户端：
- execute / execute_command: 执行命令
- kill / list_running: 终止与枚举子进程
- get_current_directory / change_directory / get_environment / get_system_info

事件转发：
    execute 期间，identifier 匹配的事件按顺序作为 MCP 日志通知发送，
    logger 名为 "process-<type>"，data 为事件字典。
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import uuid
from typing import Any

import anyio
from mcp.server import Server
from mcp.types import TextContent, Tool

from .config import Config, get_config
from .host import change_directory, get_current_directory, get_environment, get_system_info
from .response_formatter import format_error_response, format_response
from .runtime import EventBus, ExecOptions, ProcessEngine, ProcessEvent, ProcessModuleError
from .tool_schema import SUPPORTED_TOOLS, TOOL_DESCRIPTIONS, create_tool_schema

__all__ = ["create_server", "list_tool_definitions", "EventForwarder", "ToolDispatcher"]

logger = logging.getLogger(__name__)


def list_tool_definitions() -> list[Tool]:
    """返回全部工具定义。"""
    return [
        Tool(
            name=name,
            description=TOOL_DESCRIPTIONS[name],
            inputSchema=create_tool_schema(name),
        )
        for name in SUPPORTED_TOOLS
    ]


class EventForwarder:
    """把单次执行的事件按顺序转发为 MCP 日志通知。

    事件回调是同步的，这里通过 anyio 内存流把事件交给单个转发任务，
    保证发送顺序与发出顺序一致。

    Example:
        ```python
        async with EventForwarder(session, engine.events, identifier):
            result = await engine.execute(...)
        ```
    """

    def __init__(self, session: Any, events: EventBus, identifier: str) -> None:
        """初始化转发器。

        Args:
            session: MCP ServerSession（需要 send_log_message）
            events: 事件总线
            identifier: 只转发 identifier 匹配的事件
        """
        self._session = session
        self._events = events
        self._identifier = identifier
        self._send, self._receive = anyio.create_memory_object_stream(max_buffer_size=math.inf)
        self._unsubscribe: Any = None
        self._task: asyncio.Task | None = None
        self.forwarded = 0

    async def __aenter__(self) -> "EventForwarder":
        self._unsubscribe = self._events.subscribe_all(self._on_event)
        self._task = asyncio.create_task(self._pump(), name=f"spm-forward-{self._identifier[:8]}")
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._unsubscribe:
            self._unsubscribe()
        self._send.close()
        if self._task:
            await self._task

    def _on_event(self, event: ProcessEvent) -> None:
        if event.identifier == self._identifier:
            self._send.send_nowait(event)

    async def _pump(self) -> None:
        async with self._receive:
            async for event in self._receive:
                try:
                    await self._session.send_log_message(
                        level="info",
                        data=EventBus.to_payload(event),
                        logger=f"process-{event.type}",
                    )
                    self.forwarded += 1
                except Exception as e:
                    logger.debug(f"Failed to forward {event.type} event pid={event.pid}: {e}")


class ToolDispatcher:
    """工具调用分发。

    与 MCP 协议层解耦，便于直接测试。
    """

    def __init__(self, engine: ProcessEngine, config: Config | None = None) -> None:
        self.engine = engine
        self.config = config or get_config()

    async def dispatch(
        self,
        name: str,
        arguments: dict[str, Any],
        session: Any | None = None,
    ) -> Any:
        """执行工具调用。

        Args:
            name: 工具名称
            arguments: 工具参数
            session: MCP 会话（可选，提供时转发事件）

        Returns:
            JSON 可序列化的结果

        Raises:
            ProcessModuleError: 引擎错误
            KeyError / ValueError / TypeError: 参数错误
        """
        if name in ("execute", "execute_command"):
            return await self._execute(name, arguments, session)

        if name == "kill":
            return await self.engine.kill(int(arguments["pid"]), int(arguments.get("signal", 15)))

        if name == "list_running":
            return self.engine.list_running()

        if name == "get_current_directory":
            return get_current_directory()

        if name == "change_directory":
            return change_directory(arguments["path"])

        if name == "get_environment":
            return get_environment(self.engine.environment)

        if name == "get_system_info":
            return get_system_info(self.engine.environment)

        raise ValueError(f"Unknown tool '{name}'")

    async def _execute(
        self,
        name: str,
        arguments: dict[str, Any],
        session: Any | None,
    ) -> dict[str, Any]:
        command = arguments["command"]
        args = [str(a) for a in arguments.get("args") or []]

        if name == "execute_command":
            options = ExecOptions(cwd=arguments.get("cwd"))
        else:
            options = ExecOptions.from_mapping(arguments)

        # 没有 identifier 时生成一个，用于过滤本次执行的事件
        if not options.identifier:
            options.identifier = str(uuid.uuid4())

        if session is None or not self.config.forward_events:
            result = await self.engine.execute(command, args, options)
            return result.to_dict()

        async with EventForwarder(session, self.engine.events, options.identifier):
            result = await self.engine.execute(command, args, options)
        return result.to_dict()


def _current_session(server: Server) -> Any | None:
    """获取当前请求的 MCP 会话，不在请求上下文中时返回 None。"""
    try:
        return server.request_context.session
    except LookupError:
        return None


def create_server(engine: ProcessEngine | None = None) -> Server:
    """创建 MCP Server 实例。

    Args:
        engine: 执行引擎（可选，默认新建）
    """
    config = get_config()
    engine = engine or ProcessEngine(config=config)
    dispatcher = ToolDispatcher(engine, config)
    server = Server("shell-process-mcp")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """列出可用工具。"""
        tools = list_tool_definitions()
        logger.debug(
            f"[MCP] list_tools called, returning {len(tools)} tools: "
            f"{[t.name for t in tools]}"
        )
        return tools

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """调用工具。"""
        logger.debug(
            f"[MCP] call_tool request:\n"
            f"  Tool: {name}\n"
            f"  Arguments: {json.dumps(arguments, ensure_ascii=False, default=str)[:500]}"
        )

        if name not in SUPPORTED_TOOLS:
            return format_error_response(f"Unknown tool '{name}'", code="UNKNOWN_TOOL")

        try:
            data = await dispatcher.dispatch(name, arguments or {}, _current_session(server))
            return format_response(data)

        except asyncio.CancelledError:
            logger.info(f"Tool '{name}' cancelled")
            raise

        except ProcessModuleError as e:
            logger.info(f"Tool '{name}' failed: {e.code} {e.message[:200]}")
            return format_error_response(e.to_dict())

        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Tool '{name}' invalid arguments: {e!r}")
            return format_error_response(f"Invalid arguments: {e}", code="INVALID_ARGUMENTS")

    return server
