"""Server 模块测试。

测试工具定义、工具分发、事件转发和响应格式。
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from shell_process_mcp.config import Config
from shell_process_mcp.response_formatter import format_error_response, format_response
from shell_process_mcp.runtime import (
    ExitEvent,
    ForbiddenError,
    NoProcessError,
    ProcessEngine,
    ProcessExecutionError,
    StartEvent,
    WorkingDirectoryError,
)
from shell_process_mcp.runtime.termination import IS_WINDOWS
from shell_process_mcp.server import EventForwarder, ToolDispatcher, create_server, list_tool_definitions
from shell_process_mcp.tool_schema import SUPPORTED_TOOLS, create_tool_schema


class FakeSession:
    """记录日志通知的假 MCP 会话。"""

    def __init__(self) -> None:
        self.messages: list[dict] = []

    async def send_log_message(self, level, data, logger=None, related_request_id=None):
        self.messages.append({"level": level, "data": data, "logger": logger})


class TestToolDefinitions:
    """测试工具定义。"""

    def test_all_tools_listed_in_order(self):
        """list_tool_definitions 按 SUPPORTED_TOOLS 顺序返回。"""
        tools = list_tool_definitions()
        assert [t.name for t in tools] == SUPPORTED_TOOLS
        assert all(t.description for t in tools)

    def test_execute_schema(self):
        """execute 的参数 schema。"""
        schema = create_tool_schema("execute")
        assert schema["required"] == ["command"]
        for key in ("command", "args", "cwd", "env", "envPaths", "timeout", "allowUnsafe", "identifier"):
            assert key in schema["properties"]

    def test_execute_command_schema(self):
        """execute_command 只有 command / args / cwd。"""
        schema = create_tool_schema("execute_command")
        assert set(schema["properties"]) == {"command", "args", "cwd"}

    def test_kill_schema(self):
        schema = create_tool_schema("kill")
        assert schema["required"] == ["pid"]
        assert schema["properties"]["signal"]["default"] == 15

    def test_unknown_tool(self):
        with pytest.raises(ValueError, match="Unknown tool"):
            create_tool_schema("bogus")

    def test_create_server(self, test_config: Config):
        """create_server 返回具名的 MCP Server。"""
        server = create_server(ProcessEngine(config=test_config))
        assert server.name == "shell-process-mcp"


class TestResponseFormatter:
    """测试响应格式化。"""

    def test_format_response(self):
        content = format_response({"pid": 1, "stdout": "你好"})
        assert len(content) == 1
        assert json.loads(content[0].text) == {"pid": 1, "stdout": "你好"}

    def test_format_error_string(self):
        content = format_error_response("bad", code="INVALID_ARGUMENTS")
        assert json.loads(content[0].text) == {
            "error": {"code": "INVALID_ARGUMENTS", "message": "bad"}
        }

    def test_format_error_dict(self):
        error = ForbiddenError("curl", "Command not allowed: curl")
        content = format_error_response(error.to_dict())
        assert json.loads(content[0].text)["error"]["code"] == "FORBIDDEN"


@pytest.mark.skipif(IS_WINDOWS, reason="POSIX shell required")
class TestToolDispatcher:
    """测试工具分发。"""

    @pytest.fixture
    def dispatcher(self, engine: ProcessEngine, test_config: Config) -> ToolDispatcher:
        return ToolDispatcher(engine, test_config)

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_execute(self, dispatcher: ToolDispatcher):
        """execute 返回结果字典。"""
        result = await dispatcher.dispatch("execute", {"command": "echo", "args": ["hi there"]})
        assert result["code"] == 0
        assert result["stdout"] == "hi there\n"
        assert result["command"] == "echo 'hi there'"
        # 未提供 identifier 时自动生成
        assert result["identifier"]

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_execute_options(self, dispatcher: ToolDispatcher, temp_workspace: Path):
        """execute 接受宿主端的选项写法。"""
        result = await dispatcher.dispatch(
            "execute",
            {
                "command": "sh",
                "args": ["-c", "echo $SPM_X; pwd"],
                "cwd": str(temp_workspace),
                "env": {"SPM_X": "1"},
                "identifier": "given",
            },
        )
        lines = result["stdout"].splitlines()
        assert lines[0] == "1"
        assert Path(lines[1]).resolve() == temp_workspace.resolve()
        assert result["identifier"] == "given"

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_execute_command(self, dispatcher: ToolDispatcher, temp_workspace: Path):
        """execute_command 忽略 cwd 以外的选项。"""
        result = await dispatcher.dispatch(
            "execute_command",
            {"command": "pwd", "cwd": str(temp_workspace), "allowUnsafe": True},
        )
        assert Path(result["stdout"].strip()).resolve() == temp_workspace.resolve()

    @pytest.mark.asyncio
    async def test_execute_command_has_no_unsafe_bypass(self, dispatcher: ToolDispatcher):
        with pytest.raises(ForbiddenError):
            await dispatcher.dispatch("execute_command", {"command": "curl", "allowUnsafe": True})

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_execute_nonzero(self, dispatcher: ToolDispatcher):
        with pytest.raises(ProcessExecutionError):
            await dispatcher.dispatch("execute", {"command": "false"})

    @pytest.mark.asyncio
    async def test_missing_command(self, dispatcher: ToolDispatcher):
        with pytest.raises(KeyError):
            await dispatcher.dispatch("execute", {})

    @pytest.mark.asyncio
    async def test_kill_unknown(self, dispatcher: ToolDispatcher):
        with pytest.raises(NoProcessError):
            await dispatcher.dispatch("kill", {"pid": 999999})

    @pytest.mark.asyncio
    async def test_list_running(self, dispatcher: ToolDispatcher):
        assert await dispatcher.dispatch("list_running", {}) == []

    @pytest.mark.asyncio
    async def test_host_tools(self, dispatcher: ToolDispatcher, temp_workspace: Path):
        """目录、环境和系统信息工具。"""
        original = os.getcwd()
        try:
            assert await dispatcher.dispatch("get_current_directory", {}) == original

            changed = await dispatcher.dispatch("change_directory", {"path": str(temp_workspace)})
            assert changed == {"success": True, "path": str(temp_workspace)}

            with pytest.raises(WorkingDirectoryError):
                await dispatcher.dispatch("change_directory", {"path": str(temp_workspace / "nope")})
        finally:
            os.chdir(original)

        env = await dispatcher.dispatch("get_environment", {})
        assert isinstance(env, dict)

        info = await dispatcher.dispatch("get_system_info", {})
        assert info["cpus"] >= 1

    @pytest.mark.asyncio
    async def test_unknown_tool(self, dispatcher: ToolDispatcher):
        with pytest.raises(ValueError, match="Unknown tool"):
            await dispatcher.dispatch("bogus", {})

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_events_forwarded_to_session(self, dispatcher: ToolDispatcher):
        """有会话时事件作为日志通知按顺序转发。"""
        session = FakeSession()
        result = await dispatcher.dispatch(
            "execute", {"command": "echo", "args": ["x"], "identifier": "fwd"}, session
        )

        loggers = [m["logger"] for m in session.messages]
        assert loggers[0] == "process-start"
        assert loggers[-1] == "process-exit"
        assert "process-stdout" in loggers
        assert all(m["data"]["pid"] == result["pid"] for m in session.messages)
        assert all(m["data"]["identifier"] == "fwd" for m in session.messages)

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_events_not_forwarded_when_disabled(
        self, engine: ProcessEngine, test_config: Config
    ):
        """forward_events=False 时不发送通知。"""
        test_config.forward_events = False
        dispatcher = ToolDispatcher(engine, test_config)
        session = FakeSession()

        await dispatcher.dispatch("execute", {"command": "echo", "args": ["x"]}, session)

        assert session.messages == []


class TestEventForwarder:
    """测试事件转发器。"""

    @pytest.mark.asyncio
    @pytest.mark.timeout(5)
    async def test_filters_by_identifier(self, engine: ProcessEngine):
        """只转发 identifier 匹配的事件。"""
        session = FakeSession()

        async with EventForwarder(session, engine.events, "mine") as forwarder:
            engine.events.emit(StartEvent(pid=1, identifier="mine"))
            engine.events.emit(StartEvent(pid=2, identifier="other"))
            engine.events.emit(ExitEvent(pid=1, identifier="mine", code=0))

        assert forwarder.forwarded == 2
        assert [m["data"]["pid"] for m in session.messages] == [1, 1]
        assert [m["logger"] for m in session.messages] == ["process-start", "process-exit"]
        # 退出后取消订阅
        assert engine.events.listener_count("*") == 1

    @pytest.mark.asyncio
    @pytest.mark.timeout(5)
    async def test_send_failure_does_not_raise(self, engine: ProcessEngine):
        """发送失败不影响执行。"""

        class BrokenSession:
            async def send_log_message(self, **kwargs):
                raise RuntimeError("closed")

        async with EventForwarder(BrokenSession(), engine.events, "x") as forwarder:
            engine.events.emit(StartEvent(pid=1, identifier="x"))

        assert forwarder.forwarded == 0
