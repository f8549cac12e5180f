"""Tool Schema 定义。

包含工具描述、参数 schema 和 schema 创建函数。
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "SUPPORTED_TOOLS",
    "TOOL_DESCRIPTIONS",
    "create_tool_schema",
]

# 工具列表（顺序即 list_tools 的返回顺序）
SUPPORTED_TOOLS = [
    "execute",
    "execute_command",
    "kill",
    "list_running",
    "get_current_directory",
    "change_directory",
    "get_environment",
    "get_system_info",
]

# 工具描述
TOOL_DESCRIPTIONS = {
    "execute": """Run a command through the shell and return its output.

ALLOW-LIST:
- Only allow-listed command basenames run (ls, pwd, cat, echo, git, node, npm, ...).
- Set allowUnsafe=true to bypass the check (required for raw shell strings
  with pipes/redirections, which must then be passed as the command with no args).

ARGUMENTS:
- Each entry of args is quoted for the shell, so spaces, quotes and $ are passed literally.

STREAMING:
- While running, start/stdout/stderr/exit/error-timeout events are sent as log
  notifications (logger "process-<type>") tagged with pid and identifier.

RESULT:
- Exit code 0: {pid, code, stdout, stderr, cwd, command, identifier, timestamp}
- Non-zero exit: error PROCESS_ERROR with the same structure in "result".""",

    "execute_command": """Run a command in an optional working directory (shorthand for execute with only cwd).""",

    "kill": """Send a signal to a running process started by execute.

The process is then asked to terminate and force-killed if it does not exit.
Fails with NO_PROCESS if the pid is not running, KILL_ERROR if the signal cannot be delivered.""",

    "list_running": """List pids of processes started by execute that have not finished yet.""",

    "get_current_directory": """Return the server's current working directory.""",

    "change_directory": """Change the server's current working directory. Fails with CD_ERROR if the path is not a directory.""",

    "get_environment": """Return the server's environment variables.""",

    "get_system_info": """Return platform, cpus, memory, hostname, homedir, tmpdir, username and platformVersion.""",
}

# execute 的公共参数
EXECUTE_PROPERTIES: dict[str, Any] = {
    "command": {
        "type": "string",
        "description": "Command name or path (e.g. 'git', '/usr/bin/ls').",
    },
    "args": {
        "type": "array",
        "items": {"type": "string"},
        "default": [],
        "description": "Arguments, each passed to the command as one argument.",
    },
    "cwd": {
        "type": "string",
        "description": "Working directory. Must exist.",
    },
}

EXECUTE_OPTION_PROPERTIES: dict[str, Any] = {
    "env": {
        "type": "object",
        "additionalProperties": {"type": "string"},
        "description": "Environment variables overriding the inherited environment.",
    },
    "envPaths": {
        "type": "array",
        "items": {"type": "string"},
        "description": "Directories prepended to PATH.",
    },
    "timeout": {
        "type": "number",
        "exclusiveMinimum": 0,
        "description": "Timeout in seconds. The process is terminated when it elapses.",
    },
    "allowUnsafe": {
        "type": "boolean",
        "default": False,
        "description": "Bypass the command allow-list.",
    },
    "identifier": {
        "type": "string",
        "description": "Correlation token echoed on every event of this execution.",
    },
}


def create_tool_schema(tool: str) -> dict[str, Any]:
    """创建工具的 JSON Schema。

    Args:
        tool: 工具名称（见 SUPPORTED_TOOLS）

    Returns:
        inputSchema 字典

    Raises:
        ValueError: 未知工具
    """
    if tool == "execute":
        return {
            "type": "object",
            "properties": {**EXECUTE_PROPERTIES, **EXECUTE_OPTION_PROPERTIES},
            "required": ["command"],
        }

    if tool == "execute_command":
        return {
            "type": "object",
            "properties": dict(EXECUTE_PROPERTIES),
            "required": ["command"],
        }

    if tool == "kill":
        return {
            "type": "object",
            "properties": {
                "pid": {"type": "integer", "description": "Process id from execute / list_running."},
                "signal": {"type": "integer", "default": 15, "description": "Signal number (default 15, SIGTERM)."},
            },
            "required": ["pid"],
        }

    if tool == "change_directory":
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Target directory."},
            },
            "required": ["path"],
        }

    if tool in SUPPORTED_TOOLS:
        return {"type": "object", "properties": {}, "required": []}

    raise ValueError(f"Unknown tool '{tool}'")
