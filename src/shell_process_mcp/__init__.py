"""Shell Process MCP - 流式执行 shell 命令的 MCP 服务器。

环境变量:
    SPM_ALLOW: 命令白名单（空=默认白名单）
    SPM_ALLOW_EXTRA: 追加到白名单的命令
    SPM_SHELL: 执行命令的 shell (默认 /bin/bash)
    SPM_LOG_DEBUG: 日志输出到临时文件 (默认 false)

用法:
    uvx shell-process-mcp
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
