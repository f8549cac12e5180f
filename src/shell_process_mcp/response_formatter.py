"""MCP 响应格式化器。

所有工具都返回单个 JSON 文本块：
    - 成功: 工具结果本身（对象或数组）
    - 失败: {"error": {"code": ..., "message": ..., "result"?: ...}}
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mcp.types import TextContent

__all__ = [
    "format_response",
    "format_error_response",
]


def _dumps(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, default=str)


def format_response(data: Any) -> list[TextContent]:
    """格式化成功结果。"""
    from mcp.types import TextContent

    return [TextContent(type="text", text=_dumps(data))]


def format_error_response(error: str | dict[str, Any], code: str = "ERROR") -> list[TextContent]:
    """统一的错误响应格式化函数。

    Args:
        error: 错误消息，或已包含 code/message 的字典（ProcessModuleError.to_dict()）
        code: error 为字符串时使用的错误码
    """
    from mcp.types import TextContent

    payload = error if isinstance(error, dict) else {"code": code, "message": error}
    return [TextContent(type="text", text=_dumps({"error": payload}))]
