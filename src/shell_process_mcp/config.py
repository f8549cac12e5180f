"""SPM 环境变量配置管理。

环境变量:
    SPM_ALLOW: 命令白名单（替换默认白名单）
        - 空/未设置 = 默认白名单 (ls, pwd, cat, echo, git, node, npm, ...)
        - 逗号分割，按命令 basename 匹配
        - 例: "ls,git,make"

    SPM_ALLOW_EXTRA: 追加到白名单的命令
        - 逗号分割
        - 例: "make,cargo"

    SPM_SHELL: 执行命令使用的 shell
        - 默认 /bin/bash（不存在时使用 /bin/sh）

    SPM_LOGIN_SHELL: 是否以 login shell 执行 (-lc)
        - true/1/yes = 开启 (会 source profile，可能改写 PATH)
        - false/0/no = 关闭 (默认，使用 -c)

    SPM_PATH_PREFIX: 子进程 PATH 的固定前缀（替换内置前缀）
        - 使用 os.pathsep 分割
        - 支持 ~ 展开

    SPM_TERM_TIMEOUT: SIGTERM 后等待退出的秒数 (默认 2.0)
    SPM_KILL_TIMEOUT: SIGKILL 后等待退出的秒数 (默认 1.0)
    SPM_DRAIN_TIMEOUT: 进程退出后等待剩余输出的秒数 (默认 0.5)

    SPM_FORWARD_EVENTS: 是否把进程事件作为 MCP 日志通知推送给客户端
        - true/1/yes = 推送 (默认)
        - false/0/no = 不推送

    SPM_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)

    SPM_SIGINT_MODE: SIGINT (Ctrl+C) 处理模式
        - cancel = 终止运行中的子进程（没有子进程则退出）(默认)
        - exit = 直接退出进程
        - cancel_then_exit = 先终止子进程，第二次才退出

    SPM_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间（秒）
        - 默认 1.0 秒
        - 在此时间窗口内第二次 Ctrl+C 将强制退出
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config", "SigintMode"]


class SigintMode(Enum):
    """SIGINT 处理模式。

    - CANCEL: 只终止运行中的子进程，不退出（如果没有子进程则退出）
    - EXIT: 直接退出进程（传统行为）
    - CANCEL_THEN_EXIT: 先终止子进程，第二次 SIGINT 才退出
    """

    CANCEL = "cancel"
    EXIT = "exit"
    CANCEL_THEN_EXIT = "cancel_then_exit"

    @classmethod
    def from_string(cls, value: str) -> "SigintMode":
        """从字符串解析模式。

        Args:
            value: 模式字符串 (cancel/exit/cancel_then_exit)

        Returns:
            对应的 SigintMode 枚举值，无效值返回 CANCEL
        """
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.CANCEL  # 默认值


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_command_list(value: str | None) -> frozenset[str]:
    """解析命令列表环境变量。

    Args:
        value: 环境变量值，逗号分割

    Returns:
        命令集合（忽略空项）
    """
    if not value or not value.strip():
        return frozenset()
    return frozenset(item.strip() for item in value.split(",") if item.strip())


def _parse_path_prefix(value: str | None) -> tuple[str, ...] | None:
    """解析 PATH 前缀环境变量，未设置返回 None（使用内置前缀）。"""
    if not value or not value.strip():
        return None
    return tuple(entry for entry in value.split(os.pathsep) if entry)


def _parse_seconds(value: str | None, default: float) -> float:
    """解析秒数环境变量，无效值或负数返回默认值。"""
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError:
        return default
    return seconds if seconds >= 0 else default


def _default_shell() -> str:
    """默认 shell：优先 bash。"""
    if os.path.exists("/bin/bash"):
        return "/bin/bash"
    return "/bin/sh"


@dataclass
class Config:
    """SPM 配置。

    Attributes:
        allowed_commands: 白名单，None 表示使用默认白名单
        extra_allowed_commands: 追加到白名单的命令
        shell: 执行命令的 shell
        login_shell: 是否使用 login shell (-lc)
        path_prefix: PATH 固定前缀，None 表示使用内置前缀
        term_timeout: SIGTERM 后等待秒数
        kill_timeout: SIGKILL 后等待秒数
        drain_timeout: 退出后等待剩余输出的秒数
        forward_events: 是否推送进程事件到 MCP 客户端
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
        sigint_mode: SIGINT 处理模式
        sigint_double_tap_window: 双击退出窗口时间（秒）
    """

    allowed_commands: frozenset[str] | None = None
    extra_allowed_commands: frozenset[str] = field(default_factory=frozenset)
    shell: str = field(default_factory=_default_shell)
    login_shell: bool = False
    path_prefix: tuple[str, ...] | None = None
    term_timeout: float = 2.0
    kill_timeout: float = 1.0
    drain_timeout: float = 0.5
    forward_events: bool = True
    log_debug: bool = False
    log_file: str | None = None
    sigint_mode: SigintMode = SigintMode.CANCEL
    sigint_double_tap_window: float = 1.0

    def __repr__(self) -> str:
        allow_str = ",".join(sorted(self.allowed_commands)) if self.allowed_commands else "default"
        return (
            f"Config(allow={allow_str}, "
            f"allow_extra={','.join(sorted(self.extra_allowed_commands)) or '-'}, "
            f"shell={self.shell}, "
            f"login_shell={self.login_shell}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"drain_timeout={self.drain_timeout}, "
            f"forward_events={self.forward_events}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_mode={self.sigint_mode.value}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    # 使用系统临时目录下的 shell-process-mcp 子目录
    log_dir = Path(tempfile.gettempdir()) / "shell-process-mcp"
    log_dir.mkdir(parents=True, exist_ok=True)

    # 生成带时间戳的文件名
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"spm_debug_{timestamp}.log"

    return str(log_file.resolve())


def _parse_sigint_mode(value: str | None) -> SigintMode:
    """解析 SIGINT 模式环境变量。"""
    if not value:
        return SigintMode.CANCEL
    return SigintMode.from_string(value)


def _parse_double_tap_window(value: str | None) -> float:
    """解析双击窗口时间环境变量。"""
    if not value:
        return 1.0
    try:
        window = float(value)
        return max(0.1, min(window, 10.0))  # 限制在 0.1-10 秒范围
    except ValueError:
        return 1.0


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("SPM_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None
    allowed = _parse_command_list(os.environ.get("SPM_ALLOW"))

    return Config(
        allowed_commands=allowed or None,
        extra_allowed_commands=_parse_command_list(os.environ.get("SPM_ALLOW_EXTRA")),
        shell=os.environ.get("SPM_SHELL") or _default_shell(),
        login_shell=_parse_bool(os.environ.get("SPM_LOGIN_SHELL"), default=False),
        path_prefix=_parse_path_prefix(os.environ.get("SPM_PATH_PREFIX")),
        term_timeout=_parse_seconds(os.environ.get("SPM_TERM_TIMEOUT"), 2.0),
        kill_timeout=_parse_seconds(os.environ.get("SPM_KILL_TIMEOUT"), 1.0),
        drain_timeout=_parse_seconds(os.environ.get("SPM_DRAIN_TIMEOUT"), 0.5),
        forward_events=_parse_bool(os.environ.get("SPM_FORWARD_EVENTS"), default=True),
        log_debug=log_debug,
        log_file=log_file,
        sigint_mode=_parse_sigint_mode(os.environ.get("SPM_SIGINT_MODE")),
        sigint_double_tap_window=_parse_double_tap_window(
            os.environ.get("SPM_SIGINT_DOUBLE_TAP_WINDOW")
        ),
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
