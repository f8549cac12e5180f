"""Runtime module for shell process execution and event streaming.

This module provides allow-listed shell execution with incremental
stdout/stderr events, timeouts, signal-based termination and a live
registry of running children.
"""

from __future__ import annotations

from .command import build_command_line, prefix_working_directory, quote_argument
from .engine import ProcessEngine
from .environment import EnvironmentProvider, build_child_environment
from .errors import (
    ForbiddenError,
    KillError,
    NoProcessError,
    ProcessExecutionError,
    ProcessModuleError,
    SpawnError,
    WorkingDirectoryError,
)
from .events import (
    EVENT_TYPES,
    EventBus,
    ExitEvent,
    OutputEvent,
    ProcessEvent,
    StartEvent,
    TimeoutEvent,
)
from .guard import DEFAULT_ALLOWED_COMMANDS, AllowList, GuardDecision
from .registry import ProcessRegistry, TrackedProcess
from .termination import ProcessTerminator
from .types import ExecOptions, ExecResult

__all__ = [
    "AllowList",
    "DEFAULT_ALLOWED_COMMANDS",
    "EVENT_TYPES",
    "EnvironmentProvider",
    "EventBus",
    "ExecOptions",
    "ExecResult",
    "ExitEvent",
    "ForbiddenError",
    "GuardDecision",
    "KillError",
    "NoProcessError",
    "OutputEvent",
    "ProcessEngine",
    "ProcessEvent",
    "ProcessExecutionError",
    "ProcessModuleError",
    "ProcessRegistry",
    "ProcessTerminator",
    "SpawnError",
    "StartEvent",
    "TimeoutEvent",
    "TrackedProcess",
    "WorkingDirectoryError",
    "build_child_environment",
    "build_command_line",
    "prefix_working_directory",
    "quote_argument",
]
