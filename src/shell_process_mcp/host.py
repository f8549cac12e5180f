"""Host information operations.

Plain, non-concurrent helpers exposed next to the execution engine:
current directory, change directory, environment snapshot and static
system information.
"""

from __future__ import annotations

import logging
import os
import platform
import socket
import sys
import tempfile
from typing import Any

from .runtime.environment import EnvironmentProvider
from .runtime.errors import WorkingDirectoryError

__all__ = [
    "change_directory",
    "get_current_directory",
    "get_environment",
    "get_system_info",
]

logger = logging.getLogger(__name__)


def get_current_directory() -> str:
    return os.getcwd()


def change_directory(path: str) -> dict[str, Any]:
    """Change the server process working directory.

    Args:
        path: Target directory

    Returns:
        ``{"success": True, "path": path}``

    Raises:
        WorkingDirectoryError: path is missing or not a directory
    """
    if not path or not os.path.isdir(path):
        raise WorkingDirectoryError(path)
    os.chdir(path)
    logger.info(f"Changed working directory to {path}")
    return {"success": True, "path": path}


def get_environment(provider: EnvironmentProvider | None = None) -> dict[str, str]:
    return (provider or EnvironmentProvider()).current()


def _physical_memory() -> int:
    """Total physical memory in bytes, 0 when unknown."""
    try:
        return os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES")
    except (AttributeError, ValueError, OSError):
        return 0


def get_system_info(provider: EnvironmentProvider | None = None) -> dict[str, Any]:
    """Collect static information about the host machine."""
    provider = provider or EnvironmentProvider()
    return {
        "platform": sys.platform,
        "cpus": os.cpu_count() or 0,
        "memory": _physical_memory(),
        "hostname": socket.gethostname(),
        "homedir": provider.home(),
        "tmpdir": tempfile.gettempdir(),
        "username": provider.user(),
        "platformVersion": platform.release(),
    }
