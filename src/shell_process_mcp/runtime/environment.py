"""Child process environment construction.

shell-process-mcp runtime v0.1.0

The child always sees a curated ``PATH`` prefix so common toolchain
locations resolve even when the parent environment is minimal (e.g. a GUI
host launched without a login shell). Merge order:

1. Parent environment (from the EnvironmentProvider)
2. ``PATH`` = caller env_paths + curated prefix + inherited entries
3. Caller ``env`` overrides, key by key (a caller ``PATH`` wins)
"""

from __future__ import annotations

import getpass
import os
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path

__all__ = [
    "DEFAULT_PATH_PREFIX",
    "EnvironmentProvider",
    "build_child_environment",
    "merge_path",
]

DEFAULT_PATH_PREFIX: tuple[str, ...] = (
    "/usr/local/bin",
    "/usr/bin",
    "/bin",
    "/usr/sbin",
    "/sbin",
    "/opt/homebrew/bin",
    "~/.local/bin",
)


class EnvironmentProvider:
    """Source of the parent environment and user paths.

    Subclass or pass ``environ`` to make the engine deterministic in tests.
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = environ

    def current(self) -> dict[str, str]:
        """Return a copy of the current process environment."""
        source = os.environ if self._environ is None else self._environ
        return dict(source)

    def home(self) -> str:
        env = self.current()
        return env.get("HOME") or str(Path.home())

    def user(self) -> str:
        env = self.current()
        user = env.get("USER") or env.get("LOGNAME")
        if user:
            return user
        try:
            return getpass.getuser()
        except (KeyError, OSError):
            return ""


def merge_path(*groups: Iterable[str]) -> str:
    """Join PATH entries in order, dropping empties and duplicates."""
    seen: set[str] = set()
    entries: list[str] = []
    for group in groups:
        for entry in group:
            if entry and entry not in seen:
                seen.add(entry)
                entries.append(entry)
    return os.pathsep.join(entries)


def _expand_home(entry: str, home: str) -> str:
    if entry == "~":
        return home
    if entry.startswith("~/"):
        return home.rstrip("/") + entry[1:]
    return entry


def build_child_environment(
    provider: EnvironmentProvider,
    *,
    path_prefix: Sequence[str] = DEFAULT_PATH_PREFIX,
    env_paths: Sequence[str] = (),
    env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Build the environment for one child process.

    Args:
        provider: Parent environment source
        path_prefix: Curated PATH prefix (``~`` is expanded)
        env_paths: Caller directories prepended before the curated prefix
        env: Caller overrides applied last

    Returns:
        Environment mapping for the child
    """
    result = provider.current()
    home = provider.home()

    inherited = result.get("PATH", "").split(os.pathsep)
    result["PATH"] = merge_path(
        [str(p) for p in env_paths],
        [_expand_home(p, home) for p in path_prefix],
        inherited,
    )

    for key, value in (env or {}).items():
        result[str(key)] = str(value)

    return result
