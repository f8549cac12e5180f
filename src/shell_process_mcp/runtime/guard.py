"""Command allow-list guard.

shell-process-mcp runtime v0.1.0

Accepts or rejects a command by its basename. This stops accidental
execution of arbitrary binaries when the command string comes from a
less-trusted caller. It is NOT a sandbox: arguments are not inspected and
paths are not canonicalised, so a symlink named ``ls`` passes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import PurePosixPath

from .command import SPECIAL_CHARACTERS

__all__ = [
    "DEFAULT_ALLOWED_COMMANDS",
    "AllowList",
    "GuardDecision",
    "command_basename",
]

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_COMMANDS = frozenset({
    "ls", "pwd", "cat", "echo", "git", "node", "npm", "yarn", "python3", "swift",
    "which", "brew", "rm", "cp", "mv", "mkdir", "rmdir", "chmod", "chown", "php",
    "composer", "npx",
})

# Shell metacharacters that turn a command name into a shell program
_COMMAND_METACHARACTERS = SPECIAL_CHARACTERS | frozenset(";&|<>(){}*?[]~!#")


def command_basename(command: str) -> str:
    """Return the final path component of a command."""
    return PurePosixPath(command).name


@dataclass(frozen=True)
class GuardDecision:
    """Outcome of an allow-list check.

    Attributes:
        permitted: Whether the command may run
        basename: Basename the decision was made on
        reason: Rejection reason (empty when permitted)
    """

    permitted: bool
    basename: str
    reason: str = ""

    def __bool__(self) -> bool:
        return self.permitted


class AllowList:
    """Fixed set of permitted command basenames."""

    def __init__(self, commands: Iterable[str] | None = None) -> None:
        self._commands = frozenset(
            DEFAULT_ALLOWED_COMMANDS if commands is None else commands
        )

    @property
    def commands(self) -> frozenset[str]:
        return self._commands

    def __contains__(self, basename: str) -> bool:
        return basename in self._commands

    def check(self, command: str, allow_unsafe: bool = False) -> GuardDecision:
        """Decide whether ``command`` may run.

        Args:
            command: Command name or path as given by the caller
            allow_unsafe: Bypass the check for this invocation

        Returns:
            GuardDecision
        """
        basename = command_basename(command)
        if allow_unsafe:
            logger.debug(f"Allow-list bypassed for command={command!r}")
            return GuardDecision(True, basename)

        if any(ch.isspace() or ch in _COMMAND_METACHARACTERS for ch in command):
            return GuardDecision(
                False,
                basename,
                f"Command contains shell metacharacters: {command}",
            )

        if basename not in self._commands:
            return GuardDecision(False, basename, f"Command not allowed: {basename}")

        return GuardDecision(True, basename)

    def __repr__(self) -> str:
        return f"AllowList({','.join(sorted(self._commands))})"
