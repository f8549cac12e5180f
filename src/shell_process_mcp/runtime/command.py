"""Shell command line construction.

shell-process-mcp runtime v0.1.0

Commands run through a real shell (so pipelines, redirections and
builtins typed by the user keep working), which means every argument has
to be quoted so the shell hands the child exactly the intended value.

Quoting rule:
- An argument made only of ``A-Z a-z 0-9 _ @ % + = : , . / -`` is left bare
- Anything else is wrapped in single quotes; an embedded single quote
  becomes ``'"'"'`` (close quote, quoted quote, reopen quote)
- The empty string becomes ``''``

The command name itself is never quoted. Callers that cannot trust the
command name must go through the allow-list guard.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

__all__ = [
    "SPECIAL_CHARACTERS",
    "needs_quoting",
    "escape_single_quotes",
    "quote_argument",
    "build_command_line",
    "prefix_working_directory",
]

# Quote and expansion characters; the guard also rejects these in command names
SPECIAL_CHARACTERS = frozenset("\"'`$\\")

# Arguments made only of these characters are passed bare
_SAFE_ARGUMENT = re.compile(r"[A-Za-z0-9_@%+=:,./-]+")


def needs_quoting(arg: str) -> bool:
    """Return True if the argument must be single-quoted."""
    return _SAFE_ARGUMENT.fullmatch(arg) is None


def escape_single_quotes(value: str) -> str:
    """Replace every ``'`` with the close/quote/reopen sequence."""
    return value.replace("'", "'\"'\"'")


def quote_argument(arg: str) -> str:
    """Quote a single argument for a POSIX shell.

    Args:
        arg: Raw argument value

    Returns:
        The argument, bare or single-quoted
    """
    if arg == "":
        return "''"
    if not needs_quoting(arg):
        return arg
    return f"'{escape_single_quotes(arg)}'"


def build_command_line(command: str, args: Sequence[str] = ()) -> str:
    """Join a command name and its arguments into one shell line.

    Args:
        command: Command name, passed through unmodified
        args: Ordered argument list

    Returns:
        Shell-ready command line
    """
    if not args:
        return command
    return " ".join([command, *(quote_argument(str(arg)) for arg in args)])


def prefix_working_directory(command_line: str, cwd: str | None) -> str:
    """Prepend ``cd '<cwd>' &&`` when a working directory is given."""
    if not cwd:
        return command_line
    return f"cd '{escape_single_quotes(cwd)}' && {command_line}"
