"""Command line construction tests.

Test coverage:
- Argument quoting rules
- Single quote escaping
- Shell round trip (shlex parses the line back into the original args)
- Working directory prefix
"""

from __future__ import annotations

import shlex

import pytest

from shell_process_mcp.runtime.command import (
    build_command_line,
    escape_single_quotes,
    needs_quoting,
    prefix_working_directory,
    quote_argument,
)


class TestQuoteArgument:
    """Test single argument quoting."""

    @pytest.mark.parametrize("arg", ["hello", "--oneline", "-5", "a=b", "path/to/file.txt"])
    def test_plain_argument_is_bare(self, arg: str):
        """Arguments without whitespace or special characters are not quoted."""
        assert quote_argument(arg) == arg

    def test_argument_with_space(self):
        """Whitespace forces single quotes."""
        assert quote_argument("hello world") == "'hello world'"

    def test_argument_with_tab_and_newline(self):
        """Any whitespace character forces single quotes."""
        assert quote_argument("a\tb") == "'a\tb'"
        assert quote_argument("a\nb") == "'a\nb'"

    @pytest.mark.parametrize("arg", ['say"hi"', "$HOME", "`id`", "back\\slash"])
    def test_special_characters_are_quoted(self, arg: str):
        """Double quote, dollar, backtick and backslash force single quotes."""
        assert quote_argument(arg) == f"'{arg}'"

    @pytest.mark.parametrize(
        "arg", ["a;b", "x|y", "a&b", "<in", "out>f", "*.py", "a?", "[ab]", "(x)", "#c", "~", "!x", "{a,b}"]
    )
    def test_shell_metacharacters_are_quoted(self, arg: str):
        """Control operators, redirections, globs and comments are quoted."""
        assert quote_argument(arg) == f"'{arg}'"

    def test_embedded_single_quote(self):
        """Embedded single quotes use the close/quote/reopen sequence."""
        assert quote_argument("it's") == "'it'\"'\"'s'"

    def test_empty_argument(self):
        """The empty string is rendered as an empty quoted word."""
        assert quote_argument("") == "''"

    def test_needs_quoting(self):
        """needs_quoting matches the quoting rule."""
        assert needs_quoting("a b") is True
        assert needs_quoting("$x") is True
        assert needs_quoting("plain") is False
        assert needs_quoting("--flag=a.b,c:d/e@f%g+h") is False

    def test_escape_single_quotes(self):
        """Every single quote is replaced."""
        assert escape_single_quotes("a'b'c") == "a'\"'\"'b'\"'\"'c"


class TestBuildCommandLine:
    """Test command line assembly."""

    def test_no_args_returns_command_unchanged(self):
        """The command is returned as-is without arguments."""
        assert build_command_line("ls") == "ls"
        assert build_command_line("ls -la | wc -l", []) == "ls -la | wc -l"

    def test_args_joined_with_spaces(self):
        """Arguments are joined after the command with single spaces."""
        assert build_command_line("git", ["log", "--oneline", "-5"]) == "git log --oneline -5"

    def test_mixed_arguments(self):
        """Only arguments that need it are quoted."""
        line = build_command_line("echo", ["hello world", "plain", "it's"])
        assert line == "echo 'hello world' plain 'it'\"'\"'s'"

    def test_command_name_never_quoted(self):
        """The command name is passed through unmodified."""
        assert build_command_line("/usr/bin/my tool", ["x"]) == "/usr/bin/my tool x"

    @pytest.mark.parametrize(
        "args",
        [
            ["hello world"],
            ["it's", "a \"test\""],
            ["$HOME", "`uname`", "a\\b"],
            ["", "x", ""],
            ["multi\nline", "tab\there"],
            ["'", "''", "'\"'"],
        ],
    )
    def test_shell_round_trip(self, args: list[str]):
        """A POSIX shell parser recovers exactly the original arguments."""
        line = build_command_line("echo", args)
        assert shlex.split(line) == ["echo", *args]


class TestWorkingDirectoryPrefix:
    """Test the cd prefix."""

    def test_no_cwd(self):
        """No prefix without a working directory."""
        assert prefix_working_directory("ls", None) == "ls"
        assert prefix_working_directory("ls", "") == "ls"

    def test_cwd_prefix(self):
        """The directory is single-quoted and chained with &&."""
        assert prefix_working_directory("ls", "/tmp/my dir") == "cd '/tmp/my dir' && ls"

    def test_cwd_with_single_quote(self):
        """Single quotes in the directory are escaped."""
        line = prefix_working_directory("pwd", "/tmp/it's")
        assert shlex.split(line) == ["cd", "/tmp/it's", "&&", "pwd"]
