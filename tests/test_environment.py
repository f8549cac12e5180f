"""Child environment construction tests."""

from __future__ import annotations

import os

from shell_process_mcp.runtime.environment import (
    DEFAULT_PATH_PREFIX,
    EnvironmentProvider,
    build_child_environment,
    merge_path,
)


def _provider(**env: str) -> EnvironmentProvider:
    base = {"HOME": "/home/tester", "USER": "tester", "PATH": "/custom/bin:/usr/bin"}
    base.update(env)
    return EnvironmentProvider(base)


class TestEnvironmentProvider:
    """Test the parent environment source."""

    def test_current_returns_copy(self):
        provider = _provider()
        env = provider.current()
        env["NEW"] = "x"
        assert "NEW" not in provider.current()

    def test_home_and_user(self):
        provider = _provider()
        assert provider.home() == "/home/tester"
        assert provider.user() == "tester"

    def test_user_falls_back_to_logname(self):
        provider = EnvironmentProvider({"LOGNAME": "other"})
        assert provider.user() == "other"

    def test_defaults_to_os_environ(self):
        assert EnvironmentProvider().current() == dict(os.environ)


class TestMergePath:
    """Test PATH merging."""

    def test_order_and_dedup(self):
        assert merge_path(["/a", "/b"], ["/b", "/c"], ["/a", "", "/d"]) == os.pathsep.join(
            ["/a", "/b", "/c", "/d"]
        )

    def test_empty(self):
        assert merge_path([], [""]) == ""


class TestBuildChildEnvironment:
    """Test the merged child environment."""

    def test_default_prefix_before_inherited(self):
        """The curated prefix precedes inherited entries, with ~ expanded."""
        env = build_child_environment(_provider())
        entries = env["PATH"].split(os.pathsep)

        assert entries[0] == DEFAULT_PATH_PREFIX[0]
        assert "/home/tester/.local/bin" in entries
        assert entries.index("/home/tester/.local/bin") < entries.index("/custom/bin")
        # /usr/bin appears once even though both sources contain it
        assert entries.count("/usr/bin") == 1

    def test_env_paths_first(self):
        """Caller envPaths come before everything else."""
        env = build_child_environment(_provider(), env_paths=["/opt/tool/bin"])
        assert env["PATH"].split(os.pathsep)[0] == "/opt/tool/bin"

    def test_env_overrides_applied_last(self):
        """Caller env overrides win, including PATH."""
        env = build_child_environment(
            _provider(),
            env={"FOO": "bar", "PATH": "/only"},
        )
        assert env["FOO"] == "bar"
        assert env["PATH"] == "/only"

    def test_parent_variables_inherited(self):
        env = build_child_environment(_provider(EXTRA="1"))
        assert env["EXTRA"] == "1"
        assert env["HOME"] == "/home/tester"

    def test_custom_prefix(self):
        env = build_child_environment(_provider(), path_prefix=["~/bin"])
        assert env["PATH"].split(os.pathsep)[0] == "/home/tester/bin"
