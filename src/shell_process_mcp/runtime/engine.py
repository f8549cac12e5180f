"""Process execution engine.

shell-process-mcp runtime v0.1.0

This module provides:
- Allow-list and working directory validation before anything is spawned
- Shell command construction with safe argument quoting
- Concurrent stdout/stderr streaming with incremental event delivery
- Timeout-triggered termination
- A single reconciliation routine shared by natural exit, timeout and kill

Execution states:
    Validating -> Spawning -> Running -> Terminating -> Reconciled

Key design points:
- Every execution is supervised by its own asyncio task; ``execute()``
  awaits it through asyncio.shield so a cancelled caller never skips
  reconciliation
- The deadline and ``kill()`` only *request* termination; the supervising
  task observes the exit and reconciles exactly once (once-guard)
- Registry entries are removed only inside reconciliation
- Output is decoded with an incremental UTF-8 decoder, so multi-byte
  sequences split across reads are reassembled; invalid bytes become U+FFFD
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..config import Config, get_config
from .command import build_command_line, prefix_working_directory
from .environment import DEFAULT_PATH_PREFIX, EnvironmentProvider, build_child_environment
from .errors import (
    ForbiddenError,
    KillError,
    NoProcessError,
    ProcessExecutionError,
    SpawnError,
    WorkingDirectoryError,
)
from .events import EventBus, ExitEvent, OutputEvent, ProcessEvent, StartEvent, TimeoutEvent
from .guard import DEFAULT_ALLOWED_COMMANDS, AllowList
from .registry import ProcessRegistry, TrackedProcess
from .termination import ProcessTerminator, isolation_kwargs
from .types import ExecOptions, ExecResult

__all__ = [
    "CHUNK_SIZE",
    "ProcessEngine",
]

logger = logging.getLogger(__name__)

# Bytes per read on each output stream
CHUNK_SIZE = 4096


@dataclass
class _Execution:
    """Per-execution state, owned by the supervising task."""

    tracked: TrackedProcess
    timeout: float | None = None
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    timed_out: bool = False
    terminal_phase_entered: bool = False

    def enter_terminal_phase(self) -> bool:
        """Return True exactly once; later callers must not reconcile."""
        if self.terminal_phase_entered:
            return False
        self.terminal_phase_entered = True
        return True

    def event_fields(self) -> dict[str, Any]:
        tracked = self.tracked
        return {
            "pid": tracked.pid,
            "command": tracked.command_line,
            "identifier": tracked.identifier,
            "cwd": tracked.cwd,
        }


class ProcessEngine:
    """Spawns shell commands, streams their output and reconciles their exit.

    Example:
        engine = ProcessEngine()
        engine.events.subscribe("stdout", lambda e: print(e.data, end=""))

        result = await engine.execute(
            "git", ["log", "--oneline", "-5"],
            ExecOptions(cwd="/workspace", timeout=30, identifier="log-1"),
        )

        pids = engine.list_running()
        await engine.kill(pids[0], signal.SIGTERM)
    """

    def __init__(
        self,
        *,
        config: Config | None = None,
        allow_list: AllowList | None = None,
        events: EventBus | None = None,
        registry: ProcessRegistry | None = None,
        environment: EnvironmentProvider | None = None,
        terminator: ProcessTerminator | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Configuration (defaults to the global config)
            allow_list: Command allow-list (defaults to config.allowed_commands)
            events: Event sink (a new EventBus by default)
            registry: Process registry (a new one by default)
            environment: Parent environment provider
            terminator: Signal delivery / termination strategy
        """
        config = config or get_config()
        self.config = config
        if allow_list is None:
            base = DEFAULT_ALLOWED_COMMANDS if config.allowed_commands is None else config.allowed_commands
            allow_list = AllowList(set(base) | set(config.extra_allowed_commands))
        self.allow_list = allow_list
        self.events = events or EventBus()
        self.registry = registry or ProcessRegistry()
        self.environment = environment or EnvironmentProvider()
        self.terminator = terminator or ProcessTerminator(
            term_timeout=config.term_timeout,
            kill_timeout=config.kill_timeout,
        )
        self.shell = config.shell
        self.shell_flag = "-lc" if config.login_shell else "-c"
        self.path_prefix = (
            DEFAULT_PATH_PREFIX if config.path_prefix is None else tuple(config.path_prefix)
        )
        self.drain_timeout = config.drain_timeout

    # =========================================================================
    # Public operations
    # =========================================================================

    async def execute(
        self,
        command: str,
        args: Sequence[str] = (),
        options: ExecOptions | Mapping[str, Any] | None = None,
    ) -> ExecResult:
        """Run ``command`` with ``args`` through the shell.

        Args:
            command: Command name or path
            args: Ordered arguments, quoted for the shell
            options: ExecOptions or a host-style options mapping

        Returns:
            ExecResult for a zero exit code

        Raises:
            ForbiddenError: Command rejected by the allow-list
            WorkingDirectoryError: cwd missing or not a directory
            SpawnError: The shell could not be started
            ProcessExecutionError: Non-zero exit; carries the ExecResult
        """
        opts = options if isinstance(options, ExecOptions) else ExecOptions.from_mapping(options)

        # Validating
        decision = self.allow_list.check(command, allow_unsafe=opts.allow_unsafe)
        if not decision:
            logger.info(f"Rejected command: {decision.reason}")
            raise ForbiddenError(command, decision.reason)

        cwd = opts.cwd or None
        if cwd is not None and not os.path.isdir(cwd):
            raise WorkingDirectoryError(cwd)

        # Spawning
        command_line = build_command_line(command, [str(a) for a in args])
        tracked = await self._spawn(command_line, cwd, opts)

        # Running
        execution = _Execution(tracked, opts.timeout if opts.has_timeout else None)
        self._emit(StartEvent(**execution.event_fields()))

        task = asyncio.create_task(
            self._supervise(execution),
            name=f"spm-exec-{tracked.pid}",
        )
        try:
            result = await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                logger.info(f"execute() cancelled, terminating pid={tracked.pid}")
                await asyncio.shield(self.terminator.terminate(tracked.handle))
            raise

        if not result.ok:
            raise ProcessExecutionError(result)
        return result

    async def execute_command(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: str | None = None,
    ) -> ExecResult:
        """Shorthand for ``execute(command, args, ExecOptions(cwd=cwd))``."""
        return await self.execute(command, args, ExecOptions(cwd=cwd))

    async def kill(self, pid: int, sig: int = signal.SIGTERM) -> dict[str, bool]:
        """Send ``sig`` to a tracked process and wait for its reconciliation.

        After the requested signal a graceful termination request follows;
        if the process is still registered after term_timeout it is
        force-killed. Removal from the registry and the ``exit`` event happen
        in the shared reconciliation routine.

        Args:
            pid: Tracked process id
            sig: Signal number (default SIGTERM)

        Returns:
            ``{"success": True}``

        Raises:
            NoProcessError: pid is not tracked
            KillError: The signal could not be delivered
        """
        tracked = self.registry.lookup(pid)
        if tracked is None:
            raise NoProcessError(pid)

        handle = tracked.handle
        if handle.returncode is None:
            try:
                tracked.kill_signal = int(sig)
                self.terminator.send_signal(handle, tracked.kill_signal)
            except ProcessLookupError:
                logger.debug(f"Process already gone before signal pid={pid}")
            except (OSError, ValueError, TypeError, OverflowError) as e:
                tracked.kill_signal = None
                logger.warning(f"Failed to deliver signal {sig} to pid={pid}: {e}")
                raise KillError(pid, e) from e
            self.terminator.request_termination(handle)
            logger.info(f"Kill requested pid={pid} signal={sig}")

        if not await self._wait_reconciled(tracked, self.terminator.term_timeout):
            logger.debug(f"Process still registered after SIGTERM, force killing pid={pid}")
            self.terminator.force_kill(handle)
            if not await self._wait_reconciled(
                tracked, self.terminator.kill_timeout + self.drain_timeout
            ):
                logger.warning(f"Process not reconciled after kill pid={pid}")

        return {"success": True}

    def list_running(self) -> list[int]:
        """Snapshot of tracked pids (no liveness guarantee)."""
        return sorted(self.registry.snapshot_keys())

    async def terminate_all(self) -> int:
        """Terminate every tracked process.

        Returns:
            Number of processes a termination was requested for
        """
        processes = self.registry.values()
        if not processes:
            return 0
        logger.info(f"Terminating {len(processes)} running process(es)")
        await asyncio.gather(
            *(self.terminator.terminate(p.handle) for p in processes),
            return_exceptions=True,
        )
        return len(processes)

    def has_running(self) -> bool:
        return len(self.registry) > 0

    # =========================================================================
    # Spawning
    # =========================================================================

    async def _spawn(
        self,
        command_line: str,
        cwd: str | None,
        opts: ExecOptions,
    ) -> TrackedProcess:
        shell_line = prefix_working_directory(command_line, cwd)
        env = build_child_environment(
            self.environment,
            path_prefix=self.path_prefix,
            env_paths=opts.env_paths,
            env=opts.env,
        )

        try:
            # stdin=DEVNULL: never hand the host's stdin (the MCP channel) to a child
            handle = await asyncio.create_subprocess_exec(
                self.shell,
                self.shell_flag,
                shell_line,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
                **isolation_kwargs(),
            )
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to spawn {self.shell} for {command_line!r}: {e}")
            raise SpawnError(command_line, e) from e

        tracked = TrackedProcess(
            pid=handle.pid,
            handle=handle,
            command_line=command_line,
            cwd=cwd,
            identifier=opts.identifier,
        )
        try:
            self.registry.insert(tracked)
        except ValueError as e:
            # Stale entry for a recycled pid; the new child cannot be tracked
            await self.terminator.terminate(handle)
            raise SpawnError(command_line, e) from e

        logger.debug(
            f"Started subprocess pid={handle.pid} "
            f"command={command_line!r} cwd={cwd} identifier={opts.identifier}"
        )
        return tracked

    # =========================================================================
    # Running / Terminating
    # =========================================================================

    async def _supervise(self, execution: _Execution) -> ExecResult:
        """Own one execution from spawn to reconciliation."""
        handle = execution.tracked.handle
        readers = [
            asyncio.create_task(self._pump(execution, handle.stdout, "stdout")),
            asyncio.create_task(self._pump(execution, handle.stderr, "stderr")),
        ]
        deadline: asyncio.Task[None] | None = None
        if execution.timeout is not None:
            deadline = asyncio.create_task(self._deadline(execution))

        try:
            await handle.wait()
            await self._drain(readers, deadline)
        except asyncio.CancelledError:
            # Event loop teardown: kill the group and still deregister
            self.terminator.force_kill(handle)
            self._cancel_tasks(readers, deadline)
            code = handle.returncode if handle.returncode is not None else -signal.SIGKILL
            self._finalize(execution, code)
            raise

        result = self._finalize(execution, handle.returncode)
        assert result is not None
        return result

    async def _pump(
        self,
        execution: _Execution,
        stream: asyncio.StreamReader | None,
        name: str,
    ) -> None:
        """Read one output stream until EOF, publishing decoded chunks."""
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(CHUNK_SIZE)
            if not chunk:
                break
            self._publish(execution, name, decoder.decode(chunk))
        self._publish(execution, name, decoder.decode(b"", final=True))

    def _publish(self, execution: _Execution, name: str, text: str) -> None:
        if not text or execution.terminal_phase_entered:
            return
        accumulator = execution.stdout if name == "stdout" else execution.stderr
        accumulator.append(text)
        self._emit(OutputEvent(type=name, data=text, **execution.event_fields()))

    async def _deadline(self, execution: _Execution) -> None:
        """Request termination once the timeout elapses."""
        assert execution.timeout is not None
        await asyncio.sleep(execution.timeout)

        handle = execution.tracked.handle
        if handle.returncode is not None or execution.terminal_phase_entered:
            return

        execution.timed_out = True
        logger.info(
            f"Process timed out after {execution.timeout:g}s pid={handle.pid}, terminating"
        )
        await self.terminator.terminate(handle)

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def _drain(
        self,
        readers: list[asyncio.Task[None]],
        deadline: asyncio.Task[None] | None,
    ) -> None:
        """Cancel the pending deadline and flush remaining output.

        Readers get drain_timeout to reach EOF; a grandchild that inherited
        the pipes can keep them open, in which case the readers are dropped.
        """
        if deadline is not None and not deadline.done():
            deadline.cancel()

        _, pending = await asyncio.wait(readers, timeout=self.drain_timeout)
        if pending:
            logger.debug(f"Output still open after {self.drain_timeout}s, detaching readers")
        self._cancel_tasks(readers, None)
        await asyncio.gather(*readers, return_exceptions=True)
        if deadline is not None:
            await asyncio.gather(deadline, return_exceptions=True)

    @staticmethod
    def _cancel_tasks(
        readers: list[asyncio.Task[None]],
        deadline: asyncio.Task[None] | None,
    ) -> None:
        for task in [*readers, deadline]:
            if task is not None and not task.done():
                task.cancel()

    def _finalize(self, execution: _Execution, code: int) -> ExecResult | None:
        """Deregister, emit the terminal event and build the result (once)."""
        if not execution.enter_terminal_phase():
            return None

        tracked = execution.tracked
        self.registry.remove(tracked.pid)

        stdout = "".join(execution.stdout)
        result = ExecResult(
            pid=tracked.pid,
            code=code,
            stdout=stdout,
            stderr="".join(execution.stderr),
            cwd=tracked.cwd,
            command=tracked.command_line,
            identifier=tracked.identifier,
            timed_out=execution.timed_out,
            signal=-code if code < 0 else None,
        )

        fields = execution.event_fields()
        if execution.timed_out:
            self._emit(TimeoutEvent(
                data=f"Process timed out after {execution.timeout:g}s",
                **fields,
            ))
        else:
            self._emit(ExitEvent(code=code, stdout=stdout, **fields))

        tracked.reconciled.set()
        logger.debug(
            f"Reconciled pid={tracked.pid} code={code} "
            f"timed_out={execution.timed_out} kill_signal={tracked.kill_signal}"
        )
        return result

    async def _wait_reconciled(self, tracked: TrackedProcess, timeout: float) -> bool:
        try:
            await asyncio.wait_for(tracked.reconciled.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def _emit(self, event: ProcessEvent) -> None:
        self.events.emit(event)
