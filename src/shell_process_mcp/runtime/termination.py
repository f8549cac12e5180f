"""Signal delivery and reliable termination of child processes.

shell-process-mcp runtime v0.1.0

Children are started in their own session/process group, so every signal
goes to the whole group: the shell and whatever it forked for the command
line. Without this, killing only the shell would leave e.g. ``sleep``
holding the output pipes open.

Termination strategy (graceful, then forced):
1. SIGTERM to the process group (CTRL_BREAK_EVENT on Windows)
2. Wait up to term_timeout for exit
3. SIGKILL to the process group (TerminateProcess on Windows)
4. Wait up to kill_timeout for exit
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from dataclasses import dataclass
from typing import Any

__all__ = [
    "IS_WINDOWS",
    "DEFAULT_TERM_TIMEOUT",
    "DEFAULT_KILL_TIMEOUT",
    "ProcessTerminator",
    "isolation_kwargs",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL


def isolation_kwargs() -> dict[str, Any]:
    """Build platform-specific subprocess kwargs for group isolation.

    Returns:
        Dict of kwargs for asyncio.create_subprocess_exec
    """
    if IS_WINDOWS:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


@dataclass
class ProcessTerminator:
    """Delivers signals to child process groups and escalates termination."""

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT

    def send_signal(self, process: asyncio.subprocess.Process, sig: int) -> None:
        """Send ``sig`` to the child's process group.

        Falls back to signalling the child alone when the group cannot be
        resolved.

        Args:
            process: The subprocess
            sig: Signal number

        Raises:
            ProcessLookupError: The process no longer exists
            OSError: Delivery failed (e.g. invalid signal, permission)
            ValueError: Invalid signal number
        """
        if IS_WINDOWS:
            self._windows_signal(process, sig)
            return

        try:
            pgid = os.getpgid(process.pid)
        except ProcessLookupError:
            raise
        except OSError as e:
            logger.debug(f"getpgid failed, signalling pid={process.pid} only: {e}")
            os.kill(process.pid, sig)
            return

        if pgid == os.getpgid(0):
            # Never signal our own group
            os.kill(process.pid, sig)
        else:
            os.killpg(pgid, sig)
        logger.debug(f"Sent signal {sig} to process group pgid={pgid}")

    def request_termination(self, process: asyncio.subprocess.Process) -> bool:
        """Send one graceful termination request without waiting.

        Returns:
            False if the process was already gone
        """
        if process.returncode is not None:
            return False
        try:
            self.send_signal(process, signal.SIGTERM)
        except ProcessLookupError:
            return False
        except OSError as e:
            logger.debug(f"Group SIGTERM failed, falling back to terminate: {e}")
            try:
                process.terminate()
            except ProcessLookupError:
                return False
        return True

    async def terminate(self, process: asyncio.subprocess.Process) -> None:
        """Terminate subprocess gracefully, then forcefully if needed.

        Args:
            process: The subprocess to terminate
        """
        pid = process.pid
        if process.returncode is not None:
            return

        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            # Step 1: Graceful termination
            if not self.request_termination(process):
                return

            # Step 2: Wait for graceful exit
            try:
                await asyncio.wait_for(process.wait(), timeout=self.term_timeout)
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return
            except asyncio.TimeoutError:
                pass

            # Step 3: Force kill
            logger.debug(f"Force killing subprocess pid={pid}")
            self.force_kill(process)

            # Step 4: Wait for forced exit
            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={process.returncode}"
                )
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except OSError as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    def force_kill(self, process: asyncio.subprocess.Process) -> None:
        """Send SIGKILL to the process group (kill() on Windows)."""
        if process.returncode is not None:
            return
        if IS_WINDOWS:
            try:
                process.kill()
                logger.debug(f"Called kill() on pid={process.pid}")
            except ProcessLookupError:
                pass
            return
        try:
            self.send_signal(process, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            process.kill()

    def _windows_signal(self, process: asyncio.subprocess.Process, sig: int) -> None:
        """Map POSIX-style termination signals onto Windows primitives."""
        if sig in (signal.SIGTERM, signal.SIGINT):
            try:
                os.kill(process.pid, signal.CTRL_BREAK_EVENT)
                logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
            except OSError as e:
                logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
                process.terminate()
        else:
            process.send_signal(sig)
