"""
CommandRunner service - Runs external CLI tools.

Single responsibility: invoke a command with an explicit environment and
report its exit status and output.
"""

import logging
import subprocess
import threading
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from domain.errors import ToolError


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of one command."""

    command: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """
    Service for running external commands through ``subprocess``.

    A missing executable or an expired timeout raises ToolError; a
    non-zero exit is returned as a CommandResult for the caller to judge.

    Running processes are tracked per thread so that ``cancel`` can stop
    the work of an aborted stage without affecting other threads.
    """

    def __init__(self, cwd: Optional[str] = None, default_timeout: int = 600):
        """
        Initialize command runner.

        Args:
            cwd: Working directory for every command
            default_timeout: Timeout in seconds when the caller gives none
        """
        self.cwd = cwd
        self.default_timeout = default_timeout
        self.logger = logging.getLogger(self.__class__.__name__)
        self._lock = threading.Lock()
        self._processes: dict[threading.Thread, subprocess.Popen] = {}
        self._cancelled: set[threading.Thread] = set()

    def run(
        self,
        command: Sequence[str],
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[int] = None,
        input_text: Optional[str] = None,
    ) -> CommandResult:
        """
        Run a command and capture its output.

        Args:
            command: Executable and arguments
            env: Full environment for the child process, inherited when None
            timeout: Seconds before the command is killed
            input_text: Text written to the command's stdin

        Returns:
            CommandResult with exit code and output

        Raises:
            ToolError: If the executable is missing, the command times out
                or the calling thread was cancelled
        """
        cmd = [str(part) for part in command]
        timeout = timeout or self.default_timeout
        thread = threading.current_thread()
        self.logger.debug(f"Running: {' '.join(cmd)}")

        with self._lock:
            if thread in self._cancelled:
                raise ToolError(cmd, "cancelled")
            try:
                process = subprocess.Popen(
                    cmd,
                    cwd=self.cwd,
                    env=dict(env) if env is not None else None,
                    stdin=subprocess.PIPE if input_text is not None else None,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                )
            except FileNotFoundError:
                raise ToolError(cmd, "executable not found")
            self._processes[thread] = process

        try:
            stdout, stderr = process.communicate(input=input_text, timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
            raise ToolError(cmd, f"timed out after {timeout}s")
        finally:
            with self._lock:
                self._processes.pop(thread, None)
                cancelled = thread in self._cancelled

        if cancelled:
            raise ToolError(cmd, "cancelled")

        result = CommandResult(
            command=tuple(cmd),
            returncode=process.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
        )
        if not result.ok:
            self.logger.debug(f"{cmd[0]} exited with rc={result.returncode}: {result.stderr.strip()}")
        return result

    def check(
        self,
        command: Sequence[str],
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[int] = None,
        input_text: Optional[str] = None,
    ) -> CommandResult:
        """Run a command and raise ToolError on a non-zero exit."""
        result = self.run(command, env=env, timeout=timeout, input_text=input_text)
        if not result.ok:
            detail = (result.stderr or result.stdout).strip().splitlines()
            message = detail[-1] if detail else "no output"
            raise ToolError(list(result.command), f"exit code {result.returncode}: {message}", result.returncode)
        return result

    def cancel(self, thread: threading.Thread):
        """
        Stop the command running on ``thread`` and refuse any later ones.

        Used when a stage is aborted: the stage's thread cannot be killed,
        but the tool it is waiting on can.
        """
        with self._lock:
            self._cancelled.add(thread)
            process = self._processes.get(thread)

        if process is not None and process.poll() is None:
            self.logger.warning(f"Terminating command running on thread '{thread.name}'")
            process.terminate()
