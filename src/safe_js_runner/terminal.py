from __future__ import annotations

import asyncio
import getpass
import logging
import shlex
import time
from dataclasses import dataclass
from datetime import datetime
from importlib import metadata
from typing import Any, Callable

from . import events as ev
from .errors import ConcurrentExecutionError, SandboxSpawnError
from .events import EventChannel
from .execution.engine import SandboxProcess, SandboxRuntime, pump_stream, reap_process
from .execution.types import now_ms

logger = logging.getLogger(__name__)

COMMAND_NOT_FOUND_EXIT_CODE = 127
USAGE_EXIT_CODE = 2
BUILTIN_COMMANDS = ("clear", "cls", "help", "pwd", "echo", "date", "whoami", "version")

HELP_TEXT = """Available commands:
  clear, cls   Clear the terminal
  help         Show this help
  pwd          Print the workspace directory
  echo TEXT    Print TEXT
  date         Print the current date and time
  whoami       Print the current user
  version      Print the safe-js-runner version
Any other command runs inside the sandbox (for example: node -v, npm list).
"""


def _package_version() -> str:
    """Installed distribution version of safe-js-runner.

    Example:
        ```python
        print(_package_version())
        ```
    """
    try:
        return metadata.version("safe-js-runner")
    except metadata.PackageNotFoundError:
        return "unknown"


def _current_user() -> str:
    """Login name of the host user, or `sandbox` when it cannot be determined.

    Example:
        ```python
        print(_current_user())
        ```
    """
    try:
        return getpass.getuser()
    except (OSError, KeyError):
        return "sandbox"


@dataclass(slots=True)
class CommandResult:
    """Outcome of one terminal command.

    Example:
        ```python
        result = CommandResult(command="pwd", exit_code=0, stdout="/workspace\\n", stderr="", success=True)
        ```
    """

    command: str
    exit_code: int
    stdout: str
    stderr: str
    success: bool
    builtin: bool = False
    execution_time_ms: float = 0.0


class CommandRunner:
    """Ad hoc shell-style commands with their own single-flight guard.

    Independent of ExecutionCoordinator: a running command never blocks code
    execution and vice versa.

    Example:
        ```python
        runner = CommandRunner(runtime, EventChannel())
        result = await runner.execute_command("node -v")
        ```
    """

    def __init__(
        self,
        runtime: SandboxRuntime,
        events: EventChannel | None = None,
        *,
        timeout_seconds: float = 300,
        kill_grace_seconds: float = 1.0,
    ) -> None:
        """Bind the runner to a runtime and event channel.

        Example:
            ```python
            runner = CommandRunner(runtime, events, timeout_seconds=60)
            ```
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if kill_grace_seconds <= 0:
            raise ValueError("kill_grace_seconds must be positive")
        self._runtime = runtime
        self._events = events or EventChannel()
        self._timeout_seconds = float(timeout_seconds)
        self._kill_grace_seconds = float(kill_grace_seconds)
        self._busy = False
        self._process: SandboxProcess | None = None
        self._builtins: dict[str, Callable[[list[str]], str]] = {
            "help": lambda _args: HELP_TEXT,
            "pwd": lambda _args: f"{getattr(self._runtime, 'workdir', '/')}\n",
            "echo": lambda args: " ".join(args) + "\n",
            "date": lambda _args: datetime.now().astimezone().strftime("%a %b %d %H:%M:%S %Z %Y") + "\n",
            "whoami": lambda _args: f"{_current_user()}\n",
            "version": lambda _args: f"safe-js-runner {_package_version()}\n",
        }

    @property
    def is_busy(self) -> bool:
        """Whether a command is running.

        Example:
            ```python
            assert not runner.is_busy
            ```
        """
        return self._busy

    @property
    def events(self) -> EventChannel:
        """Channel carrying terminal events.

        Example:
            ```python
            runner.events.subscribe("terminal:output", print)
            ```
        """
        return self._events

    async def execute_command(self, command_line: str) -> CommandResult:
        """Run a builtin or spawn the command through the sandbox runtime.

        Example:
            ```python
            result = await runner.execute_command("echo hello")
            ```
        """
        if self._busy:
            raise ConcurrentExecutionError("A terminal command is already running")
        line = command_line.strip()
        if not line:
            return CommandResult(command="", exit_code=0, stdout="", stderr="", success=True, builtin=True)

        self._busy = True
        started = time.perf_counter()
        try:
            try:
                parts = shlex.split(line)
            except ValueError as exc:
                return self._error(line, USAGE_EXIT_CODE, f"Parse error: {exc}", started)
            name, args = parts[0], parts[1:]
            if name in {"clear", "cls"}:
                self._events.emit(ev.TERMINAL_CLEAR, {"timestamp": now_ms()})
                return self._success(line, "", started, builtin=True)
            builtin = self._builtins.get(name)
            if builtin is not None:
                text = builtin(args)
                self._output("stdout", text)
                return self._success(line, text, started, builtin=True)
            return await self._spawn(line, name, args, started)
        finally:
            self._busy = False
            self._process = None
            self._events.emit(ev.TERMINAL_READY, {"timestamp": now_ms()})

    async def stop(self) -> bool:
        """Kill the running command, if any.

        Example:
            ```python
            stopped = await runner.stop()
            ```
        """
        if self._process is None:
            return False
        try:
            self._process.kill()
        except OSError as exc:
            logger.warning("Failed to kill terminal command: %s", exc)
        return True

    async def _spawn(self, line: str, name: str, args: list[str], started: float) -> CommandResult:
        """Run a non-builtin command and stream its output.

        Example:
            ```python
            result = await runner._spawn("node -v", "node", ["-v"], time.perf_counter())
            ```
        """
        try:
            process = await self._runtime.spawn(name, args)
        except (SandboxSpawnError, OSError) as exc:
            return self._error(line, COMMAND_NOT_FOUND_EXIT_CODE, str(exc), started)
        self._process = process
        stdout: list[bytes] = []
        stderr: list[bytes] = []

        def _collector(kind: str, sink: list[bytes]) -> Callable[[bytes], None]:
            """Build a chunk callback for one stream.

            Example:
                ```python
                callback = _collector("stdout", [])
                ```
            """

            def _collect(chunk: bytes) -> None:
                """Keep and forward one chunk.

                Example:
                    ```python
                    _collect(b"v22.0.0\\n")
                    ```
                """
                sink.append(chunk)
                self._output(kind, chunk.decode("utf-8", errors="replace"))

            return _collect

        exit_code: int | None = None
        try:
            async with asyncio.timeout(self._timeout_seconds):
                await asyncio.gather(
                    pump_stream(process.output, _collector("stdout", stdout)),
                    pump_stream(process.stderr, _collector("stderr", stderr)),
                )
                exit_code = await process.wait()
        except TimeoutError:
            return self._error(line, 124, f"Command timed out after {self._timeout_seconds:g}s", started)
        finally:
            # timed out or cancelled
            if exit_code is None:
                process.kill()
                await reap_process(process, self._kill_grace_seconds)

        out = b"".join(stdout).decode("utf-8", errors="replace")
        err = b"".join(stderr).decode("utf-8", errors="replace")
        if exit_code != 0:
            result = CommandResult(line, exit_code, out, err, False, execution_time_ms=_elapsed_ms(started))
            self._events.emit(ev.TERMINAL_COMMAND_ERROR, _payload(result))
            return result
        return self._success(line, out, started, stderr=err)

    def _output(self, kind: str, data: str) -> None:
        """Emit one chunk of terminal output.

        Example:
            ```python
            runner._output("stdout", "hello\\n")
            ```
        """
        self._events.emit(ev.TERMINAL_OUTPUT, {"type": kind, "data": data, "timestamp": now_ms()})

    def _success(
        self,
        line: str,
        stdout: str,
        started: float,
        *,
        stderr: str = "",
        builtin: bool = False,
    ) -> CommandResult:
        """Build and announce a successful result.

        Example:
            ```python
            result = runner._success("pwd", "/ws\\n", time.perf_counter(), builtin=True)
            ```
        """
        result = CommandResult(line, 0, stdout, stderr, True, builtin, _elapsed_ms(started))
        self._events.emit(ev.TERMINAL_COMMAND_SUCCESS, _payload(result))
        return result

    def _error(self, line: str, exit_code: int, message: str, started: float) -> CommandResult:
        """Build and announce a failed result.

        Example:
            ```python
            result = runner._error("nope", 127, "'nope' was not found", time.perf_counter())
            ```
        """
        logger.warning("Terminal command failed: %s", message)
        self._output("stderr", f"{message}\n")
        result = CommandResult(line, exit_code, "", message, False, execution_time_ms=_elapsed_ms(started))
        self._events.emit(ev.TERMINAL_COMMAND_ERROR, _payload(result))
        return result


def _elapsed_ms(started: float) -> float:
    """Milliseconds since a perf_counter reading.

    Example:
        ```python
        ms = _elapsed_ms(time.perf_counter())
        ```
    """
    return (time.perf_counter() - started) * 1000.0


def _payload(result: CommandResult) -> dict[str, Any]:
    """Event payload for a finished command.

    Example:
        ```python
        payload = _payload(result)
        ```
    """
    return {
        "command": result.command,
        "exit_code": result.exit_code,
        "success": result.success,
        "execution_time_ms": result.execution_time_ms,
        "timestamp": now_ms(),
    }
