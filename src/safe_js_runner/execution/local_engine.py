from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import AsyncIterator, Callable, Mapping

from ..errors import SandboxSpawnError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096


async def _iter_stream(reader: asyncio.StreamReader) -> AsyncIterator[bytes]:
    """Yield chunks from a stream reader until EOF.

    Example:
        ```python
        async for chunk in _iter_stream(process.stdout):
            print(chunk)
        ```
    """
    while True:
        chunk = await reader.read(CHUNK_SIZE)
        if not chunk:
            break
        yield chunk


class SubprocessHandle:
    """Adapt an asyncio subprocess to the SandboxProcess interface.

    Example:
        ```python
        handle = SubprocessHandle(await asyncio.create_subprocess_exec("node", "-v", stdout=PIPE))
        ```
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        on_kill: Callable[[], None] | None = None,
    ) -> None:
        """Wrap a started process.

        Example:
            ```python
            handle = SubprocessHandle(process, on_kill=lambda: print("killed"))
            ```
        """
        self._process = process
        self._on_kill = on_kill
        self._killed = False
        if process.stdout is None:
            raise ValueError("process must be started with stdout=PIPE")
        self._output = _iter_stream(process.stdout)
        self._stderr = _iter_stream(process.stderr) if process.stderr is not None else None

    @property
    def pid(self) -> int:
        """Host process id.

        Example:
            ```python
            print(handle.pid)
            ```
        """
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        """Exit code once the process has been reaped.

        Example:
            ```python
            done = handle.returncode is not None
            ```
        """
        return self._process.returncode

    @property
    def output(self) -> AsyncIterator[bytes]:
        """Stdout chunks.

        Example:
            ```python
            async for chunk in handle.output:
                print(chunk)
            ```
        """
        return self._output

    @property
    def stderr(self) -> AsyncIterator[bytes] | None:
        """Stderr chunks.

        Example:
            ```python
            stream = handle.stderr
            ```
        """
        return self._stderr

    async def wait(self) -> int:
        """Wait for exit and return the exit code.

        Example:
            ```python
            code = await handle.wait()
            ```
        """
        return await self._process.wait()

    def kill(self) -> None:
        """Send SIGKILL if the process is still running.

        Example:
            ```python
            handle.kill()
            ```
        """
        if self._process.returncode is None:
            try:
                self._process.kill()
            except ProcessLookupError:
                pass
        if not self._killed and self._on_kill is not None:
            self._killed = True
            self._on_kill()


class LocalNodeRuntime:
    """Run sandbox processes on the host, confined to a workspace directory.

    Example:
        ```python
        runtime = LocalNodeRuntime("/tmp/safe-js-runner-workspace")
        ```
    """

    name = "local"

    def __init__(self, workdir: str | Path, *, env: Mapping[str, str] | None = None) -> None:
        """Bind the runtime to a workspace directory.

        Example:
            ```python
            runtime = LocalNodeRuntime("/tmp/ws", env={"NODE_ENV": "production"})
            ```
        """
        cleaned = str(workdir).strip()
        if not cleaned:
            raise ValueError("LocalNodeRuntime requires a non-empty 'workdir'")
        self._workdir = Path(cleaned).expanduser().resolve()
        self._env = dict(env or {})

    @property
    def workdir(self) -> Path:
        """Absolute workspace directory.

        Example:
            ```python
            root = runtime.workdir
            ```
        """
        return self._workdir

    def resolve(self, path: str) -> Path:
        """Resolve a workspace-relative path, refusing escapes.

        Example:
            ```python
            target = runtime.resolve("src/index.cjs")
            ```
        """
        target = (self._workdir / path).resolve()
        if not target.is_relative_to(self._workdir):
            raise ValueError(f"Path escapes the sandbox workspace: {path}")
        return target

    async def write_file(self, path: str, content: str) -> None:
        """Write a text file into the workspace.

        Example:
            ```python
            await runtime.write_file("index.cjs", "console.log(1)")
            ```
        """
        target = self.resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_text, content, encoding="utf-8")

    async def read_file(self, path: str) -> str:
        """Read a text file from the workspace.

        Example:
            ```python
            text = await runtime.read_file("package.json")
            ```
        """
        target = self.resolve(path)
        return await asyncio.to_thread(target.read_text, encoding="utf-8")

    async def spawn(self, command: str, args: list[str]) -> SubprocessHandle:
        """Start a process in the workspace with piped output.

        Example:
            ```python
            process = await runtime.spawn("node", ["index.cjs"])
            ```
        """
        executable = shutil.which(command)
        if executable is None:
            raise SandboxSpawnError(f"'{command}' was not found. Install Node.js and ensure it is on PATH.")
        self._workdir.mkdir(parents=True, exist_ok=True)
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._workdir),
                env={**os.environ, **self._env},
            )
        except OSError as exc:
            raise SandboxSpawnError(f"Failed to start '{command}': {exc}") from exc
        logger.debug("Spawned %s %s (pid %s)", command, " ".join(args), process.pid)
        return SubprocessHandle(process)

    def check_available(self) -> tuple[bool, str | None]:
        """Report whether the workspace directory can be created.

        Example:
            ```python
            ok, reason = runtime.check_available()
            ```
        """
        try:
            self._workdir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            return False, f"Workspace {self._workdir} is not writable: {exc}"
        return True, None
