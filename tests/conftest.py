from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator

import pytest

from safe_js_runner import SandboxSpawnError


@dataclass
class _Script:
    stdout: list[bytes] = field(default_factory=list)
    stderr: list[bytes] = field(default_factory=list)
    exit_code: int = 0
    hang: bool = False


class FakeProcess:
    """Scripted sandbox process; a hanging one runs until killed."""

    def __init__(self, script: _Script) -> None:
        self.script = script
        self.killed = False
        self.kill_calls = 0
        self.reaped = False
        self._killed_event = asyncio.Event()

    async def _stream(self, chunks: list[bytes]) -> AsyncIterator[bytes]:
        for chunk in chunks:
            await asyncio.sleep(0)
            yield chunk
        if self.script.hang:
            await self._killed_event.wait()

    @property
    def output(self) -> AsyncIterator[bytes]:
        return self._stream(self.script.stdout)

    @property
    def stderr(self) -> AsyncIterator[bytes]:
        return self._stream(self.script.stderr)

    async def wait(self) -> int:
        if self.script.hang:
            await self._killed_event.wait()
            self.reaped = True
            return -9
        await asyncio.sleep(0)
        return self.script.exit_code

    def kill(self) -> None:
        self.kill_calls += 1
        self.killed = True
        self._killed_event.set()


class FakeRuntime:
    """In-memory sandbox runtime that replays queued process scripts."""

    name = "fake"

    def __init__(self) -> None:
        self.workdir = "/workspace"
        self.files: dict[str, str] = {}
        self.spawned: list[tuple[str, list[str]]] = []
        self.processes: list[FakeProcess] = []
        self.available: tuple[bool, str | None] = (True, None)
        self.spawn_error: Exception | None = None
        self.availability_checks = 0
        self._scripts: list[_Script] = []

    def queue(
        self,
        stdout: list[bytes] | None = None,
        *,
        stderr: list[bytes] | None = None,
        exit_code: int = 0,
        hang: bool = False,
    ) -> None:
        self._scripts.append(_Script(list(stdout or []), list(stderr or []), exit_code, hang))

    def check_available(self) -> tuple[bool, str | None]:
        self.availability_checks += 1
        return self.available

    async def write_file(self, path: str, content: str) -> None:
        self.files[path] = content

    async def read_file(self, path: str) -> str:
        return self.files[path]

    async def spawn(self, command: str, args: list[str]) -> FakeProcess:
        self.spawned.append((command, list(args)))
        if self.spawn_error is not None:
            raise self.spawn_error
        script = self._scripts.pop(0) if self._scripts else _Script()
        process = FakeProcess(script)
        self.processes.append(process)
        return process


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def missing_node(runtime: FakeRuntime) -> FakeRuntime:
    runtime.spawn_error = SandboxSpawnError("Command 'node' was not found in the sandbox")
    return runtime
