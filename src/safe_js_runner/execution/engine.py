from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Protocol

logger = logging.getLogger(__name__)


class SandboxProcess(Protocol):
    @property
    def output(self) -> AsyncIterator[bytes]:
        """Ordered stdout chunks until the stream closes.

        Example:
            ```python
            async for chunk in process.output:
                print(chunk)
            ```
        """
        ...

    @property
    def stderr(self) -> AsyncIterator[bytes] | None:
        """Ordered stderr chunks, or None when the runtime merges streams.

        Example:
            ```python
            if process.stderr is not None:
                async for chunk in process.stderr:
                    print(chunk)
            ```
        """
        ...

    async def wait(self) -> int:
        """Wait for exit and return the exit code.

        Example:
            ```python
            code = await process.wait()
            ```
        """
        ...

    def kill(self) -> None:
        """Forcibly terminate the process. Safe to call more than once.

        Example:
            ```python
            process.kill()
            ```
        """
        ...


class SandboxRuntime(Protocol):
    async def write_file(self, path: str, content: str) -> None:
        """Write a text file inside the sandbox workspace.

        Example:
            ```python
            await runtime.write_file("index.cjs", "console.log(1)")
            ```
        """
        ...

    async def read_file(self, path: str) -> str:
        """Read a text file from the sandbox workspace.

        Example:
            ```python
            text = await runtime.read_file("package.json")
            ```
        """
        ...

    async def spawn(self, command: str, args: list[str]) -> SandboxProcess:
        """Start a process inside the sandbox.

        Example:
            ```python
            process = await runtime.spawn("node", ["index.cjs"])
            ```
        """
        ...


async def pump_stream(
    stream: AsyncIterator[bytes] | None,
    on_chunk: Callable[[bytes], None],
) -> None:
    """Feed every chunk of a process stream to a callback until EOF.

    Example:
        ```python
        await pump_stream(process.output, chunks.append)
        ```
    """
    if stream is None:
        return
    async for chunk in stream:
        on_chunk(chunk)


async def reap_process(process: SandboxProcess, grace_seconds: float) -> int | None:
    """Wait a bounded time for a killed process to exit.

    Returns the exit code, or None if the process outlived the grace period.

    Example:
        ```python
        process.kill()
        code = await reap_process(process, 1.0)
        ```
    """
    try:
        async with asyncio.timeout(grace_seconds):
            return await process.wait()
    except TimeoutError:
        logger.warning("Process did not exit within %.1fs of being killed", grace_seconds)
        return None
