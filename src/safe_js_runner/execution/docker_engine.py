from __future__ import annotations

import asyncio
import logging
import os
import shutil
import subprocess
import uuid
from pathlib import Path
from typing import Mapping

from ..errors import SandboxSpawnError
from .config import CONTAINER_WORKDIR, MANAGED_LABELS_BASE, DockerRuntimeSettings
from .local_engine import LocalNodeRuntime, SubprocessHandle

logger = logging.getLogger(__name__)

_INSTALL_COMMANDS = frozenset({"npm", "npx"})


def docker_is_available(*, docker_env: Mapping[str, str], docker_context: str | None) -> tuple[bool, str | None]:
    """Check Docker CLI and daemon accessibility for the selected target.

    Example:
        ```python
        ok, reason = docker_is_available(docker_env=os.environ, docker_context=None)
        ```
    """
    if shutil.which("docker") is None:
        return False, "Docker CLI was not found. Install Docker and ensure it is on PATH."
    cmd = ["docker"]
    if docker_context:
        cmd.extend(["--context", docker_context])
    cmd.append("info")
    probe = subprocess.run(cmd, capture_output=True, text=True, check=False, env=dict(docker_env))
    if probe.returncode != 0:
        return False, "Docker is installed but the daemon is not running or not accessible."
    return True, None


class DockerNodeRuntime:
    """Run each process in a throw-away, locked-down Node.js container.

    The host workspace is bind-mounted at /workspace, so file operations go
    straight to the host directory.

    Example:
        ```python
        runtime = DockerNodeRuntime("/tmp/ws", settings=DockerRuntimeSettings(memory_limit_mb=512))
        ```
    """

    name = "docker"

    def __init__(self, workdir: str | Path, *, settings: DockerRuntimeSettings | None = None) -> None:
        """Bind the runtime to a host workspace and container settings.

        Example:
            ```python
            runtime = DockerNodeRuntime("/tmp/ws")
            ```
        """
        self._files = LocalNodeRuntime(workdir)
        self._settings = settings or DockerRuntimeSettings()
        self._cleanup_tasks: set[asyncio.Task[None]] = set()

    @property
    def workdir(self) -> Path:
        """Host side of the mounted workspace.

        Example:
            ```python
            root = runtime.workdir
            ```
        """
        return self._files.workdir

    @property
    def settings(self) -> DockerRuntimeSettings:
        """Container settings in effect.

        Example:
            ```python
            image = runtime.settings.image
            ```
        """
        return self._settings

    async def write_file(self, path: str, content: str) -> None:
        """Write a text file into the mounted workspace.

        Example:
            ```python
            await runtime.write_file("index.cjs", "console.log(1)")
            ```
        """
        await self._files.write_file(path, content)

    async def read_file(self, path: str) -> str:
        """Read a text file from the mounted workspace.

        Example:
            ```python
            text = await runtime.read_file("package.json")
            ```
        """
        return await self._files.read_file(path)

    def run_args(self, container_name: str, command: str, args: list[str]) -> list[str]:
        """Full `docker run` argv for one process.

        Example:
            ```python
            argv = runtime.run_args("sjr-abc", "node", ["index.cjs"])
            ```
        """
        s = self._settings
        network = s.install_network if command in _INSTALL_COMMANDS else s.network
        run = [
            "run",
            "--rm",
            "-i",
            "--name",
            container_name,
        ]
        for key, value in MANAGED_LABELS_BASE.items():
            run.extend(["--label", f"{key}={value}"])
        run.extend(
            [
                "--network",
                network,
                "--read-only",
                "--cap-drop",
                "ALL",
                "--security-opt",
                "no-new-privileges",
                "--pids-limit",
                str(s.pids_limit),
                "--memory",
                f"{s.memory_limit_mb}m",
                "--tmpfs",
                f"/tmp:rw,nosuid,size={s.tmpfs_size_mb}m",
                "-e",
                "HOME=/tmp",
                "-v",
                f"{self.workdir}:{CONTAINER_WORKDIR}",
                "-w",
                CONTAINER_WORKDIR,
            ]
        )
        if hasattr(os, "getuid"):
            run.extend(["--user", f"{os.getuid()}:{os.getgid()}"])
        run.extend([s.image, command, *args])
        return self._docker_cmd(run)

    async def spawn(self, command: str, args: list[str]) -> SubprocessHandle:
        """Start `command args` in a fresh container.

        Example:
            ```python
            process = await runtime.spawn("node", ["index.cjs"])
            ```
        """
        self.workdir.mkdir(parents=True, exist_ok=True)
        container_name = f"sjr-{uuid.uuid4().hex[:12]}"
        argv = self.run_args(container_name, command, args)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SandboxSpawnError(f"Failed to start docker: {exc}") from exc
        logger.debug("Started container %s for %s", container_name, command)
        return SubprocessHandle(process, on_kill=lambda: self._force_remove(container_name))

    def check_available(self) -> tuple[bool, str | None]:
        """Report Docker CLI and daemon availability.

        Example:
            ```python
            ok, reason = runtime.check_available()
            ```
        """
        return docker_is_available(docker_env=os.environ, docker_context=self._settings.docker_context)

    def _force_remove(self, container_name: str) -> None:
        """Remove a container after its docker client was killed.

        Example:
            ```python
            runtime._force_remove("sjr-abc")
            ```
        """
        cmd = self._docker_cmd(["rm", "-f", container_name])
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            subprocess.run(cmd, capture_output=True, text=True, check=False)
            return
        task = loop.create_task(self._remove_async(cmd, container_name))
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)

    async def _remove_async(self, cmd: list[str], container_name: str) -> None:
        """Run `docker rm -f` without blocking the event loop.

        Example:
            ```python
            await runtime._remove_async(["docker", "rm", "-f", "sjr-abc"], "sjr-abc")
            ```
        """
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        if await proc.wait() != 0:
            logger.warning("Failed to remove container %s", container_name)

    def _docker_cmd(self, args: list[str]) -> list[str]:
        """Prefix args with the docker CLI and optional context.

        Example:
            ```python
            cmd = runtime._docker_cmd(["ps"])
            ```
        """
        cmd = ["docker"]
        if self._settings.docker_context:
            cmd.extend(["--context", self._settings.docker_context])
        cmd.extend(args)
        return cmd
