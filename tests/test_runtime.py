from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import pytest

from safe_js_runner import SandboxSpawnError, create_runtime
from safe_js_runner.execution import local_engine
from safe_js_runner.execution import docker_engine
from safe_js_runner.execution.capabilities import (
    capabilities_for_runtime,
    check_runtime_available,
    preflight_validate_runtime,
    runtime_name,
)
from safe_js_runner.execution.config import DockerRuntimeSettings, validate_package_names, validate_version_spec
from safe_js_runner.execution.docker_engine import DockerNodeRuntime, docker_is_available
from safe_js_runner.execution.engine import pump_stream, reap_process
from safe_js_runner.execution.local_engine import LocalNodeRuntime


@pytest.mark.asyncio
async def test_local_files_stay_inside_workspace(tmp_path: Path) -> None:
    runtime = LocalNodeRuntime(tmp_path)
    await runtime.write_file("src/index.cjs", "console.log(1)")
    assert (tmp_path / "src" / "index.cjs").read_text(encoding="utf-8") == "console.log(1)"
    assert await runtime.read_file("src/index.cjs") == "console.log(1)"

    with pytest.raises(ValueError, match="escapes"):
        runtime.resolve("../outside.js")
    with pytest.raises(ValueError, match="escapes"):
        await runtime.write_file("/etc/passwd", "x")


@pytest.mark.asyncio
async def test_local_spawn_pipes_both_streams(tmp_path: Path) -> None:
    runtime = LocalNodeRuntime(tmp_path, env={"SJR_TEST_VALUE": "42"})
    process = await runtime.spawn(
        sys.executable,
        [
            "-c",
            "import os, sys; print(os.environ['SJR_TEST_VALUE']); print(os.getcwd()); "
            "print('oops', file=sys.stderr); sys.exit(3)",
        ],
    )
    out: list[bytes] = []
    err: list[bytes] = []
    await pump_stream(process.output, out.append)
    await pump_stream(process.stderr, err.append)
    assert await process.wait() == 3

    lines = b"".join(out).decode().splitlines()
    assert lines[0] == "42"
    assert Path(lines[1]).resolve() == tmp_path.resolve()
    assert b"".join(err).decode().strip() == "oops"


@pytest.mark.asyncio
async def test_local_kill_is_idempotent(tmp_path: Path) -> None:
    killed: list[bool] = []
    runtime = LocalNodeRuntime(tmp_path)
    process = await runtime.spawn(sys.executable, ["-c", "import time; time.sleep(30)"])
    process._on_kill = lambda: killed.append(True)
    process.kill()
    process.kill()
    assert await process.wait() != 0
    process.kill()
    assert killed == [True]


@pytest.mark.asyncio
async def test_local_spawn_missing_command(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(local_engine.shutil, "which", lambda _cmd: None)
    with pytest.raises(SandboxSpawnError, match="was not found"):
        await LocalNodeRuntime(tmp_path).spawn("node", ["index.cjs"])


def test_local_runtime_requires_workdir() -> None:
    with pytest.raises(ValueError):
        LocalNodeRuntime("  ")


def test_docker_run_args_lock_down_container(tmp_path: Path) -> None:
    settings = DockerRuntimeSettings(image="node:20-alpine", memory_limit_mb=128, pids_limit=64, docker_context="remote")
    runtime = DockerNodeRuntime(tmp_path, settings=settings)

    argv = runtime.run_args("sjr-test", "node", ["index.cjs"])

    assert argv[:3] == ["docker", "--context", "remote"]
    assert argv[-3:] == ["node:20-alpine", "node", "index.cjs"]
    assert "--read-only" in argv
    assert argv[argv.index("--network") + 1] == "none"
    assert argv[argv.index("--memory") + 1] == "128m"
    assert argv[argv.index("--pids-limit") + 1] == "64"
    assert argv[argv.index("--cap-drop") + 1] == "ALL"
    assert f"{runtime.workdir}:/workspace" in argv
    assert "safe_js_runner.managed=true" in argv
    if hasattr(os, "getuid"):
        assert argv[argv.index("--user") + 1] == f"{os.getuid()}:{os.getgid()}"


def test_docker_install_commands_get_network(tmp_path: Path) -> None:
    runtime = DockerNodeRuntime(tmp_path)
    argv = runtime.run_args("sjr-npm", "npm", ["install", "lodash"])
    assert argv[0] == "docker"
    assert argv[1] == "run"
    assert argv[argv.index("--network") + 1] == "bridge"


def test_docker_settings_validation() -> None:
    with pytest.raises(ValueError):
        DockerRuntimeSettings(image=" ")
    with pytest.raises(ValueError):
        DockerRuntimeSettings(memory_limit_mb=0)


def test_docker_availability_without_cli(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(docker_engine.shutil, "which", lambda _cmd: None)
    ok, reason = docker_is_available(docker_env={}, docker_context=None)
    assert ok is False
    assert "Docker CLI was not found" in (reason or "")


def test_capabilities_by_runtime(tmp_path: Path) -> None:
    local = capabilities_for_runtime(runtime_name(LocalNodeRuntime(tmp_path)))
    assert local.supports_timeout is True
    assert local.supports_network_isolation is False
    docker = capabilities_for_runtime(runtime_name(DockerNodeRuntime(tmp_path)))
    assert docker.supports_memory_limit is True
    assert docker.supports_network_isolation is True
    unknown = capabilities_for_runtime("firecracker")
    assert unknown.supports_timeout is False


def test_preflight_uses_runtime_probe() -> None:
    class _Down:
        def check_available(self) -> tuple[bool, str | None]:
            return False, "daemon offline"

    assert check_runtime_available(object()) == (True, None)
    with pytest.raises(SandboxSpawnError, match="daemon offline"):
        preflight_validate_runtime(_Down())


def test_create_runtime_kinds(tmp_path: Path) -> None:
    assert isinstance(create_runtime("local", workdir=tmp_path), LocalNodeRuntime)
    docker = create_runtime("docker", workdir=tmp_path, docker_settings=DockerRuntimeSettings(image="node:20"))
    assert isinstance(docker, DockerNodeRuntime)
    assert docker.settings.image == "node:20"
    with pytest.raises(ValueError):
        create_runtime("vm", workdir=tmp_path)


def test_package_name_validation() -> None:
    assert validate_package_names([" lodash ", "@types/node", "lodash", ""]) == ["lodash", "@types/node"]
    assert validate_package_names(None) == []
    with pytest.raises(ValueError, match="Invalid npm package name"):
        validate_package_names(["../evil"])
    with pytest.raises(ValueError, match="Invalid npm package name"):
        validate_package_names(["a" * 215])
    assert validate_version_spec(" ^4.17.21 ") == "^4.17.21"
    with pytest.raises(ValueError):
        validate_version_spec("1.0; rm -rf /")


@pytest.mark.asyncio
async def test_reap_process_is_bounded(tmp_path: Path) -> None:
    class _Stuck:
        async def wait(self) -> int:
            await asyncio.sleep(30)
            return 0

    assert await reap_process(_Stuck(), 0.01) is None

    runtime = LocalNodeRuntime(tmp_path)
    process = await runtime.spawn(sys.executable, ["-c", "import time; time.sleep(30)"])
    process.kill()
    assert await reap_process(process, 5.0) is not None
