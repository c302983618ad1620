from __future__ import annotations

import asyncio
import json

import pytest

from safe_js_runner import events as ev
from safe_js_runner.dependencies import DependencyAnalyzer
from safe_js_runner.events import EventChannel
from safe_js_runner.installer import PackageInstaller


def _installer(runtime, **kwargs):
    events = EventChannel()
    seen: list[tuple[str, dict]] = []
    events.subscribe_all(lambda name, payload: seen.append((name, payload)))
    analyzer = DependencyAnalyzer()
    return PackageInstaller(runtime, events, analyzer, **kwargs), analyzer, seen


@pytest.mark.asyncio
async def test_install_success_updates_analyzer(runtime) -> None:
    runtime.queue([b"added 1 package\n"], stderr=[b"npm notice\n"])
    installer, analyzer, seen = _installer(runtime)

    result = await installer.install_package("left-pad", "^1.3.0", dev=True)

    assert result.success is True
    assert result.version == "^1.3.0"
    assert result.output == "added 1 package\n"
    assert runtime.spawned == [
        ("npm", ["install", "left-pad@^1.3.0", "--no-audit", "--no-fund", "--save-dev"])
    ]
    assert analyzer.is_installed("left-pad")
    assert "left-pad" in installer.installed
    names = [name for name, _ in seen]
    assert names[0] == ev.PACKAGE_INSTALLING
    assert names[-1] == ev.PACKAGE_INSTALLED
    outputs = [payload for name, payload in seen if name == ev.PACKAGE_INSTALL_OUTPUT]
    assert {payload["type"] for payload in outputs} == {"stdout", "stderr"}
    assert installer.history[-1] is result


@pytest.mark.asyncio
async def test_already_installed_is_skipped_unless_forced(runtime) -> None:
    runtime.queue()
    installer, _, _ = _installer(runtime)
    await installer.install_package("lodash")

    skipped = await installer.install_package("lodash")
    assert skipped.skipped is True
    assert skipped.success is True
    assert len(runtime.spawned) == 1

    runtime.queue()
    forced = await installer.install_package("lodash", force=True)
    assert forced.skipped is False
    assert len(runtime.spawned) == 2


@pytest.mark.asyncio
async def test_invalid_names_never_spawn(runtime) -> None:
    installer, _, seen = _installer(runtime)

    for bad in ("Bad Name", "", "lodash; rm -rf /"):
        result = await installer.install_package(bad)
        assert result.success is False

    bad_version = await installer.install_package("lodash", "1.0 || $(whoami)")
    assert bad_version.success is False
    assert runtime.spawned == []
    errors = [payload for name, payload in seen if name == ev.PACKAGE_INSTALL_ERROR]
    assert len(errors) == 4
    assert errors[0]["code"] == "INSTALL_ERROR"


@pytest.mark.asyncio
async def test_npm_failure_is_reported(runtime) -> None:
    runtime.queue(stderr=[b"404 Not Found\n"], exit_code=1)
    installer, analyzer, seen = _installer(runtime)

    result = await installer.install_package("no-such-package-xyz")

    assert result.success is False
    assert result.exit_code == 1
    assert "exited with code 1" in result.message
    assert not analyzer.is_installed("no-such-package-xyz")
    assert [name for name, _ in seen][-1] == ev.PACKAGE_INSTALL_ERROR


@pytest.mark.asyncio
async def test_install_timeout_kills_npm(runtime) -> None:
    runtime.queue(hang=True)
    installer, _, _ = _installer(runtime, timeout_seconds=0.05)

    result = await installer.install_package("slow-package")

    assert result.success is False
    assert "timed out" in result.message
    assert runtime.processes[0].killed is True
    assert runtime.processes[0].reaped is True


@pytest.mark.asyncio
async def test_cancelled_install_kills_and_reaps_npm(runtime) -> None:
    runtime.queue(hang=True)
    installer, _, _ = _installer(runtime)

    task = asyncio.create_task(installer.install_package("slow-package"))
    for _ in range(1000):
        if runtime.processes:
            break
        await asyncio.sleep(0.001)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert runtime.processes[0].killed is True
    assert runtime.processes[0].reaped is True
    assert "slow-package" not in installer.installed


@pytest.mark.asyncio
async def test_install_packages_runs_sequentially(runtime) -> None:
    runtime.queue()
    runtime.queue()
    installer, _, _ = _installer(runtime)
    results = await installer.install_packages(["lodash", "dayjs"])
    assert [item.package for item in results] == ["lodash", "dayjs"]
    assert [args[1] for _, args in runtime.spawned] == ["lodash", "dayjs"]


@pytest.mark.asyncio
async def test_uninstall_updates_state(runtime) -> None:
    runtime.queue()
    runtime.queue()
    installer, analyzer, seen = _installer(runtime)
    await installer.install_package("axios")

    result = await installer.uninstall_package("axios")

    assert result.success is True
    assert runtime.spawned[-1] == ("npm", ["uninstall", "axios"])
    assert not analyzer.is_installed("axios")
    assert "axios" not in installer.installed
    assert ev.PACKAGE_UNINSTALLED in [name for name, _ in seen]


@pytest.mark.asyncio
async def test_list_installed_parses_npm_json(runtime) -> None:
    payload = {"dependencies": {"lodash": {"version": "4.17.21"}, "dayjs": {"version": "1.11.10"}}}
    runtime.queue([json.dumps(payload).encode()])
    installer, _, seen = _installer(runtime)

    versions = await installer.list_installed()

    assert versions == {"lodash": "4.17.21", "dayjs": "1.11.10"}
    assert runtime.spawned == [("npm", ["list", "--json", "--depth=0"])]
    assert seen == []


@pytest.mark.asyncio
async def test_list_installed_falls_back_to_tracked_set(runtime) -> None:
    runtime.queue()
    runtime.queue([b"not json"])
    installer, _, _ = _installer(runtime)
    await installer.install_package("lodash")
    assert await installer.list_installed() == {"lodash": "unknown"}


def test_timeout_must_be_positive(runtime) -> None:
    with pytest.raises(ValueError):
        PackageInstaller(runtime, EventChannel(), timeout_seconds=0)
    with pytest.raises(ValueError):
        PackageInstaller(runtime, EventChannel(), kill_grace_seconds=0)
