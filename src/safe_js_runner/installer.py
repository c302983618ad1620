from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from . import events as ev
from .dependencies import DependencyAnalyzer
from .errors import InstallError, SafeJsRunnerError
from .events import EventChannel
from .execution.config import validate_package_names, validate_version_spec
from .execution.engine import SandboxRuntime, pump_stream, reap_process
from .execution.types import now_ms

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InstallResult:
    """Outcome of one npm install or uninstall.

    Example:
        ```python
        result = InstallResult(package="lodash", success=True, message="lodash installed")
        ```
    """

    package: str
    success: bool
    message: str
    version: str | None = None
    exit_code: int | None = None
    output: str = ""
    skipped: bool = False
    timestamp: float = field(default_factory=now_ms)


class PackageInstaller:
    """Install and remove npm packages through the sandbox runtime.

    Installs run outside the execution single-flight; concurrent installs of
    the same package are refused.

    Example:
        ```python
        installer = PackageInstaller(runtime, events, analyzer)
        result = await installer.install_package("left-pad")
        ```
    """

    def __init__(
        self,
        runtime: SandboxRuntime,
        events: EventChannel,
        analyzer: DependencyAnalyzer | None = None,
        *,
        npm_command: str = "npm",
        timeout_seconds: float = 300,
        kill_grace_seconds: float = 1.0,
    ) -> None:
        """Create an installer bound to a runtime and event channel.

        Example:
            ```python
            installer = PackageInstaller(runtime, EventChannel(), timeout_seconds=120)
            ```
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if kill_grace_seconds <= 0:
            raise ValueError("kill_grace_seconds must be positive")
        self._runtime = runtime
        self._events = events
        self._analyzer = analyzer
        self._npm = npm_command
        self._timeout_seconds = float(timeout_seconds)
        self._kill_grace_seconds = float(kill_grace_seconds)
        self._installed: set[str] = set(analyzer.installed) if analyzer else set()
        self._pending: set[str] = set()
        self._history: list[InstallResult] = []

    @property
    def history(self) -> list[InstallResult]:
        """Install and uninstall results, oldest first.

        Example:
            ```python
            last = installer.history[-1]
            ```
        """
        return list(self._history)

    @property
    def installed(self) -> frozenset[str]:
        """Packages installed through this installer or seeded from the analyzer.

        Example:
            ```python
            names = installer.installed
            ```
        """
        return frozenset(self._installed)

    async def install_package(
        self,
        name: str,
        version: str = "latest",
        *,
        dev: bool = False,
        force: bool = False,
    ) -> InstallResult:
        """Run `npm install <name>[@version]` and report the outcome.

        Example:
            ```python
            result = await installer.install_package("lodash", "^4.17.21", dev=True)
            ```
        """
        try:
            package = validate_package_names([name])[0] if name.strip() else ""
            if not package:
                raise ValueError("Package name must not be empty")
            version = validate_version_spec(version)
        except ValueError as exc:
            return self._fail(ev.PACKAGE_INSTALL_ERROR, name, InstallError(str(exc)))

        if package in self._installed and not force:
            return InstallResult(package, True, f"{package} is already installed", skipped=True)
        if package in self._pending:
            return InstallResult(package, False, f"{package} is already being installed")

        self._pending.add(package)
        self._events.emit(ev.PACKAGE_INSTALLING, {"package": package, "version": version})
        spec = package if version == "latest" else f"{package}@{version}"
        args = ["install", spec, "--no-audit", "--no-fund"]
        if dev:
            args.append("--save-dev")
        try:
            exit_code, output = await self._run(package, args)
        except SafeJsRunnerError as exc:
            return self._fail(ev.PACKAGE_INSTALL_ERROR, package, exc)
        finally:
            self._pending.discard(package)

        if exit_code != 0:
            return self._fail(
                ev.PACKAGE_INSTALL_ERROR,
                package,
                InstallError(f"npm install {spec} exited with code {exit_code}"),
                exit_code=exit_code,
                output=output,
            )

        self._installed.add(package)
        if self._analyzer is not None:
            self._analyzer.mark_installed(package)
        logger.info("Installed %s", spec)
        result = InstallResult(
            package, True, f"{package} installed", version=version, exit_code=0, output=output
        )
        self._history.append(result)
        self._events.emit(ev.PACKAGE_INSTALLED, {"package": package, "version": version})
        return result

    async def install_packages(self, names: list[str], *, dev: bool = False) -> list[InstallResult]:
        """Install packages one after another.

        Example:
            ```python
            results = await installer.install_packages(["lodash", "dayjs"])
            ```
        """
        results: list[InstallResult] = []
        for name in names:
            results.append(await self.install_package(name, dev=dev))
        return results

    async def uninstall_package(self, name: str) -> InstallResult:
        """Run `npm uninstall <name>` and report the outcome.

        Example:
            ```python
            result = await installer.uninstall_package("lodash")
            ```
        """
        try:
            package = validate_package_names([name])[0] if name.strip() else ""
            if not package:
                raise ValueError("Package name must not be empty")
        except ValueError as exc:
            return self._fail(ev.PACKAGE_UNINSTALL_ERROR, name, InstallError(str(exc)))

        try:
            exit_code, output = await self._run(package, ["uninstall", package])
        except SafeJsRunnerError as exc:
            return self._fail(ev.PACKAGE_UNINSTALL_ERROR, package, exc)
        if exit_code != 0:
            return self._fail(
                ev.PACKAGE_UNINSTALL_ERROR,
                package,
                InstallError(f"npm uninstall {package} exited with code {exit_code}"),
                exit_code=exit_code,
                output=output,
            )

        self._installed.discard(package)
        if self._analyzer is not None:
            self._analyzer.mark_uninstalled(package)
        logger.info("Uninstalled %s", package)
        result = InstallResult(package, True, f"{package} uninstalled", exit_code=0, output=output)
        self._history.append(result)
        self._events.emit(ev.PACKAGE_UNINSTALLED, {"package": package})
        return result

    async def list_installed(self) -> dict[str, str]:
        """Top-level dependencies with versions, from `npm list --json`.

        Falls back to the in-memory set when npm output cannot be parsed.

        Example:
            ```python
            versions = await installer.list_installed()
            ```
        """
        try:
            _, output = await self._run(None, ["list", "--json", "--depth=0"], stream_events=False)
            parsed: Any = json.loads(output)
            deps = parsed.get("dependencies", {}) if isinstance(parsed, dict) else {}
            if not isinstance(deps, dict):
                raise ValueError("'dependencies' is not an object")
        except (SafeJsRunnerError, ValueError) as exc:
            logger.warning("npm list failed, using tracked packages: %s", exc)
            return {name: "unknown" for name in sorted(self._installed)}
        return {
            str(name): str(info.get("version", "unknown")) if isinstance(info, dict) else "unknown"
            for name, info in deps.items()
        }

    async def _run(
        self,
        package: str | None,
        args: list[str],
        *,
        stream_events: bool = True,
    ) -> tuple[int, str]:
        """Spawn npm, stream its output and return (exit code, stdout).

        Example:
            ```python
            code, out = await installer._run("lodash", ["install", "lodash"])
            ```
        """
        process = await self._runtime.spawn(self._npm, args)
        stdout: list[bytes] = []

        def _on_chunk(kind: str):
            """Build a chunk callback for one stream.

            Example:
                ```python
                callback = _on_chunk("stdout")
                ```
            """

            def _callback(chunk: bytes) -> None:
                """Collect and forward one chunk.

                Example:
                    ```python
                    _callback(b"added 1 package")
                    ```
                """
                if kind == "stdout":
                    stdout.append(chunk)
                if stream_events:
                    self._events.emit(
                        ev.PACKAGE_INSTALL_OUTPUT,
                        {
                            "package": package,
                            "type": kind,
                            "data": chunk.decode("utf-8", errors="replace"),
                            "timestamp": now_ms(),
                        },
                    )

            return _callback

        exit_code: int | None = None
        try:
            async with asyncio.timeout(self._timeout_seconds):
                await asyncio.gather(
                    pump_stream(process.output, _on_chunk("stdout")),
                    pump_stream(process.stderr, _on_chunk("stderr")),
                )
                exit_code = await process.wait()
        except TimeoutError as exc:
            raise InstallError(f"npm {args[0]} timed out after {self._timeout_seconds:g}s") from exc
        finally:
            # timed out or cancelled
            if exit_code is None:
                process.kill()
                await reap_process(process, self._kill_grace_seconds)
        return exit_code, b"".join(stdout).decode("utf-8", errors="replace")

    def _fail(
        self,
        event: str,
        package: str,
        error: SafeJsRunnerError,
        *,
        exit_code: int | None = None,
        output: str = "",
    ) -> InstallResult:
        """Record and announce a failed install or uninstall.

        Example:
            ```python
            result = installer._fail("package:install-error", "x", InstallError("boom"))
            ```
        """
        logger.warning("Package operation failed for %s: %s", package, error)
        result = InstallResult(package, False, str(error), exit_code=exit_code, output=output)
        self._history.append(result)
        self._events.emit(event, {"package": package, "error": str(error), "code": error.code})
        return result
