from __future__ import annotations

import asyncio
import codecs
import dataclasses
import enum
import logging
import time
import warnings
from typing import Any, AsyncIterator

from . import events as ev
from .config import EngineConfig
from .dependencies import DependencyAnalyzer
from .detection import LanguageDetector
from .errors import (
    ConcurrentExecutionError,
    DependencyMissingWarning,
    ExecutionTimeoutError,
    SandboxSpawnError,
    TransformError,
)
from .events import EventChannel
from .execution.capabilities import preflight_validate_runtime
from .execution.engine import SandboxProcess, SandboxRuntime, pump_stream, reap_process
from .execution.types import (
    ExecutableUnit,
    ExecutionMetrics,
    ExecutionOptions,
    ExecutionRequest,
    ExecutionResult,
    Language,
    SourceUnit,
    StructuredEvent,
    now_ms,
)
from .installer import PackageInstaller
from .instrumentation import InstrumentationWrapper, StructuredLineBuffer
from .metrics import MetricsRecorder
from .transform import TransformPipeline

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
PREPARATION_FAILURE_EXIT_CODE = -1


class ExecutionState(str, enum.Enum):
    """Lifecycle states of the coordinator.

    Example:
        ```python
        assert coordinator.state is ExecutionState.IDLE
        ```
    """

    IDLE = "idle"
    PREPARING = "preparing"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclasses.dataclass(slots=True)
class _RunCapture:
    """Output gathered while one process runs.

    Example:
        ```python
        capture = _RunCapture()
        ```
    """

    stdout: list[str] = dataclasses.field(default_factory=list)
    stderr: list[str] = dataclasses.field(default_factory=list)
    events: list[StructuredEvent] = dataclasses.field(default_factory=list)
    closed: bool = False


class ExecutionCoordinator:
    """Single-flight execution of user code inside a sandbox runtime.

    One instance per session owns the in-flight state, the current process
    handle, the caches and the metrics. Calls made while an execution is in
    progress are rejected, never queued.

    Example:
        ```python
        coordinator = build_coordinator(LocalNodeRuntime("/tmp/ws"))
        result = await coordinator.execute("console.log('hi')")
        ```
    """

    def __init__(
        self,
        runtime: SandboxRuntime,
        *,
        detector: LanguageDetector,
        pipeline: TransformPipeline,
        analyzer: DependencyAnalyzer,
        wrapper: InstrumentationWrapper,
        events: EventChannel | None = None,
        installer: PackageInstaller | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        """Wire the pipeline stages around a sandbox runtime.

        Example:
            ```python
            coordinator = ExecutionCoordinator(runtime, detector=d, pipeline=p, analyzer=a, wrapper=w)
            ```
        """
        self._runtime = runtime
        self._detector = detector
        self._pipeline = pipeline
        self._analyzer = analyzer
        self._wrapper = wrapper
        self._events = events or EventChannel()
        self._installer = installer
        self._config = config or EngineConfig()
        self._metrics = MetricsRecorder()
        self._state = ExecutionState.IDLE
        self._process: SandboxProcess | None = None
        self._cancel_requested = False
        self._created_at = time.monotonic()
        self._runtime_verified = False

    @property
    def state(self) -> ExecutionState:
        """Current lifecycle state.

        Example:
            ```python
            print(coordinator.state.value)
            ```
        """
        return self._state

    @property
    def is_busy(self) -> bool:
        """Whether an execution is in flight.

        Example:
            ```python
            if not coordinator.is_busy:
                await coordinator.execute(code)
            ```
        """
        return self._state is not ExecutionState.IDLE

    @property
    def events(self) -> EventChannel:
        """Channel carrying execution and package events.

        Example:
            ```python
            coordinator.events.subscribe("execution:output", print)
            ```
        """
        return self._events

    @property
    def metrics(self) -> ExecutionMetrics:
        """Snapshot of the running execution statistics.

        Example:
            ```python
            avg = coordinator.metrics.average_execution_time_ms
            ```
        """
        return self._metrics.snapshot()

    @property
    def config(self) -> EngineConfig:
        """Engine configuration in effect.

        Example:
            ```python
            timeout = coordinator.config.timeout_ms
            ```
        """
        return self._config

    @property
    def installer(self) -> PackageInstaller | None:
        """Package installer used for auto-install, if any.

        Example:
            ```python
            if coordinator.installer:
                await coordinator.installer.install_package("lodash")
            ```
        """
        return self._installer

    async def execute(self, code: str, options: ExecutionOptions | None = None) -> ExecutionResult:
        """Detect, analyze, transform, instrument and run code.

        Process-level failures resolve as failure results. A busy coordinator
        raises ConcurrentExecutionError and an unavailable sandbox raises
        SandboxSpawnError.

        Example:
            ```python
            result = await coordinator.execute("console.log('hi')", ExecutionOptions(timeout_ms=5000))
            ```
        """
        if self._state is not ExecutionState.IDLE:
            raise ConcurrentExecutionError("An execution is already in progress")
        if not isinstance(code, str):
            raise TypeError("code must be a string")
        self._set_state(ExecutionState.PREPARING)

        opts = options or ExecutionOptions.from_config(self._config)
        request = ExecutionRequest.create(code, opts)
        started = time.perf_counter()
        language = Language.JAVASCRIPT
        result: ExecutionResult | None = None
        try:
            detection = self._detector.detect_unit(SourceUnit(code=code, filename=opts.filename))
            language = detection.language
            logger.info("Execution %s started (%s, %s)", request.id, opts.filename, language.value)
            self._events.emit(
                ev.EXECUTION_STARTED,
                {"id": request.id, "filename": opts.filename, "code": code, "language": language.value},
            )

            if opts.check_dependencies:
                await self._check_dependencies(code, language, opts)

            try:
                transformed = await asyncio.to_thread(
                    self._pipeline.transform, code, detection, opts.filename
                )
            except TransformError as exc:
                logger.warning("Transform failed for %s: %s", opts.filename, exc)
                self._events.emit(
                    ev.EXECUTION_ERROR,
                    {"error": str(exc), "code": exc.code, "language": exc.language},
                )
                self._set_state(ExecutionState.FAILED)
                result = ExecutionResult(
                    exit_code=PREPARATION_FAILURE_EXIT_CODE,
                    stdout="",
                    stderr=str(exc),
                    execution_time_ms=self._elapsed_ms(started),
                    success=False,
                    error=str(exc),
                    language=language,
                )
                return result

            unit = self._wrapper.wrap(transformed.transformed_code, detection, opts.filename)
            if not self._runtime_verified:
                await asyncio.to_thread(preflight_validate_runtime, self._runtime)
                self._runtime_verified = True
            await self._write_program(unit)

            result = await self._run(unit, opts, started)
            return result
        except SandboxSpawnError as exc:
            logger.warning("Sandbox unavailable: %s", exc)
            self._runtime_verified = False
            self._events.emit(
                ev.EXECUTION_ERROR,
                {"error": str(exc), "code": exc.code, "language": language.value},
            )
            self._set_state(ExecutionState.FAILED)
            raise
        finally:
            self._finish(result, language, started)

    async def execute_with_timeout(
        self,
        code: str,
        timeout_ms: int,
        options: ExecutionOptions | None = None,
    ) -> ExecutionResult:
        """Execute with an explicit deadline overriding the options.

        Example:
            ```python
            result = await coordinator.execute_with_timeout("while (true) {}", 100)
            ```
        """
        opts = options or ExecutionOptions.from_config(self._config)
        return await self.execute(code, dataclasses.replace(opts, timeout_ms=timeout_ms))

    async def stop(self) -> bool:
        """Cancel the running process. A no-op returning False otherwise.

        Example:
            ```python
            stopped = await coordinator.stop()
            ```
        """
        if self._state is not ExecutionState.RUNNING or self._process is None:
            return False
        if self._cancel_requested:
            return False
        self._cancel_requested = True
        try:
            self._process.kill()
        except OSError as exc:
            logger.warning("Failed to kill running process: %s", exc)
        logger.info("Execution stopped by request")
        self._events.emit(ev.EXECUTION_STOPPED, {"timestamp": now_ms()})
        return True

    def resource_usage(self) -> dict[str, Any]:
        """State, cache and package statistics for diagnostics.

        Example:
            ```python
            usage = coordinator.resource_usage()
            ```
        """
        return {
            "state": self._state.value,
            "is_executing": self.is_busy,
            "installed_packages": len(self._analyzer.installed),
            "detection_cache": self._detector.cache_stats(),
            "transform_cache": self._pipeline.cache_stats(),
            "dependency_cache": self._analyzer.cache_stats(),
            "uptime_seconds": round(time.monotonic() - self._created_at, 3),
        }

    async def reset(self) -> None:
        """Stop any run, clear caches and zero the metrics.

        Example:
            ```python
            await coordinator.reset()
            ```
        """
        await self.stop()
        self._detector.clear_cache()
        self._pipeline.clear_cache()
        self._analyzer.clear_cache()
        self._metrics.reset()

    async def _check_dependencies(self, code: str, language: Language, opts: ExecutionOptions) -> None:
        """Report missing packages and optionally install them.

        Example:
            ```python
            await coordinator._check_dependencies("require('left-pad')", Language.JAVASCRIPT, opts)
            ```
        """
        report = self._analyzer.analyze(code, language)
        if not report.missing:
            return
        names = report.missing_names
        message = f"Missing packages: {', '.join(names)}"
        warnings.warn(message, DependencyMissingWarning, stacklevel=3)
        self._events.emit(
            ev.DEPENDENCIES_MISSING,
            {
                "missing": [dataclasses.asdict(item) for item in report.missing],
                "suggestions": [dataclasses.asdict(item) for item in report.suggestions],
                "conflicts": [dataclasses.asdict(item) for item in report.conflicts],
            },
        )
        if opts.auto_install_deps and self._installer is not None:
            logger.info("Auto-installing %s", ", ".join(names))
            await self._installer.install_packages(names)

    async def _write_program(self, unit: ExecutableUnit) -> None:
        """Write the user module, then the entry program that loads it.

        Example:
            ```python
            await coordinator._write_program(unit)
            ```
        """
        files = [(unit.module_filename, unit.module_code), (unit.filename, unit.code)]
        for path, content in files:
            if not path:
                continue
            try:
                await self._runtime.write_file(path, content)
            except OSError as exc:
                raise SandboxSpawnError(f"Failed to write {path}: {exc}") from exc

    async def _run(self, unit: ExecutableUnit, opts: ExecutionOptions, started: float) -> ExecutionResult:
        """Spawn the program and race it against the deadline.

        Example:
            ```python
            result = await coordinator._run(unit, opts, time.perf_counter())
            ```
        """
        self._set_state(ExecutionState.RUNNING)
        try:
            process = await self._runtime.spawn(self._config.node_command, [unit.filename])
        except OSError as exc:
            raise SandboxSpawnError(f"Failed to spawn {self._config.node_command}: {exc}") from exc
        self._process = process

        capture = _RunCapture()
        pumps = [
            asyncio.create_task(self._pump(process.output, "stdout", capture, opts)),
            asyncio.create_task(self._pump(process.stderr, "stderr", capture, opts)),
        ]
        exit_code: int | None = None
        timed_out = False
        try:
            async with asyncio.timeout(opts.timeout_ms / 1000):
                exit_code = await process.wait()
                await asyncio.gather(*pumps)
        except TimeoutError:
            timed_out = True
            logger.warning("Execution timed out after %sms", opts.timeout_ms)
            process.kill()
            await self._reap(process)
        finally:
            if exit_code is None and not timed_out:
                process.kill()
                await self._reap(process)
            capture.closed = True
            for task in pumps:
                task.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)

        cancelled = self._cancel_requested
        elapsed = self._elapsed_ms(started)
        stdout = "".join(capture.stdout)
        stderr = "".join(capture.stderr)
        if timed_out:
            self._set_state(ExecutionState.TIMED_OUT)
            error = ExecutionTimeoutError(f"Execution timed out after {opts.timeout_ms}ms")
            return ExecutionResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=stdout,
                stderr=stderr,
                execution_time_ms=elapsed,
                success=False,
                timeout=True,
                error=str(error),
                language=unit.language,
                events=capture.events,
            )
        if cancelled:
            self._set_state(ExecutionState.CANCELLED)
            return ExecutionResult(
                exit_code=exit_code if exit_code is not None else -1,
                stdout=stdout,
                stderr=stderr,
                execution_time_ms=elapsed,
                success=False,
                cancelled=True,
                error="Execution cancelled",
                language=unit.language,
                events=capture.events,
            )

        success = exit_code == 0
        self._set_state(ExecutionState.COMPLETED if success else ExecutionState.FAILED)
        return ExecutionResult(
            exit_code=exit_code if exit_code is not None else -1,
            stdout=stdout,
            stderr=stderr,
            execution_time_ms=elapsed,
            success=success,
            error=None if success else _runtime_error_message(capture.events, exit_code),
            language=unit.language,
            events=capture.events,
        )

    async def _pump(
        self,
        stream: AsyncIterator[bytes] | None,
        kind: str,
        capture: _RunCapture,
        opts: ExecutionOptions,
    ) -> None:
        """Forward one output stream until EOF.

        Every chunk becomes a raw output event; each completed line that
        parses also becomes a structured event. A trailing line without a
        newline is parsed once the stream ends.

        Example:
            ```python
            await coordinator._pump(process.output, "stdout", capture, opts)
            ```
        """
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        lines = StructuredLineBuffer()
        sink = capture.stdout if kind == "stdout" else capture.stderr

        def _publish(parsed: list[StructuredEvent]) -> None:
            """Record and emit parsed structured events.

            Example:
                ```python
                _publish(lines.flush())
                ```
            """
            for event in parsed:
                capture.events.append(event)
                self._events.emit(ev.EXECUTION_STRUCTURED_OUTPUT, {"data": event})

        def _forward(text: str) -> None:
            """Emit decoded text on the raw and structured channels.

            Example:
                ```python
                _forward("hi\\n")
                ```
            """
            if capture.closed or not text:
                return
            if opts.capture_output:
                sink.append(text)
            self._events.emit(
                ev.EXECUTION_OUTPUT, {"type": kind, "data": text, "timestamp": now_ms()}
            )
            _publish(lines.feed(text))

        await pump_stream(stream, lambda chunk: _forward(decoder.decode(chunk)))
        _forward(decoder.decode(b"", final=True))
        if not capture.closed:
            _publish(lines.flush())

    async def _reap(self, process: SandboxProcess) -> None:
        """Wait up to the kill grace period for a killed process to exit.

        Example:
            ```python
            await coordinator._reap(process)
            ```
        """
        await reap_process(process, self._config.kill_grace_ms / 1000)

    def _finish(self, result: ExecutionResult | None, language: Language, started: float) -> None:
        """Publish completion, record metrics and return to IDLE.

        Example:
            ```python
            coordinator._finish(result, Language.JAVASCRIPT, started)
            ```
        """
        try:
            if result is not None:
                logger.info(
                    "Execution finished: exit=%s success=%s %.1fms",
                    result.exit_code,
                    result.success,
                    result.execution_time_ms,
                )
                self._events.emit(ev.EXECUTION_COMPLETED, {"result": result})
                self._metrics.record(
                    language.value,
                    result.execution_time_ms,
                    success=result.success,
                    timeout=result.timeout,
                    cancelled=result.cancelled,
                )
            elif self._state is ExecutionState.FAILED:
                self._metrics.record(language.value, self._elapsed_ms(started), success=False)
        finally:
            self._process = None
            self._cancel_requested = False
            self._set_state(ExecutionState.IDLE)

    def _set_state(self, state: ExecutionState) -> None:
        """Transition to a new state.

        Example:
            ```python
            coordinator._set_state(ExecutionState.RUNNING)
            ```
        """
        if state is not self._state:
            logger.debug("Coordinator state %s -> %s", self._state.value, state.value)
        self._state = state

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        """Milliseconds since a perf_counter reading.

        Example:
            ```python
            ms = ExecutionCoordinator._elapsed_ms(time.perf_counter())
            ```
        """
        return (time.perf_counter() - started) * 1000.0


def _runtime_error_message(events: list[StructuredEvent], exit_code: int | None) -> str:
    """Message of the first runtime.error event, or a generic exit message.

    Example:
        ```python
        message = _runtime_error_message(result.events, 1)
        ```
    """
    for event in events:
        if event.type == "runtime.error" and event.error:
            return str(event.error.get("message", "Runtime error"))
    return f"Process exited with code {exit_code}"
