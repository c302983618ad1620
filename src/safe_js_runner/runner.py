from __future__ import annotations

import asyncio
from pathlib import Path

from .config import EngineConfig
from .coordinator import ExecutionCoordinator
from .dependencies import DependencyAnalyzer
from .detection import LanguageDetector
from .events import EventChannel
from .execution.config import DockerRuntimeSettings, default_workdir
from .execution.docker_engine import DockerNodeRuntime
from .execution.engine import SandboxRuntime
from .execution.local_engine import LocalNodeRuntime
from .execution.types import ExecutionOptions, ExecutionResult
from .installer import PackageInstaller
from .instrumentation import InstrumentationWrapper
from .transform import TransformerRegistry, TransformPipeline


def _resolve_config(config: EngineConfig | None, config_file: str | None) -> EngineConfig:
    """Resolve the effective engine config for a run.

    Example:
        ```python
        config = _resolve_config(None, "/tmp/sjr.toml")
        ```
    """
    if config is not None and config_file is not None:
        raise ValueError("Provide either 'config' or 'config_file', not both")
    if config is None and config_file is not None:
        return EngineConfig.from_file(config_file)
    if config is None:
        return EngineConfig()
    if config.config_path is not None:
        return EngineConfig.from_file(config.config_path)
    return config


def create_runtime(
    kind: str = "local",
    *,
    workdir: str | Path | None = None,
    config: EngineConfig | None = None,
    docker_settings: DockerRuntimeSettings | None = None,
) -> SandboxRuntime:
    """Build a local or Docker sandbox runtime over a workspace directory.

    Example:
        ```python
        runtime = create_runtime("docker", workdir="/tmp/ws")
        ```
    """
    cfg = config or EngineConfig()
    root = Path(workdir) if workdir else default_workdir(cfg.workdir_name)
    if kind == "local":
        return LocalNodeRuntime(root)
    if kind == "docker":
        return DockerNodeRuntime(root, settings=docker_settings)
    raise ValueError("runtime must be either 'local' or 'docker'")


def build_coordinator(
    runtime: SandboxRuntime,
    config: EngineConfig | None = None,
    *,
    registry: TransformerRegistry | None = None,
    events: EventChannel | None = None,
) -> ExecutionCoordinator:
    """Assemble a session coordinator with its detector, caches and installer.

    Example:
        ```python
        coordinator = build_coordinator(LocalNodeRuntime("/tmp/ws"), EngineConfig(timeout_ms=5000))
        ```
    """
    cfg = config or EngineConfig()
    channel = events or EventChannel()
    analyzer = DependencyAnalyzer(installed=cfg.installed_packages)
    return ExecutionCoordinator(
        runtime,
        detector=LanguageDetector(cache_size=cfg.detection_cache_size),
        pipeline=TransformPipeline(
            registry or TransformerRegistry.default(cfg),
            cache_size=cfg.transform_cache_size,
        ),
        analyzer=analyzer,
        wrapper=InstrumentationWrapper(cfg.jsx_factory, cfg.jsx_fragment),
        events=channel,
        installer=PackageInstaller(runtime, channel, analyzer, kill_grace_seconds=cfg.kill_grace_ms / 1000),
        config=cfg,
    )


def run_code(
    code: str,
    *,
    runtime: SandboxRuntime,
    options: ExecutionOptions | None = None,
    config: EngineConfig | None = None,
    config_file: str | None = None,
    registry: TransformerRegistry | None = None,
) -> ExecutionResult:
    """Execute JavaScript-family code once and return its result.

    Example:
        ```python
        from safe_js_runner import LocalNodeRuntime, run_code
        result = run_code("console.log(2 + 2)", runtime=LocalNodeRuntime("/tmp/ws"))
        ```
    """
    resolved = _resolve_config(config, config_file)
    coordinator = build_coordinator(runtime, resolved, registry=registry)
    opts = options or ExecutionOptions.from_config(resolved)
    return asyncio.run(coordinator.execute(code, opts))
