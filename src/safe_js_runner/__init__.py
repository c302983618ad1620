from .config import EngineConfig
from .coordinator import ExecutionCoordinator, ExecutionState
from .errors import (
    ConcurrentExecutionError,
    DependencyMissingWarning,
    DetectionError,
    ExecutionTimeoutError,
    InstallError,
    SafeJsRunnerError,
    SandboxSpawnError,
    TransformError,
)
from .events import EventChannel
from .execution.docker_engine import DockerNodeRuntime
from .execution.local_engine import LocalNodeRuntime
from .execution.types import ExecutionOptions, ExecutionResult, Language, StructuredEvent
from .runner import build_coordinator, create_runtime, run_code
from .terminal import CommandRunner

__all__ = [
    "CommandRunner",
    "ConcurrentExecutionError",
    "DependencyMissingWarning",
    "DetectionError",
    "DockerNodeRuntime",
    "EngineConfig",
    "EventChannel",
    "ExecutionCoordinator",
    "ExecutionOptions",
    "ExecutionResult",
    "ExecutionState",
    "ExecutionTimeoutError",
    "InstallError",
    "Language",
    "LocalNodeRuntime",
    "SafeJsRunnerError",
    "SandboxSpawnError",
    "StructuredEvent",
    "TransformError",
    "build_coordinator",
    "create_runtime",
    "run_code",
]
