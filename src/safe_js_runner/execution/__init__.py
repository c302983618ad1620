from .capabilities import RuntimeCapabilities, capabilities_for_runtime, preflight_validate_runtime
from .config import DockerRuntimeSettings
from .docker_engine import DockerNodeRuntime
from .engine import SandboxProcess, SandboxRuntime
from .local_engine import LocalNodeRuntime, SubprocessHandle
from .types import ExecutionOptions, ExecutionRequest, ExecutionResult, Language

__all__ = [
    "DockerNodeRuntime",
    "DockerRuntimeSettings",
    "ExecutionOptions",
    "ExecutionRequest",
    "ExecutionResult",
    "Language",
    "LocalNodeRuntime",
    "RuntimeCapabilities",
    "SandboxProcess",
    "SandboxRuntime",
    "SubprocessHandle",
    "capabilities_for_runtime",
    "preflight_validate_runtime",
]
