from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..errors import SandboxSpawnError


@dataclass(frozen=True, slots=True)
class RuntimeCapabilities:
    """Capability flags advertised by a sandbox runtime.

    Example:
        ```python
        caps = RuntimeCapabilities(True, True, True, True)
        ```
    """

    supports_network_isolation: bool
    supports_memory_limit: bool
    supports_timeout: bool
    supports_package_install: bool


def runtime_name(runtime: Any) -> str:
    """Short lowercase name of a runtime instance.

    Example:
        ```python
        name = runtime_name(LocalNodeRuntime("/tmp/ws"))
        ```
    """
    return str(getattr(runtime, "name", type(runtime).__name__)).lower()


def capabilities_for_runtime(runtime: str) -> RuntimeCapabilities:
    """Return capability flags for a runtime name.

    Example:
        ```python
        caps = capabilities_for_runtime("docker")
        ```
    """
    if runtime in {"local", "localnoderuntime"}:
        return RuntimeCapabilities(False, False, True, True)
    if runtime in {"docker", "dockernoderuntime"}:
        return RuntimeCapabilities(True, True, True, True)
    return RuntimeCapabilities(False, False, False, False)


def check_runtime_available(runtime: Any) -> tuple[bool, str | None]:
    """Call the runtime's optional availability probe.

    Runtimes without `check_available` are assumed available.

    Example:
        ```python
        ok, reason = check_runtime_available(runtime)
        ```
    """
    probe = getattr(runtime, "check_available", None)
    if probe is None:
        return True, None
    return probe()


def preflight_validate_runtime(runtime: Any) -> None:
    """Raise SandboxSpawnError when the runtime reports it is unavailable.

    Example:
        ```python
        preflight_validate_runtime(runtime)
        ```
    """
    ok, reason = check_runtime_available(runtime)
    if not ok:
        raise SandboxSpawnError(reason or "Sandbox runtime is not available")
