from __future__ import annotations

import re
import tempfile
from dataclasses import dataclass
from pathlib import Path

DEFAULT_NODE_IMAGE = "node:22-slim"
CONTAINER_WORKDIR = "/workspace"
MANAGED_LABEL_VALUE = "true"
MANAGED_LABELS_BASE = {
    "safe_js_runner.managed": MANAGED_LABEL_VALUE,
    "safe_js_runner.runtime": "docker",
    "safe_js_runner.project": "safe-js-runner",
}
_NPM_NAME_PATTERN = re.compile(r"^(?:@[a-z0-9][a-z0-9._~-]*/)?[a-z0-9][a-z0-9._~-]*$")
_NPM_VERSION_PATTERN = re.compile(r"^[A-Za-z0-9.^~<>=*|+-]+$")
_NPM_NAME_MAX_LENGTH = 214


@dataclass(frozen=True, slots=True)
class DockerRuntimeSettings:
    """Container limits for the Docker sandbox runtime.

    `install_network` is used only for npm/npx so package installs can reach
    the registry; user programs always get `network`.

    Example:
        ```python
        settings = DockerRuntimeSettings(image="node:22-slim", memory_limit_mb=512)
        ```
    """

    image: str = DEFAULT_NODE_IMAGE
    memory_limit_mb: int = 256
    pids_limit: int = 256
    tmpfs_size_mb: int = 64
    network: str = "none"
    install_network: str = "bridge"
    docker_context: str | None = None

    def __post_init__(self) -> None:
        """Validate container limits.

        Example:
            ```python
            DockerRuntimeSettings(memory_limit_mb=128)
            ```
        """
        if not self.image.strip():
            raise ValueError("Docker image must not be empty")
        for name in ("memory_limit_mb", "pids_limit", "tmpfs_size_mb"):
            if int(getattr(self, name)) <= 0:
                raise ValueError(f"'{name}' must be a positive integer")


def default_workdir(name: str) -> Path:
    """Workspace directory under the system temp dir.

    Example:
        ```python
        path = default_workdir("safe-js-runner-workspace")
        ```
    """
    return Path(tempfile.gettempdir()) / name


def validate_package_names(packages: list[str] | None) -> list[str]:
    """Validate npm package names and return them stripped, in order.

    Example:
        ```python
        names = validate_package_names(["lodash", "@types/node"])
        ```
    """
    if not packages:
        return []
    normalized: list[str] = []
    for pkg in packages:
        name = pkg.strip()
        if not name:
            continue
        if len(name) > _NPM_NAME_MAX_LENGTH or not _NPM_NAME_PATTERN.match(name):
            raise ValueError(f"Invalid npm package name: {pkg!r}")
        if name not in normalized:
            normalized.append(name)
    return normalized


def validate_version_spec(version: str) -> str:
    """Validate an npm version or range specifier.

    Example:
        ```python
        version = validate_version_spec("^4.17.21")
        ```
    """
    cleaned = version.strip()
    if not cleaned or not _NPM_VERSION_PATTERN.match(cleaned):
        raise ValueError(f"Invalid npm version specifier: {version!r}")
    return cleaned
