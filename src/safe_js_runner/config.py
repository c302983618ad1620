from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


def _default_config_path() -> Path:
    """Return bundled default engine config TOML path.

    Example:
        ```python
        path = _default_config_path()
        ```
    """
    return Path(__file__).with_name("default_config.toml")


def _read_config_toml(path: Path) -> dict[str, Any]:
    """Read engine config TOML and return the `[engine]` table.

    Example:
        ```python
        raw = _read_config_toml(Path("/tmp/sjr.toml"))
        ```
    """
    if not path.exists():
        return {
            "default_filename": "index.js",
            "timeout_ms": 30000,
            "detection_cache_size": 50,
            "transform_cache_size": 50,
            "jsx_factory": "React.createElement",
            "jsx_fragment": "React.Fragment",
            "node_command": "node",
            "transform_command": ["esbuild"],
            "transform_timeout_seconds": 30,
            "kill_grace_ms": 1000,
            "installed_packages": [],
            "workdir_name": "safe-js-runner-workspace",
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    engine_obj = raw.get("engine", raw)
    if not isinstance(engine_obj, dict):
        raise ValueError("Engine config must be a TOML table")
    return engine_obj


def _list_of_str(value: Any, field_name: str) -> list[str]:
    """Validate and normalize a list-of-strings config field.

    Example:
        ```python
        command = _list_of_str(["esbuild"], "transform_command")
        ```
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out.append(item)
    return out


_DEFAULT_CONFIG_RAW = _read_config_toml(_default_config_path())
DEFAULT_FILENAME = str(_DEFAULT_CONFIG_RAW.get("default_filename", "index.js"))
DEFAULT_TIMEOUT_MS = int(_DEFAULT_CONFIG_RAW.get("timeout_ms", 30000))
DEFAULT_DETECTION_CACHE_SIZE = int(_DEFAULT_CONFIG_RAW.get("detection_cache_size", 50))
DEFAULT_TRANSFORM_CACHE_SIZE = int(_DEFAULT_CONFIG_RAW.get("transform_cache_size", 50))
DEFAULT_JSX_FACTORY = str(_DEFAULT_CONFIG_RAW.get("jsx_factory", "React.createElement"))
DEFAULT_JSX_FRAGMENT = str(_DEFAULT_CONFIG_RAW.get("jsx_fragment", "React.Fragment"))
DEFAULT_NODE_COMMAND = str(_DEFAULT_CONFIG_RAW.get("node_command", "node"))
DEFAULT_TRANSFORM_COMMAND = _list_of_str(
    _DEFAULT_CONFIG_RAW.get("transform_command", ["esbuild"]), "transform_command"
)
DEFAULT_TRANSFORM_TIMEOUT_SECONDS = int(
    _DEFAULT_CONFIG_RAW.get("transform_timeout_seconds", 30)
)
DEFAULT_KILL_GRACE_MS = int(_DEFAULT_CONFIG_RAW.get("kill_grace_ms", 1000))
DEFAULT_INSTALLED_PACKAGES = _list_of_str(
    _DEFAULT_CONFIG_RAW.get("installed_packages", []), "installed_packages"
)
DEFAULT_WORKDIR_NAME = str(
    _DEFAULT_CONFIG_RAW.get("workdir_name", "safe-js-runner-workspace")
)


@dataclass(slots=True)
class EngineConfig:
    """Engine-wide settings for detection, transforms and execution.

    Example:
        ```python
        config = EngineConfig(timeout_ms=5000, transform_command=["npx", "esbuild"])
        ```
    """

    default_filename: str = DEFAULT_FILENAME
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    detection_cache_size: int = DEFAULT_DETECTION_CACHE_SIZE
    transform_cache_size: int = DEFAULT_TRANSFORM_CACHE_SIZE
    jsx_factory: str = DEFAULT_JSX_FACTORY
    jsx_fragment: str = DEFAULT_JSX_FRAGMENT
    node_command: str = DEFAULT_NODE_COMMAND
    transform_command: list[str] = field(
        default_factory=lambda: DEFAULT_TRANSFORM_COMMAND.copy()
    )
    transform_timeout_seconds: int = DEFAULT_TRANSFORM_TIMEOUT_SECONDS
    kill_grace_ms: int = DEFAULT_KILL_GRACE_MS
    installed_packages: list[str] = field(
        default_factory=lambda: DEFAULT_INSTALLED_PACKAGES.copy()
    )
    workdir_name: str = DEFAULT_WORKDIR_NAME
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate numeric limits and commands after initialization.

        Example:
            ```python
            EngineConfig(timeout_ms=1000)
            ```
        """
        for name in (
            "timeout_ms",
            "detection_cache_size",
            "transform_cache_size",
            "transform_timeout_seconds",
            "kill_grace_ms",
        ):
            if int(getattr(self, name)) <= 0:
                raise ValueError(f"'{name}' must be a positive integer")
        if not self.node_command.strip():
            raise ValueError("'node_command' must not be empty")
        if not self.default_filename.strip():
            raise ValueError("'default_filename' must not be empty")
        self.transform_command = _list_of_str(self.transform_command, "transform_command")
        if not self.transform_command:
            raise ValueError("'transform_command' must not be empty")
        self.installed_packages = _list_of_str(self.installed_packages, "installed_packages")

    @classmethod
    def from_file(cls, config_path: str) -> "EngineConfig":
        """Create a config instance from a TOML file.

        Example:
            ```python
            config = EngineConfig.from_file("/tmp/sjr.toml")
            ```
        """
        raw = _read_config_toml(Path(config_path))
        return cls(
            default_filename=str(raw.get("default_filename", DEFAULT_FILENAME)),
            timeout_ms=int(raw.get("timeout_ms", DEFAULT_TIMEOUT_MS)),
            detection_cache_size=int(
                raw.get("detection_cache_size", DEFAULT_DETECTION_CACHE_SIZE)
            ),
            transform_cache_size=int(
                raw.get("transform_cache_size", DEFAULT_TRANSFORM_CACHE_SIZE)
            ),
            jsx_factory=str(raw.get("jsx_factory", DEFAULT_JSX_FACTORY)),
            jsx_fragment=str(raw.get("jsx_fragment", DEFAULT_JSX_FRAGMENT)),
            node_command=str(raw.get("node_command", DEFAULT_NODE_COMMAND)),
            transform_command=_list_of_str(
                raw.get("transform_command", DEFAULT_TRANSFORM_COMMAND),
                "transform_command",
            ),
            transform_timeout_seconds=int(
                raw.get("transform_timeout_seconds", DEFAULT_TRANSFORM_TIMEOUT_SECONDS)
            ),
            kill_grace_ms=int(raw.get("kill_grace_ms", DEFAULT_KILL_GRACE_MS)),
            installed_packages=_list_of_str(
                raw.get("installed_packages", []), "installed_packages"
            ),
            workdir_name=str(raw.get("workdir_name", DEFAULT_WORKDIR_NAME)),
            config_path=config_path,
        )
