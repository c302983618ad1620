from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Any


class Language(str, enum.Enum):
    """Source dialects understood by the engine.

    Example:
        ```python
        lang = Language("tsx")
        ```
    """

    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    JSX = "jsx"
    TSX = "tsx"


STRUCTURED_EVENT_TYPES = frozenset(
    {"console.log", "console.error", "console.warn", "console.table", "runtime.error"}
)


def now_ms() -> float:
    """Return wall-clock time in epoch milliseconds.

    Example:
        ```python
        stamp = now_ms()
        ```
    """
    return time.time() * 1000.0


@dataclass(frozen=True, slots=True)
class SourceUnit:
    """Source text submitted to the pipeline.

    Example:
        ```python
        unit = SourceUnit(code="console.log(1)", filename="index.js")
        ```
    """

    code: str
    filename: str
    language_hint: str | None = None


@dataclass(frozen=True, slots=True)
class DetectionResult:
    """Dialect verdict for one source unit.

    Example:
        ```python
        result = DetectionResult(Language.JAVASCRIPT, 0.9, "JavaScript", "javascript")
        ```
    """

    language: Language
    confidence: float
    display_name: str
    editor_language_id: str
    detected_by: str = "filename"


@dataclass(frozen=True, slots=True)
class TransformResult:
    """Executable JavaScript produced from a source unit.

    Example:
        ```python
        out = TransformResult(transformed_code="var x = 1;", cache_key="typescript:ab12")
        ```
    """

    transformed_code: str
    cache_key: str
    language: Language = Language.JAVASCRIPT
    cached: bool = False


@dataclass(frozen=True, slots=True)
class MissingPackage:
    """Third-party package referenced but not installed.

    Example:
        ```python
        missing = MissingPackage(name="left-pad", suggested=True)
        ```
    """

    name: str
    suggested: bool
    reason: str = "Not installed"


@dataclass(frozen=True, slots=True)
class PackageConflict:
    """Advisory warning about functionally overlapping packages.

    Example:
        ```python
        conflict = PackageConflict(packages=("moment", "dayjs"), type="alternative")
        ```
    """

    packages: tuple[str, ...]
    type: str
    message: str = ""


@dataclass(frozen=True, slots=True)
class PackageSuggestion:
    """Proposed install for the analyzed code.

    Example:
        ```python
        hint = PackageSuggestion(name="@types/node", category="types", reason="Node.js typings")
        ```
    """

    name: str
    category: str
    reason: str
    priority: str = "low"


@dataclass(slots=True)
class ImportStats:
    """Counters collected while extracting imports.

    Example:
        ```python
        stats = ImportStats(total_imports=2, native_modules=1, third_party_packages=1)
        ```
    """

    total_imports: int = 0
    native_modules: int = 0
    third_party_packages: int = 0
    local_imports: int = 0


@dataclass(slots=True)
class DependencyReport:
    """Static dependency analysis of one source unit.

    Example:
        ```python
        report = DependencyReport(found={"fs", "left-pad"})
        ```
    """

    found: set[str] = field(default_factory=set)
    missing: list[MissingPackage] = field(default_factory=list)
    conflicts: list[PackageConflict] = field(default_factory=list)
    suggestions: list[PackageSuggestion] = field(default_factory=list)
    metadata: ImportStats = field(default_factory=ImportStats)

    @property
    def missing_names(self) -> list[str]:
        """Names of the missing packages, in discovery order.

        Example:
            ```python
            names = report.missing_names
            ```
        """
        return [item.name for item in self.missing]


@dataclass(frozen=True, slots=True)
class ExecutionOptions:
    """Per-call execution options.

    Example:
        ```python
        opts = ExecutionOptions(filename="main.ts", timeout_ms=5000)
        ```
    """

    filename: str = "index.js"
    timeout_ms: int = 30000
    capture_output: bool = True
    check_dependencies: bool = True
    auto_install_deps: bool = False

    def __post_init__(self) -> None:
        """Validate option values.

        Example:
            ```python
            ExecutionOptions(timeout_ms=100)
            ```
        """
        if not self.filename.strip():
            raise ValueError("filename must be a non-empty string")
        if int(self.timeout_ms) <= 0:
            raise ValueError("timeout_ms must be positive")

    @classmethod
    def from_config(cls, config: Any, **overrides: Any) -> "ExecutionOptions":
        """Seed filename and timeout from an `EngineConfig`.

        Example:
            ```python
            opts = ExecutionOptions.from_config(EngineConfig(), check_dependencies=False)
            ```
        """
        values: dict[str, Any] = {
            "filename": config.default_filename,
            "timeout_ms": config.timeout_ms,
        }
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """One execute() call. Never mutated after creation.

    Example:
        ```python
        req = ExecutionRequest.create("console.log(1)", ExecutionOptions())
        ```
    """

    id: str
    code: str
    options: ExecutionOptions
    created_at: float

    @classmethod
    def create(cls, code: str, options: ExecutionOptions) -> "ExecutionRequest":
        """Build a request with a fresh id and start time.

        Example:
            ```python
            req = ExecutionRequest.create("1 + 1", ExecutionOptions())
            ```
        """
        return cls(id=uuid.uuid4().hex, code=code, options=options, created_at=now_ms())


@dataclass(frozen=True, slots=True)
class StructuredEvent:
    """Typed record emitted by instrumented code on one output line.

    Example:
        ```python
        event = StructuredEvent("console.log", {"args": ["hi"]}, 1700000000000)
        ```
    """

    type: str
    payload: dict[str, Any]
    timestamp: float

    @property
    def args(self) -> list[Any]:
        """Console arguments, empty for non-console events.

        Example:
            ```python
            assert event.args == ["hi"]
            ```
        """
        value = self.payload.get("args", [])
        return value if isinstance(value, list) else [value]

    @property
    def data(self) -> Any:
        """Tabular data carried by console.table.

        Example:
            ```python
            rows = event.data
            ```
        """
        return self.payload.get("data")

    @property
    def columns(self) -> list[str] | None:
        """Column filter passed to console.table, if any.

        Example:
            ```python
            cols = event.columns
            ```
        """
        return self.payload.get("columns")

    @property
    def error(self) -> dict[str, Any] | None:
        """Serialized error carried by runtime.error.

        Example:
            ```python
            message = event.error["message"]
            ```
        """
        value = self.payload.get("error")
        if value is None or isinstance(value, dict):
            return value
        return {"message": str(value)}

    def to_dict(self) -> dict[str, Any]:
        """Return the wire shape of this event.

        Example:
            ```python
            wire = event.to_dict()
            ```
        """
        return {"type": self.type, **self.payload, "timestamp": self.timestamp}


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of one execution, failure-shaped for process-level problems.

    Example:
        ```python
        result = ExecutionResult(exit_code=0, stdout="hi\\n", stderr="", execution_time_ms=12.5, success=True)
        ```
    """

    exit_code: int
    stdout: str
    stderr: str
    execution_time_ms: float
    success: bool
    timeout: bool = False
    cancelled: bool = False
    timestamp: float = field(default_factory=now_ms)
    error: str | None = None
    language: Language | None = None
    events: list[StructuredEvent] = field(default_factory=list)


@dataclass(slots=True)
class LanguageStats:
    """Running statistics for one dialect.

    Example:
        ```python
        stats = LanguageStats(executions=3, successful=2, failed=1, average_execution_time_ms=40.0)
        ```
    """

    executions: int = 0
    successful: int = 0
    failed: int = 0
    average_execution_time_ms: float = 0.0


@dataclass(slots=True)
class ExecutionMetrics:
    """Aggregate statistics across executions.

    Example:
        ```python
        metrics = ExecutionMetrics()
        ```
    """

    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    timed_out_executions: int = 0
    cancelled_executions: int = 0
    average_execution_time_ms: float = 0.0
    per_language: dict[str, LanguageStats] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ExecutableUnit:
    """Instrumented program ready to be written into the sandbox.

    `code` is the entry program; it loads `module_code` from `module_filename`.

    Example:
        ```python
        unit = ExecutableUnit(code="...", language=Language.JAVASCRIPT, filename="index.js")
        ```
    """

    code: str
    language: Language
    filename: str
    jsx_runtime_injected: bool = False
    module_code: str = ""
    module_filename: str = ""
