from __future__ import annotations

import hashlib
import logging
import shutil
import subprocess
from typing import Protocol

from .config import EngineConfig
from .errors import TransformError
from .execution.types import DetectionResult, Language, TransformResult
from .metrics import BoundedCache

logger = logging.getLogger(__name__)

_ESBUILD_LOADERS = {
    Language.TYPESCRIPT: "ts",
    Language.JSX: "jsx",
    Language.TSX: "tsx",
}


class Transformer(Protocol):
    def transform(self, code: str, *, filename: str) -> str:
        """Convert one source dialect into plain executable JavaScript.

        Example:
            ```python
            js = transformer.transform("let a: number = 1", filename="main.ts")
            ```
        """
        ...


class PassthroughTransformer:
    """Return the code unchanged.

    Example:
        ```python
        js = PassthroughTransformer().transform("1 + 1", filename="index.js")
        ```
    """

    def transform(self, code: str, *, filename: str) -> str:
        """Return input as-is.

        Example:
            ```python
            assert PassthroughTransformer().transform("x", filename="a.js") == "x"
            ```
        """
        return code


class EsbuildTransformer:
    """Type-erase and lower JSX by shelling out to esbuild over stdin/stdout.

    Example:
        ```python
        transformer = EsbuildTransformer(loader="tsx", command=["esbuild"])
        ```
    """

    def __init__(
        self,
        *,
        loader: str,
        command: list[str] | None = None,
        jsx_factory: str = "React.createElement",
        jsx_fragment: str = "React.Fragment",
        timeout_seconds: int = 30,
    ) -> None:
        """Store the loader and command line pieces.

        Example:
            ```python
            transformer = EsbuildTransformer(loader="ts", timeout_seconds=10)
            ```
        """
        if loader not in {"ts", "jsx", "tsx"}:
            raise ValueError("loader must be one of 'ts', 'jsx' or 'tsx'")
        self._loader = loader
        self._command = list(command or ["esbuild"])
        if not self._command:
            raise ValueError("transform command must not be empty")
        self._jsx_factory = jsx_factory
        self._jsx_fragment = jsx_fragment
        self._timeout_seconds = timeout_seconds

    @property
    def loader(self) -> str:
        """The esbuild loader name.

        Example:
            ```python
            assert EsbuildTransformer(loader="jsx").loader == "jsx"
            ```
        """
        return self._loader

    def command_line(self, filename: str) -> list[str]:
        """Full argv for one transform run.

        Example:
            ```python
            argv = transformer.command_line("App.tsx")
            ```
        """
        return [
            *self._command,
            f"--loader={self._loader}",
            "--format=cjs",
            f"--jsx-factory={self._jsx_factory}",
            f"--jsx-fragment={self._jsx_fragment}",
            f"--sourcefile={filename}",
        ]

    def transform(self, code: str, *, filename: str) -> str:
        """Run esbuild and return its stdout.

        Example:
            ```python
            js = transformer.transform("const a: number = 1", filename="main.ts")
            ```
        """
        if shutil.which(self._command[0]) is None:
            raise RuntimeError(
                f"Transform backend '{self._command[0]}' was not found. Install esbuild and ensure it is on PATH."
            )
        try:
            completed = subprocess.run(
                self.command_line(filename),
                input=code,
                capture_output=True,
                text=True,
                timeout=self._timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise RuntimeError(f"Transform timed out after {self._timeout_seconds}s") from exc
        if completed.returncode != 0:
            raise RuntimeError(completed.stderr.strip() or f"esbuild exited with {completed.returncode}")
        return completed.stdout


class TransformerRegistry:
    """Language to Transformer mapping, fixed at startup.

    Example:
        ```python
        registry = TransformerRegistry()
        registry.register(Language.TYPESCRIPT, EsbuildTransformer(loader="ts"))
        ```
    """

    def __init__(self) -> None:
        """Create an empty registry.

        Example:
            ```python
            registry = TransformerRegistry()
            ```
        """
        self._transformers: dict[Language, Transformer] = {}

    def register(self, language: Language | str, transformer: Transformer) -> None:
        """Bind a transformer to a language, replacing any previous one.

        Example:
            ```python
            registry.register("jsx", fake_transformer)
            ```
        """
        self._transformers[Language(language)] = transformer

    def get(self, language: Language | str) -> Transformer:
        """Return the transformer for a language.

        Example:
            ```python
            transformer = registry.get(Language.TSX)
            ```
        """
        key = Language(language)
        transformer = self._transformers.get(key)
        if transformer is None:
            raise TransformError(key.value, "No transformer registered")
        return transformer

    def languages(self) -> list[Language]:
        """Languages with a registered transformer.

        Example:
            ```python
            langs = registry.languages()
            ```
        """
        return list(self._transformers)

    @classmethod
    def default(cls, config: EngineConfig | None = None) -> "TransformerRegistry":
        """Passthrough for javascript, esbuild for the other dialects.

        Example:
            ```python
            registry = TransformerRegistry.default(EngineConfig())
            ```
        """
        cfg = config or EngineConfig()
        registry = cls()
        registry.register(Language.JAVASCRIPT, PassthroughTransformer())
        for language, loader in _ESBUILD_LOADERS.items():
            registry.register(
                language,
                EsbuildTransformer(
                    loader=loader,
                    command=cfg.transform_command,
                    jsx_factory=cfg.jsx_factory,
                    jsx_fragment=cfg.jsx_fragment,
                    timeout_seconds=cfg.transform_timeout_seconds,
                ),
            )
        return registry


def transform_cache_key(language: Language, code: str) -> str:
    """Cache key for a (language, content hash) pair.

    Example:
        ```python
        key = transform_cache_key(Language.TYPESCRIPT, "let a: number = 1")
        ```
    """
    digest = hashlib.sha256(code.encode("utf-8")).hexdigest()[:16]
    return f"{language.value}:{digest}"


class TransformPipeline:
    """Convert detected source into executable JavaScript, with caching.

    Failures are wrapped in TransformError and never cached or retried.

    Example:
        ```python
        pipeline = TransformPipeline(TransformerRegistry.default(), cache_size=50)
        result = pipeline.transform(code, detection, "main.ts")
        ```
    """

    def __init__(self, registry: TransformerRegistry, cache_size: int = 50) -> None:
        """Create a pipeline over a registry.

        Example:
            ```python
            pipeline = TransformPipeline(registry)
            ```
        """
        self._registry = registry
        self._cache: BoundedCache[str, str] = BoundedCache(cache_size, name="transform")

    def transform(self, code: str, detection: DetectionResult, filename: str) -> TransformResult:
        """Transform code according to the detected language.

        Example:
            ```python
            result = pipeline.transform("const a: number = 1", detection, "main.ts")
            ```
        """
        language = detection.language
        key = transform_cache_key(language, code)
        if language is Language.JAVASCRIPT:
            return TransformResult(transformed_code=code, cache_key=key, language=language)

        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Transform cache hit for %s", key)
            return TransformResult(
                transformed_code=cached, cache_key=key, language=language, cached=True
            )

        transformer = self._registry.get(language)
        try:
            output = transformer.transform(code, filename=filename)
        except TransformError:
            raise
        except Exception as exc:
            raise TransformError(language.value, str(exc) or type(exc).__name__) from exc
        if not isinstance(output, str):
            raise TransformError(language.value, "Transformer returned non-string output")

        self._cache.put(key, output)
        return TransformResult(transformed_code=output, cache_key=key, language=language)

    def clear_cache(self) -> None:
        """Drop all cached transforms.

        Example:
            ```python
            pipeline.clear_cache()
            ```
        """
        self._cache.clear()

    def cache_stats(self) -> dict[str, int]:
        """Size and hit counters of the transform cache.

        Example:
            ```python
            stats = pipeline.cache_stats()
            ```
        """
        return self._cache.stats()
