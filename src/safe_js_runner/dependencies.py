from __future__ import annotations

import copy
import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Iterable

from .execution.types import (
    DependencyReport,
    ImportStats,
    Language,
    MissingPackage,
    PackageConflict,
    PackageSuggestion,
)
from .metrics import BoundedCache
from .source_text import mask_source

logger = logging.getLogger(__name__)

NATIVE_MODULES = frozenset(
    {
        "assert",
        "async_hooks",
        "buffer",
        "child_process",
        "cluster",
        "console",
        "constants",
        "crypto",
        "dgram",
        "diagnostics_channel",
        "dns",
        "domain",
        "events",
        "fs",
        "http",
        "http2",
        "https",
        "inspector",
        "module",
        "net",
        "os",
        "path",
        "perf_hooks",
        "process",
        "punycode",
        "querystring",
        "readline",
        "repl",
        "stream",
        "string_decoder",
        "timers",
        "tls",
        "tty",
        "url",
        "util",
        "v8",
        "vm",
        "worker_threads",
        "zlib",
    }
)

_QUOTED = r"""(['"`])([^'"`\n]+)\1"""
_IMPORT_PATTERNS = (
    re.compile(r"\bimport\s+(?:[\w*{}\s,$]+?\s+from\s+)?" + _QUOTED),
    re.compile(
        r"\bexport\s+(?:type\s+)?(?:\*(?:\s+as\s+\w+)?|\{[^}]*\})\s+from\s+" + _QUOTED
    ),
    re.compile(r"\brequire\s*\(\s*" + _QUOTED + r"\s*\)"),
    re.compile(r"\bimport\s*\(\s*" + _QUOTED + r"\s*\)"),
)


@dataclass(frozen=True, slots=True)
class KnownPackage:
    """Curated facts about a popular package.

    Example:
        ```python
        info = KnownPackage("HTTP client", "http-client", types="@types/axios")
        ```
    """

    description: str
    category: str
    types: str | None = None
    alternatives: tuple[str, ...] = ()


KNOWN_PACKAGES: dict[str, KnownPackage] = {
    "react": KnownPackage("Library for building user interfaces", "ui-framework", "@types/react"),
    "lodash": KnownPackage("JavaScript utility library", "utility", "@types/lodash", ("underscore",)),
    "underscore": KnownPackage("JavaScript utility library", "utility", "@types/underscore", ("lodash",)),
    "axios": KnownPackage("Promise based HTTP client", "http-client", "@types/axios"),
    "express": KnownPackage("Web framework for Node.js", "server-framework", "@types/express"),
    "moment": KnownPackage("Date handling library", "date-utility", "@types/moment", ("date-fns", "dayjs")),
    "date-fns": KnownPackage("Modular date utility library", "date-utility", None, ("moment", "dayjs")),
    "dayjs": KnownPackage("Lightweight date library", "date-utility", None, ("moment", "date-fns")),
}

CONFLICT_RULES: tuple[tuple[tuple[str, str], str], ...] = (
    (("moment", "date-fns"), "moment and date-fns provide similar functionality"),
    (("moment", "dayjs"), "moment and dayjs provide similar functionality"),
    (("date-fns", "dayjs"), "date-fns and dayjs provide similar functionality"),
    (("lodash", "underscore"), "lodash and underscore provide similar functionality"),
    (("axios", "node-fetch"), "axios and node-fetch both implement HTTP requests"),
)

_TS_LANGUAGES = frozenset({Language.TYPESCRIPT, Language.TSX})
_JSX_LANGUAGES = frozenset({Language.JSX, Language.TSX})


def is_local_import(specifier: str) -> bool:
    """Relative or absolute path imports.

    Example:
        ```python
        assert is_local_import("./utils")
        ```
    """
    return specifier.startswith(".") or specifier.startswith("/")


def normalize_package_name(specifier: str) -> str:
    """Reduce an import specifier to its package root.

    Scoped names keep their scope; `node:` prefixes are dropped.

    Example:
        ```python
        assert normalize_package_name("@scope/name/sub") == "@scope/name"
        ```
    """
    name = specifier.strip()
    if name.startswith("node:"):
        name = name[len("node:") :]
    parts = name.split("/")
    if name.startswith("@") and len(parts) >= 2:
        return f"{parts[0]}/{parts[1]}"
    return parts[0]


def is_native_module(specifier: str) -> bool:
    """Node.js builtin module, with or without the `node:` prefix.

    Example:
        ```python
        assert is_native_module("node:fs/promises")
        ```
    """
    if specifier.strip().startswith("node:"):
        return True
    return normalize_package_name(specifier) in NATIVE_MODULES


def extract_specifiers(code: str) -> list[str]:
    """Import specifiers in source order, duplicates kept.

    Imports inside comments or string literals are ignored.

    Example:
        ```python
        specs = extract_specifiers("const fs = require('fs')")
        ```
    """
    masked = mask_source(code)
    found: list[tuple[int, str]] = []
    seen_spans: set[int] = set()
    for pattern in _IMPORT_PATTERNS:
        for match in pattern.finditer(masked):
            quote, specifier = match.group(1), code[match.start(2) : match.end(2)]
            if quote == "`" and "${" in specifier:
                continue
            start = match.start(2)
            if start in seen_spans:
                continue
            seen_spans.add(start)
            found.append((start, specifier))
    found.sort()
    return [specifier for _, specifier in found]


def install_priority(name: str, language: Language) -> str:
    """Rank an install suggestion as high, medium or low.

    Example:
        ```python
        assert install_priority("react", Language.JSX) == "high"
        ```
    """
    if name == "react":
        return "high" if language in _JSX_LANGUAGES else "medium"
    if name == "typescript":
        return "high" if language in _TS_LANGUAGES else "low"
    if name.startswith("@types/") or name in {"lodash", "axios", "express"}:
        return "medium"
    return "low"


class DependencyAnalyzer:
    """Static import analysis against a tracked installed-package set.

    Example:
        ```python
        analyzer = DependencyAnalyzer(installed=["lodash"])
        report = analyzer.analyze("const x = require('left-pad')", Language.JAVASCRIPT)
        ```
    """

    def __init__(self, installed: Iterable[str] | None = None, cache_size: int = 50) -> None:
        """Create an analyzer seeded with installed package names.

        Example:
            ```python
            analyzer = DependencyAnalyzer(installed=["react"], cache_size=20)
            ```
        """
        self._installed: set[str] = set(installed or [])
        self._cache: BoundedCache[tuple[str, str], DependencyReport] = BoundedCache(
            cache_size, name="dependency"
        )

    @property
    def installed(self) -> frozenset[str]:
        """Currently known installed packages.

        Example:
            ```python
            names = analyzer.installed
            ```
        """
        return frozenset(self._installed)

    def is_installed(self, name: str) -> bool:
        """Whether a package is in the installed set.

        Example:
            ```python
            assert not analyzer.is_installed("left-pad")
            ```
        """
        return name in self._installed

    def mark_installed(self, *names: str) -> None:
        """Add packages to the installed set and invalidate cached reports.

        Example:
            ```python
            analyzer.mark_installed("left-pad", "lodash")
            ```
        """
        before = len(self._installed)
        self._installed.update(normalize_package_name(name) for name in names)
        if len(self._installed) != before:
            self._cache.clear()

    def mark_uninstalled(self, *names: str) -> None:
        """Remove packages from the installed set and invalidate cached reports.

        Example:
            ```python
            analyzer.mark_uninstalled("left-pad")
            ```
        """
        before = len(self._installed)
        self._installed.difference_update(normalize_package_name(name) for name in names)
        if len(self._installed) != before:
            self._cache.clear()

    def analyze(self, code: str, language: Language | str = Language.JAVASCRIPT) -> DependencyReport:
        """Extract, classify and evaluate every import in the code.

        Example:
            ```python
            report = analyzer.analyze("import _ from 'lodash/debounce'", "typescript")
            ```
        """
        lang = Language(language)
        key = (lang.value, hashlib.sha256(code.encode("utf-8")).hexdigest())
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Dependency analysis cache hit for %s", lang.value)
            return copy.deepcopy(cached)

        report = self._analyze(code, lang)
        self._cache.put(key, report)
        return copy.deepcopy(report)

    def missing_packages(self, code: str, language: Language | str = Language.JAVASCRIPT) -> list[str]:
        """Names of referenced third-party packages that are not installed.

        Example:
            ```python
            names = analyzer.missing_packages("require('left-pad')")
            ```
        """
        return self.analyze(code, language).missing_names

    def clear_cache(self) -> None:
        """Drop cached reports.

        Example:
            ```python
            analyzer.clear_cache()
            ```
        """
        self._cache.clear()

    def cache_stats(self) -> dict[str, int]:
        """Size and hit counters of the analysis cache.

        Example:
            ```python
            stats = analyzer.cache_stats()
            ```
        """
        return self._cache.stats()

    def _analyze(self, code: str, language: Language) -> DependencyReport:
        """Build a fresh report without touching the cache.

        Example:
            ```python
            report = analyzer._analyze("require('fs')", Language.JAVASCRIPT)
            ```
        """
        report = DependencyReport(metadata=ImportStats())
        third_party: list[str] = []

        for specifier in extract_specifiers(code):
            report.metadata.total_imports += 1
            if is_local_import(specifier):
                report.metadata.local_imports += 1
                continue
            name = normalize_package_name(specifier)
            if not name:
                continue
            report.found.add(name)
            if is_native_module(specifier):
                report.metadata.native_modules += 1
            else:
                report.metadata.third_party_packages += 1
                if name not in third_party:
                    third_party.append(name)

        for name in third_party:
            if self.is_installed(name):
                continue
            report.missing.append(MissingPackage(name=name, suggested=True))
            known = KNOWN_PACKAGES.get(name)
            report.suggestions.append(
                PackageSuggestion(
                    name=name,
                    category=known.category if known else "unknown",
                    reason=known.description if known else f"Install {name} package",
                    priority=install_priority(name, language),
                )
            )

        if language in _TS_LANGUAGES:
            for name in third_party:
                known = KNOWN_PACKAGES.get(name)
                if known and known.types:
                    self._suggest(
                        report,
                        PackageSuggestion(
                            name=known.types,
                            category="types",
                            reason=f"Type definitions for {name}",
                            priority="medium",
                        ),
                    )
            self._suggest(
                report,
                PackageSuggestion(
                    name="@types/node",
                    category="types",
                    reason="Type definitions for Node.js",
                    priority="medium",
                ),
            )

        if language in _JSX_LANGUAGES:
            self._suggest(
                report,
                PackageSuggestion(
                    name="react",
                    category="framework",
                    reason="JSX elements compile to React.createElement calls",
                    priority="high",
                ),
            )

        report.conflicts = self._detect_conflicts(report.found)
        return report

    def _suggest(self, report: DependencyReport, suggestion: PackageSuggestion) -> None:
        """Append a suggestion unless installed or already suggested.

        Example:
            ```python
            analyzer._suggest(report, PackageSuggestion("@types/node", "types", "Node typings"))
            ```
        """
        if self.is_installed(suggestion.name):
            return
        if any(item.name == suggestion.name for item in report.suggestions):
            return
        report.suggestions.append(suggestion)

    def _detect_conflicts(self, found: set[str]) -> list[PackageConflict]:
        """Advisory warnings for overlapping packages used together.

        Example:
            ```python
            conflicts = analyzer._detect_conflicts({"moment", "dayjs"})
            ```
        """
        conflicts: list[PackageConflict] = []
        for packages, message in CONFLICT_RULES:
            if all(name in found for name in packages):
                conflicts.append(PackageConflict(packages=packages, type="alternative", message=message))
        return conflicts
