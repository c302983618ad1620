from __future__ import annotations

import copy
import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Any

from .errors import DetectionError
from .execution.types import DetectionResult, Language, SourceUnit
from .metrics import BoundedCache
from .source_text import mask_source

logger = logging.getLogger(__name__)

CONTENT_THRESHOLD = 0.3
FILENAME_CONFIDENCE = 0.9
FALLBACK_CONFIDENCE = 0.1


@dataclass(frozen=True, slots=True)
class LanguageInfo:
    """Static facts about one dialect.

    Example:
        ```python
        info = LanguageInfo(("ts",), ("text/typescript",), "typescript", "TypeScript")
        ```
    """

    extensions: tuple[str, ...]
    mime_types: tuple[str, ...]
    editor_language_id: str
    display_name: str


LANGUAGES: dict[Language, LanguageInfo] = {
    Language.JAVASCRIPT: LanguageInfo(
        ("js", "mjs", "cjs"),
        ("text/javascript", "application/javascript"),
        "javascript",
        "JavaScript",
    ),
    Language.TYPESCRIPT: LanguageInfo(
        ("ts", "mts", "cts"), ("text/typescript",), "typescript", "TypeScript"
    ),
    Language.JSX: LanguageInfo(("jsx",), ("text/jsx",), "javascript", "JavaScript React"),
    Language.TSX: LanguageInfo(("tsx",), ("text/tsx",), "typescript", "TypeScript React"),
}

_PRIMITIVE_TYPE = r"(?:string|number|boolean|object|any|unknown|never|void|bigint|symbol)(?:\[\])*(?![\w$])"

_TYPESCRIPT_PATTERNS = tuple(
    re.compile(pattern, re.MULTILINE)
    for pattern in (
        r"\binterface\s+\w+",
        r"\btype\s+\w+\s*(?:<[^>]*>)?\s*=",
        # annotations need a declaration, parameter or return-type position
        r"\b(?:let|const|var)\s+[\w$]+\s*:\s*" + _PRIMITIVE_TYPE
        + r"|[(,]\s*[\w$]+\??\s*:\s*" + _PRIMITIVE_TYPE + r"\s*[,)=|]"
        + r"|\)\s*:\s*" + _PRIMITIVE_TYPE + r"\s*(?:\{|=>)",
        r"\benum\s+\w+",
        r"\bnamespace\s+\w+",
        r"\bdeclare\s+(?:module|namespace|var|let|const|function|class)\b",
        r"\bimport\s+type\s+",
        r"\bexport\s+type\s+",
        r"\w<[\w\s,\[\]]+(?:\|[\w\s,\[\]]+)*>\s*\(",
        r"\b(?:public|private|protected|readonly)\s+\w+\s*[:;=(]",
    )
)


_JSX_PATTERNS = tuple(
    re.compile(pattern, re.MULTILINE)
    for pattern in (
        # element in expression position; `<T>(` is a generic arrow, not a tag
        r"(?:^|[=(>?:,&|]|\breturn)\s*<[A-Za-z][\w.]*(?:\s[^<>]*)?/?>(?!\s*\()",
        r"</[A-Za-z][\w.]*\s*>",
        r"<[A-Z][\w.]*(?:\s[^<>]*)?/>",
        r"\bReact\.createElement\s*\(",
        r"<>|</>",
    )
)

_REACT_PATTERNS = tuple(
    re.compile(pattern, re.MULTILINE)
    for pattern in (
        r"import\s+.*from\s+['\"`]react['\"`]",
        r"\buse(?:State|Effect|Memo|Callback|Ref|Context|Reducer)\s*\(",
        r"\bthis\.props\b",
        r"\bthis\.state\b",
    )
)

_LANGUAGE_SUGGESTIONS: dict[Language, dict[str, Any]] = {
    Language.JAVASCRIPT: {
        "dependencies": ["@types/node"],
        "settings": {"target": "ES2020", "moduleResolution": "node"},
    },
    Language.TYPESCRIPT: {
        "dependencies": ["typescript", "@types/node"],
        "settings": {"strict": True, "noImplicitAny": True, "strictNullChecks": True},
    },
    Language.JSX: {
        "dependencies": ["react", "@types/react"],
        "settings": {"jsx": "react", "jsxFactory": "React.createElement"},
    },
    Language.TSX: {
        "dependencies": ["typescript", "react", "@types/react", "@types/node"],
        "settings": {"jsx": "react", "strict": True, "jsxFactory": "React.createElement"},
    },
}


def _count_matches(code: str, patterns: tuple[re.Pattern[str], ...]) -> int:
    """Count how many distinct patterns match the code.

    Example:
        ```python
        n = _count_matches("interface A {}", _TYPESCRIPT_PATTERNS)
        ```
    """
    return sum(1 for pattern in patterns if pattern.search(code))


def _score(matches: int) -> float:
    """Map a pattern match count to a confidence score.

    Example:
        ```python
        assert _score(1) == 0.5
        ```
    """
    if matches <= 0:
        return 0.0
    return min(0.3 + 0.2 * matches, 0.9)


def extension_of(filename: str) -> str:
    """Return the lowercase extension of a filename, without the dot.

    Example:
        ```python
        assert extension_of("App.TSX") == "tsx"
        ```
    """
    name = filename.rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


def detect_by_filename(filename: str) -> tuple[Language, float]:
    """Classify by extension alone.

    Example:
        ```python
        lang, confidence = detect_by_filename("main.ts")
        ```
    """
    ext = extension_of(filename)
    for language, info in LANGUAGES.items():
        if ext in info.extensions:
            return language, FILENAME_CONFIDENCE
    return Language.JAVASCRIPT, FALLBACK_CONFIDENCE


def detect_by_content(code: str) -> tuple[Language, float]:
    """Classify by TypeScript, JSX and React content patterns.

    Comments and literal contents are ignored, so markup or type-like text
    inside a string does not count.

    Example:
        ```python
        lang, confidence = detect_by_content("interface X {}")
        ```
    """
    if not code.strip():
        return Language.JAVASCRIPT, FALLBACK_CONFIDENCE

    masked = mask_source(code)
    ts_score = _score(_count_matches(masked, _TYPESCRIPT_PATTERNS))
    jsx_matches = _count_matches(masked, _JSX_PATTERNS)
    jsx_score = _score(jsx_matches)
    if jsx_matches:
        # the react import needs its module string
        react_matches = _count_matches(mask_source(code, mask_strings=False), _REACT_PATTERNS)
        jsx_score = min(jsx_score + min(react_matches * 0.1, 0.3), 1.0)

    if ts_score > 0.2 and jsx_matches:
        return Language.TSX, min(ts_score + jsx_score, 0.95)
    if jsx_score > ts_score:
        return Language.JSX, jsx_score
    if ts_score > FALLBACK_CONFIDENCE:
        return Language.TYPESCRIPT, ts_score
    return Language.JAVASCRIPT, FALLBACK_CONFIDENCE


def _merge(file_language: Language, content_language: Language) -> Language:
    """Combine the TypeScript and JSX signals of both verdicts.

    Example:
        ```python
        assert _merge(Language.TYPESCRIPT, Language.JSX) is Language.TSX
        ```
    """
    langs = {file_language, content_language}
    has_ts = bool(langs & {Language.TYPESCRIPT, Language.TSX})
    has_jsx = bool(langs & {Language.JSX, Language.TSX})
    if has_ts and has_jsx:
        return Language.TSX
    if has_ts:
        return Language.TYPESCRIPT
    if has_jsx:
        return Language.JSX
    return Language.JAVASCRIPT


def _result(language: Language, confidence: float, detected_by: str) -> DetectionResult:
    """Build a DetectionResult with display metadata filled in.

    Example:
        ```python
        result = _result(Language.TSX, 0.9, "filename")
        ```
    """
    info = LANGUAGES[language]
    return DetectionResult(
        language=language,
        confidence=round(confidence, 4),
        display_name=info.display_name,
        editor_language_id=info.editor_language_id,
        detected_by=detected_by,
    )


def default_detection() -> DetectionResult:
    """Verdict used for empty or malformed input.

    Example:
        ```python
        assert default_detection().confidence == 0.1
        ```
    """
    return _result(Language.JAVASCRIPT, FALLBACK_CONFIDENCE, "default")


class LanguageDetector:
    """Memoized dialect classifier over source text and filename.

    Example:
        ```python
        detector = LanguageDetector(cache_size=50)
        result = detector.detect("const x: number = 1", "main.ts")
        ```
    """

    def __init__(self, cache_size: int = 50) -> None:
        """Create a detector with its own bounded cache.

        Example:
            ```python
            detector = LanguageDetector()
            ```
        """
        self._cache: BoundedCache[str, DetectionResult] = BoundedCache(
            cache_size, name="detection"
        )

    def detect(self, code: Any, filename: Any = "index.js") -> DetectionResult:
        """Classify code into a dialect with a confidence score.

        Malformed input never raises; it degrades to javascript with 0.1.

        Example:
            ```python
            result = detector.detect("export default () => <div />", "App.jsx")
            ```
        """
        try:
            code, filename = self._validate(code, filename)
        except DetectionError as exc:
            logger.warning("Language detection degraded to javascript: %s", exc)
            return default_detection()

        if not code.strip():
            return default_detection()

        key = hashlib.sha256(f"{filename}\0{code}".encode("utf-8")).hexdigest()
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Detection cache hit for %s", filename)
            return cached

        result = self._classify(code, filename)
        self._cache.put(key, result)
        return result

    def detect_unit(self, unit: SourceUnit) -> DetectionResult:
        """Classify a SourceUnit, honoring a valid language hint.

        Example:
            ```python
            result = detector.detect_unit(SourceUnit("let a = 1", "a.txt", language_hint="typescript"))
            ```
        """
        if unit.language_hint:
            try:
                language = Language(unit.language_hint.lower())
            except ValueError:
                logger.warning("Ignoring unknown language hint %r", unit.language_hint)
            else:
                return _result(language, 1.0, "hint")
        return self.detect(unit.code, unit.filename)

    def _validate(self, code: Any, filename: Any) -> tuple[str, str]:
        """Reject non-string input with DetectionError.

        Example:
            ```python
            code, filename = detector._validate("1", None)
            ```
        """
        if not isinstance(code, str):
            raise DetectionError(f"code must be a string, got {type(code).__name__}")
        if filename is None:
            filename = ""
        if not isinstance(filename, str):
            raise DetectionError(f"filename must be a string, got {type(filename).__name__}")
        return code, filename

    def _classify(self, code: str, filename: str) -> DetectionResult:
        """Combine filename and content verdicts.

        Example:
            ```python
            result = detector._classify("interface A {}", "a.js")
            ```
        """
        file_language, file_confidence = detect_by_filename(filename)
        recognized = file_confidence >= FILENAME_CONFIDENCE
        content_language, content_confidence = detect_by_content(code)

        if content_language is not Language.JAVASCRIPT and content_confidence >= CONTENT_THRESHOLD:
            if not recognized:
                return _result(content_language, content_confidence, "content")
            merged = _merge(file_language, content_language)
            if merged is file_language:
                return _result(merged, max(file_confidence, content_confidence), "content")
            return _result(merged, content_confidence, "content")

        return _result(file_language, file_confidence, "filename")

    def language_info(self, language: Language | str) -> LanguageInfo:
        """Static facts for a dialect; unknown names fall back to javascript.

        Example:
            ```python
            info = detector.language_info("tsx")
            ```
        """
        try:
            return LANGUAGES[Language(language)]
        except ValueError:
            return LANGUAGES[Language.JAVASCRIPT]

    def supported_languages(self) -> list[str]:
        """Names of every supported dialect.

        Example:
            ```python
            assert "tsx" in detector.supported_languages()
            ```
        """
        return [language.value for language in LANGUAGES]

    def is_supported(self, language: str) -> bool:
        """Whether a dialect name is supported.

        Example:
            ```python
            assert not detector.is_supported("python")
            ```
        """
        return language in self.supported_languages()

    def language_suggestions(self, language: Language | str) -> dict[str, Any]:
        """Recommended dependencies and compiler settings for a dialect.

        Example:
            ```python
            deps = detector.language_suggestions("typescript")["dependencies"]
            ```
        """
        try:
            key = Language(language)
        except ValueError:
            key = Language.JAVASCRIPT
        return copy.deepcopy(_LANGUAGE_SUGGESTIONS[key])

    def clear_cache(self) -> None:
        """Drop all memoized verdicts.

        Example:
            ```python
            detector.clear_cache()
            ```
        """
        self._cache.clear()

    def cache_stats(self) -> dict[str, int]:
        """Size and hit counters of the detection cache.

        Example:
            ```python
            stats = detector.cache_stats()
            ```
        """
        return self._cache.stats()
