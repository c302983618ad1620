from __future__ import annotations

import pytest

from safe_js_runner.detection import (
    LanguageDetector,
    default_detection,
    detect_by_content,
    detect_by_filename,
    extension_of,
)
from safe_js_runner.execution.types import Language, SourceUnit


def test_typescript_file_with_annotations() -> None:
    result = LanguageDetector().detect("const x: number = 1;", "main.ts")
    assert result.language is Language.TYPESCRIPT
    assert result.confidence == 0.9
    assert result.display_name == "TypeScript"
    assert result.editor_language_id == "typescript"


def test_content_wins_for_unknown_extension() -> None:
    result = LanguageDetector().detect("interface User { name: string }", "snippet.txt")
    assert result.language is Language.TYPESCRIPT
    assert result.confidence == 0.5
    assert result.detected_by == "content"


def test_jsx_markup_in_js_file_is_jsx() -> None:
    result = LanguageDetector().detect('const el = <div className="a">hi</div>;', "app.js")
    assert result.language is Language.JSX
    assert result.display_name == "JavaScript React"
    assert result.confidence >= 0.3


def test_typescript_and_markup_is_tsx() -> None:
    code = "interface Props { title: string }\nconst App = (p: Props) => <h1>{p.title}</h1>;"
    result = LanguageDetector().detect(code, "App.tsx")
    assert result.language is Language.TSX
    assert result.confidence == 0.95


def test_plain_javascript_uses_filename() -> None:
    result = LanguageDetector().detect("console.log('hi')", "index.js")
    assert result.language is Language.JAVASCRIPT
    assert result.confidence == 0.9
    assert result.detected_by == "filename"


@pytest.mark.parametrize(
    "code",
    [
        "document.body.innerHTML = '<b>bold</b>';",
        "const v = flag ? 1 : void 0;",
        "const o = {kind: object};",
        "const html = `<div class=\"row\">${name}</div>`;",
        "// interface Legacy { id: number }\nconst id = 1;",
        "const re = /<\\/b>/g;",
        "if (a < b && c > d) { total = a / b; }",
        "const label = count > 1 ? 'items' : 'item';",
        "/* type Alias = string */ module.exports = { render };",
    ],
)
def test_plain_javascript_stays_javascript(code: str) -> None:
    result = LanguageDetector().detect(code, "index.js")
    assert result.language is Language.JAVASCRIPT
    assert result.confidence >= 0.9
    assert detect_by_content(code)[0] is Language.JAVASCRIPT


def test_annotations_need_a_declaration_position() -> None:
    assert detect_by_content("let total: number = 0;")[0] is Language.TYPESCRIPT
    assert detect_by_content("function f(a: string, b?: number) {}")[0] is Language.TYPESCRIPT
    assert detect_by_content("const f = (): void => {};")[0] is Language.TYPESCRIPT
    assert detect_by_content("call(x ? y : void 0);")[0] is Language.JAVASCRIPT


def test_react_hooks_without_markup_stay_javascript() -> None:
    result = LanguageDetector().detect("const [a, setA] = useState(0);", "hooks.js")
    assert result.language is Language.JAVASCRIPT
    assert result.confidence >= 0.9


def test_generic_arrow_is_not_markup() -> None:
    result = LanguageDetector().detect("const id = <T>(x) => x;", "id.ts")
    assert result.language is Language.TYPESCRIPT


def test_empty_and_malformed_input_degrade() -> None:
    detector = LanguageDetector()
    assert detector.detect("", "index.ts") == default_detection()
    assert detector.detect("   \n", "index.ts").confidence == 0.1
    fallback = detector.detect(123, "index.ts")  # type: ignore[arg-type]
    assert fallback.language is Language.JAVASCRIPT
    assert fallback.confidence == 0.1
    assert fallback.detected_by == "default"
    assert detector.detect("let a = 1", None).language is Language.JAVASCRIPT  # type: ignore[arg-type]


def test_language_hint_overrides_heuristics() -> None:
    detector = LanguageDetector()
    hinted = detector.detect_unit(SourceUnit("let a = 1", "a.txt", language_hint="TypeScript"))
    assert hinted.language is Language.TYPESCRIPT
    assert hinted.confidence == 1.0
    assert hinted.detected_by == "hint"

    unknown = detector.detect_unit(SourceUnit("let a = 1", "a.js", language_hint="python"))
    assert unknown.language is Language.JAVASCRIPT
    assert unknown.detected_by == "filename"


def test_detection_is_memoized() -> None:
    detector = LanguageDetector(cache_size=2)
    first = detector.detect("interface A {}", "a.ts")
    second = detector.detect("interface A {}", "a.ts")
    assert first == second
    stats = detector.cache_stats()
    assert stats["hits"] == 1
    assert stats["size"] == 1

    detector.detect("interface A {}", "b.ts")
    detector.detect("interface A {}", "c.ts")
    assert detector.cache_stats()["size"] == 2
    assert detector.cache_stats()["evictions"] == 1

    detector.clear_cache()
    assert detector.cache_stats()["size"] == 0


def test_filename_helpers() -> None:
    assert extension_of("App.TSX") == "tsx"
    assert extension_of("src/Makefile") == ""
    assert detect_by_filename("server.mts") == (Language.TYPESCRIPT, 0.9)
    assert detect_by_filename("notes.md") == (Language.JAVASCRIPT, 0.1)
    assert detect_by_content("enum Color { Red }")[0] is Language.TYPESCRIPT


def test_language_metadata() -> None:
    detector = LanguageDetector()
    assert detector.supported_languages() == ["javascript", "typescript", "jsx", "tsx"]
    assert detector.is_supported("tsx")
    assert not detector.is_supported("python")
    assert detector.language_info("tsx").display_name == "TypeScript React"
    assert detector.language_info("cobol").display_name == "JavaScript"
    assert "jsx" in detector.language_info(Language.JSX).extensions

    suggestions = detector.language_suggestions("typescript")
    assert "typescript" in suggestions["dependencies"]
    suggestions["dependencies"].clear()
    assert detector.language_suggestions("typescript")["dependencies"]
