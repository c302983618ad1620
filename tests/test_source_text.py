from __future__ import annotations

from safe_js_runner.source_text import has_esm_syntax, mask_source


def test_mask_keeps_offsets_and_line_breaks() -> None:
    code = "x = '<b>' // c\n/* a\nb */y"
    masked = mask_source(code)
    assert len(masked) == len(code)
    assert masked == "x = '   '     \n    \n    y"


def test_template_interpolations_stay_visible() -> None:
    assert mask_source("`a${b}c`") == "` ${b} `"
    assert mask_source("`x${f(`y`)}z`") == "` ${f(` `)} `"


def test_regex_literals_and_division() -> None:
    assert mask_source("a = /x\\/y/g;") == "a = /    /g;"
    assert mask_source("a = b / c / d") == "a = b / c / d"
    assert mask_source("return /</.test(s)") == "return / /.test(s)"


def test_strings_can_be_kept() -> None:
    masked = mask_source("import x from 'react' // hi", mask_strings=False)
    assert masked == "import x from 'react'      "


def test_stray_apostrophe_in_markup_is_left_alone() -> None:
    assert mask_source("<p>Don't</p>") == "<p>Don't</p>"


def test_esm_syntax_detection() -> None:
    assert has_esm_syntax("import fs from 'fs';\nconsole.log(fs)")
    assert has_esm_syntax("import 'side-effect';")
    assert has_esm_syntax("const a = 1;\nexport default a;")
    assert has_esm_syntax("import { a } from './a.js'")
    assert not has_esm_syntax("const fs = await import('fs');")
    assert not has_esm_syntax("// import x from 'y'\nconsole.log(1)")
    assert not has_esm_syntax("const s = `\nimport x from 'y'\n`;")
    assert not has_esm_syntax("importantThing();")
