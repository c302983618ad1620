from __future__ import annotations

from safe_js_runner.dependencies import (
    DependencyAnalyzer,
    extract_specifiers,
    install_priority,
    is_local_import,
    is_native_module,
    normalize_package_name,
)
from safe_js_runner.execution.types import Language

MIXED_SOURCE = """
import React from 'react';
import { debounce } from "lodash/debounce";
const fs = require('node:fs');
const path = require("path");
import('./local.js');
const moment = require('moment');
import dayjs from 'dayjs';
const pad = require(`left-${name}`);
"""


def test_extract_specifiers_in_source_order() -> None:
    assert extract_specifiers(MIXED_SOURCE) == [
        "react",
        "lodash/debounce",
        "node:fs",
        "path",
        "./local.js",
        "moment",
        "dayjs",
    ]


def test_extract_specifier_forms() -> None:
    code = (
        "import type { A } from '@scope/types';\n"
        "export * from './barrel';\n"
        "export { b } from 'b-lib';\n"
        "import 'side-effect';\n"
        "const c = await import(`c-lib`);\n"
    )
    assert extract_specifiers(code) == ["@scope/types", "./barrel", "b-lib", "side-effect", "c-lib"]


def test_imports_in_comments_and_strings_are_ignored() -> None:
    code = (
        "// old: require('left-pad')\n"
        "/* import legacy from 'legacy-lib' */\n"
        "const s = \"import x from 'evil-pkg'\";\n"
        "const t = `require(\"other-pkg\")`;\n"
        "const lodash = require('lodash');\n"
    )
    assert extract_specifiers(code) == ["lodash"]
    report = DependencyAnalyzer(installed=["lodash"]).analyze(code, Language.JAVASCRIPT)
    assert report.missing_names == []


def test_name_helpers() -> None:
    assert normalize_package_name("@scope/name/sub/path") == "@scope/name"
    assert normalize_package_name("lodash/fp") == "lodash"
    assert normalize_package_name("node:fs/promises") == "fs"
    assert is_native_module("fs")
    assert is_native_module("node:test")
    assert not is_native_module("lodash")
    assert is_local_import("../x")
    assert is_local_import("/abs/y")
    assert not is_local_import("react")


def test_install_priority() -> None:
    assert install_priority("react", Language.JSX) == "high"
    assert install_priority("react", Language.JAVASCRIPT) == "medium"
    assert install_priority("typescript", Language.TYPESCRIPT) == "high"
    assert install_priority("@types/node", Language.JAVASCRIPT) == "medium"
    assert install_priority("left-pad", Language.JAVASCRIPT) == "low"


def test_analyze_classifies_imports() -> None:
    analyzer = DependencyAnalyzer(installed=["lodash"])
    report = analyzer.analyze(MIXED_SOURCE, Language.TSX)

    assert report.found == {"react", "lodash", "fs", "path", "moment", "dayjs"}
    assert report.missing_names == ["react", "moment", "dayjs"]
    assert report.metadata.total_imports == 7
    assert report.metadata.local_imports == 1
    assert report.metadata.native_modules == 2
    assert report.metadata.third_party_packages == 4

    names = [item.name for item in report.suggestions]
    assert names.count("react") == 1
    assert "@types/react" in names
    assert "@types/lodash" in names
    assert "@types/node" in names
    react = next(item for item in report.suggestions if item.name == "react")
    assert react.priority == "high"

    assert [conflict.packages for conflict in report.conflicts] == [("moment", "dayjs")]
    assert report.conflicts[0].type == "alternative"


def test_plain_javascript_gets_no_type_suggestions() -> None:
    report = DependencyAnalyzer().analyze("const pad = require('left-pad')", "javascript")
    assert report.missing_names == ["left-pad"]
    assert [item.name for item in report.suggestions] == ["left-pad"]
    assert report.suggestions[0].category == "unknown"


def test_native_only_code_has_nothing_missing() -> None:
    analyzer = DependencyAnalyzer()
    assert analyzer.missing_packages("const fs = require('fs'); import os from 'node:os';") == []


def test_mark_installed_invalidates_cache() -> None:
    analyzer = DependencyAnalyzer()
    code = "import axios from 'axios'"
    assert analyzer.missing_packages(code) == ["axios"]
    assert analyzer.missing_packages(code) == ["axios"]
    assert analyzer.cache_stats()["hits"] == 1

    analyzer.mark_installed("axios")
    assert analyzer.is_installed("axios")
    assert analyzer.cache_stats()["size"] == 0
    assert analyzer.missing_packages(code) == []

    analyzer.mark_uninstalled("axios")
    assert analyzer.missing_packages(code) == ["axios"]


def test_cached_reports_are_independent_copies() -> None:
    analyzer = DependencyAnalyzer()
    first = analyzer.analyze("require('left-pad')")
    first.missing.clear()
    first.found.clear()
    second = analyzer.analyze("require('left-pad')")
    assert second.missing_names == ["left-pad"]
    assert second.found == {"left-pad"}
