from __future__ import annotations

import re

_REGEX_PRECEDERS = frozenset("(,=:[!&|?{};+-*%~^")
_REGEX_KEYWORDS = frozenset(
    {
        "await",
        "case",
        "delete",
        "do",
        "else",
        "in",
        "instanceof",
        "new",
        "of",
        "return",
        "throw",
        "typeof",
        "void",
        "yield",
    }
)
_ESM_STATEMENT = re.compile(
    r"^[ \t]*(?:import(?![\w$])\s*(?:[\w$*{]|['\"])|export\s+(?:default|const|let|var|function|class|async|\{|\*))",
    re.MULTILINE,
)


class _Masker:
    """Single pass over JavaScript source that blanks comments and literals.

    Example:
        ```python
        masked = _Masker("a = '//'; // note", mask_strings=True).run()
        ```
    """

    def __init__(self, code: str, *, mask_strings: bool) -> None:
        """Prepare an output buffer the same length as the code.

        Example:
            ```python
            masker = _Masker("let a = 1", mask_strings=False)
            ```
        """
        self._code = code
        self._out = list(code)
        self._mask_strings = mask_strings

    def run(self) -> str:
        """Mask the whole source.

        Example:
            ```python
            text = _Masker("/* x */ y", mask_strings=True).run()
            ```
        """
        self._scan_code(0, stop_at_brace=False)
        return "".join(self._out)

    def _blank(self, start: int, end: int) -> None:
        """Replace a span with spaces, keeping line breaks.

        Example:
            ```python
            masker._blank(0, 3)
            ```
        """
        for index in range(start, end):
            if self._out[index] != "\n":
                self._out[index] = " "

    def _blank_literal(self, start: int, end: int) -> None:
        """Blank literal contents when string masking is on.

        Example:
            ```python
            masker._blank_literal(1, 4)
            ```
        """
        if self._mask_strings:
            self._blank(start, end)

    def _scan_code(self, index: int, *, stop_at_brace: bool) -> int:
        """Scan code until EOF, or until the `}` closing a template interpolation.

        Example:
            ```python
            end = masker._scan_code(0, stop_at_brace=False)
            ```
        """
        code = self._code
        size = len(code)
        depth = 0
        previous = ""
        while index < size:
            char = code[index]
            if char in " \t\r\n":
                index += 1
                continue
            if char == "/" and code.startswith("//", index):
                end = code.find("\n", index)
                end = size if end == -1 else end
                self._blank(index, end)
                index = end
                continue
            if char == "/" and code.startswith("/*", index):
                end = code.find("*/", index + 2)
                end = size if end == -1 else end + 2
                self._blank(index, end)
                index = end
                continue
            if char in "'\"":
                end = self._quoted_end(index)
                if end is None:
                    # unterminated on this line, e.g. an apostrophe in JSX text
                    previous = char
                    index += 1
                    continue
                self._blank_literal(index + 1, end - 1)
                previous = "literal"
                index = end
                continue
            if char == "`":
                index = self._scan_template(index)
                previous = "literal"
                continue
            if char == "/" and (previous in _REGEX_PRECEDERS or previous in _REGEX_KEYWORDS or not previous):
                closing = self._regex_close(index)
                if closing is not None:
                    self._blank_literal(index + 1, closing)
                    index = closing + 1
                    while index < size and code[index].isalpha():
                        index += 1
                    previous = "literal"
                    continue
            if char == "{":
                depth += 1
            elif char == "}":
                if stop_at_brace and depth == 0:
                    return index
                depth -= 1
            if char.isalnum() or char in "_$":
                start = index
                while index < size and (code[index].isalnum() or code[index] in "_$"):
                    index += 1
                previous = code[start:index]
                continue
            previous = char
            index += 1
        return size

    def _quoted_end(self, index: int) -> int | None:
        """Index after the closing quote, or None if the line ends first.

        Example:
            ```python
            end = masker._quoted_end(0)
            ```
        """
        code = self._code
        quote = code[index]
        cursor = index + 1
        while cursor < len(code):
            char = code[cursor]
            if char == "\\":
                cursor += 2
                continue
            if char == quote:
                return cursor + 1
            if char == "\n":
                return None
            cursor += 1
        return None

    def _regex_close(self, index: int) -> int | None:
        """Index of the slash closing a regex literal, or None if it is division.

        Example:
            ```python
            closing = masker._regex_close(4)
            ```
        """
        code = self._code
        cursor = index + 1
        in_class = False
        while cursor < len(code):
            char = code[cursor]
            if char == "\n":
                return None
            if char == "\\":
                cursor += 2
                continue
            if char == "[":
                in_class = True
            elif char == "]":
                in_class = False
            elif char == "/" and not in_class:
                if cursor == index + 1:
                    return None
                return cursor
            cursor += 1
        return None

    def _scan_template(self, index: int) -> int:
        """Mask a template literal; interpolations are scanned as code.

        Example:
            ```python
            end = masker._scan_template(0)
            ```
        """
        code = self._code
        size = len(code)
        cursor = index + 1
        segment = cursor
        while cursor < size:
            char = code[cursor]
            if char == "\\":
                cursor += 2
                continue
            if char == "`":
                self._blank_literal(segment, cursor)
                return cursor + 1
            if char == "$" and code.startswith("${", cursor):
                self._blank_literal(segment, cursor)
                cursor = self._scan_code(cursor + 2, stop_at_brace=True) + 1
                segment = cursor
                continue
            cursor += 1
        self._blank_literal(segment, min(cursor, size))
        return size


def mask_source(code: str, *, mask_strings: bool = True) -> str:
    """Blank out comments, and optionally string, template and regex contents.

    The result has the same length and line breaks as the input, and quote
    characters stay in place, so match offsets index the original code.

    Example:
        ```python
        assert mask_source("x = '<b>' // c") == "x = '   '     "
        ```
    """
    return _Masker(code, mask_strings=mask_strings).run()


def has_esm_syntax(code: str) -> bool:
    """Whether code has top-level `import`/`export` statements.

    Dynamic `import()` does not count.

    Example:
        ```python
        assert has_esm_syntax("import fs from 'fs'")
        ```
    """
    return bool(_ESM_STATEMENT.search(mask_source(code)))
