from __future__ import annotations

import codecs
import json
import logging
import re
from pathlib import Path, PurePosixPath

from .execution.types import (
    STRUCTURED_EVENT_TYPES,
    DetectionResult,
    ExecutableUnit,
    Language,
    StructuredEvent,
    now_ms,
)
from .source_text import has_esm_syntax

logger = logging.getLogger(__name__)

_IDENTIFIER_PATH = re.compile(r"^[A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)*$")
_JSX_LANGUAGES = frozenset({Language.JSX, Language.TSX})
MAX_PENDING_LINE_CHARS = 1024 * 1024


def _prelude_path() -> Path:
    """Return bundled console prelude path.

    Example:
        ```python
        path = _prelude_path()
        ```
    """
    return Path(__file__).with_name("prelude.js")


def load_prelude() -> str:
    """Read the console interception prelude.

    Example:
        ```python
        source = load_prelude()
        ```
    """
    return _prelude_path().read_text(encoding="utf-8")


def executable_filename(filename: str) -> str:
    """Sandbox file name for the instrumented program, always CommonJS.

    Example:
        ```python
        assert executable_filename("src/App.tsx") == "src/App.cjs"
        ```
    """
    path = PurePosixPath(filename.replace("\\", "/"))
    return str(path.with_suffix(".cjs"))


def user_module_filename(filename: str, *, esm: bool = False) -> str:
    """Sandbox file name for the user module loaded by the entry program.

    Example:
        ```python
        assert user_module_filename("src/App.tsx") == "src/App.user.cjs"
        assert user_module_filename("main.js", esm=True) == "main.user.mjs"
        ```
    """
    path = PurePosixPath(filename.replace("\\", "/"))
    return str(path.with_suffix(".user.mjs" if esm else ".user.cjs"))


def _split_symbol(symbol: str, field_name: str) -> tuple[str, str | None]:
    """Split `Root.member` into root and member path.

    Example:
        ```python
        root, member = _split_symbol("React.createElement", "jsx_factory")
        ```
    """
    if not _IDENTIFIER_PATH.match(symbol):
        raise ValueError(f"'{field_name}' must be a dotted JavaScript identifier")
    root, _, member = symbol.partition(".")
    return root, member or None


def jsx_polyfill(factory: str, fragment: str) -> str:
    """Element factory used when the factory root is not defined.

    Example:
        ```python
        source = jsx_polyfill("React.createElement", "React.Fragment")
        ```
    """
    factory_root, factory_member = _split_symbol(factory, "jsx_factory")
    fragment_root, fragment_member = _split_symbol(fragment, "jsx_fragment")
    create = (
        "function (type, props, ...children) "
        "{ return { type, props: props || {}, children: children.flat() }; }"
    )
    marker = "Symbol.for('safe-js-runner.fragment')"

    lines = [f"if (typeof {factory_root} === 'undefined') {{"]
    if factory_member is None:
        lines.append(f"  globalThis.{factory_root} = {create};")
    else:
        lines.append(f"  globalThis.{factory_root} = {{}};")
        lines.append(f"  {factory} = {create};")
    if fragment_root == factory_root and fragment_member is not None:
        lines.append(f"  {fragment} = {marker};")
    lines.append("}")
    if fragment_root != factory_root:
        lines.append(f"if (typeof {fragment_root} === 'undefined') {{")
        if fragment_member is None:
            lines.append(f"  globalThis.{fragment_root} = {marker};")
        else:
            lines.append(f"  globalThis.{fragment_root} = {{}};")
            lines.append(f"  {fragment} = {marker};")
        lines.append("}")
    return "\n".join(lines)


class InstrumentationWrapper:
    """Wrap transformed code with console capture and error handlers.

    Example:
        ```python
        wrapper = InstrumentationWrapper()
        unit = wrapper.wrap("console.log('hi')", detection, "index.js")
        ```
    """

    def __init__(
        self,
        jsx_factory: str = "React.createElement",
        jsx_fragment: str = "React.Fragment",
    ) -> None:
        """Validate JSX symbols and load the prelude.

        Example:
            ```python
            wrapper = InstrumentationWrapper(jsx_factory="h", jsx_fragment="Fragment")
            ```
        """
        self._polyfill = jsx_polyfill(jsx_factory, jsx_fragment)
        self._prelude = load_prelude()

    def wrap(self, code: str, detection: DetectionResult, filename: str = "index.js") -> ExecutableUnit:
        """Build the entry program and the user module for one run.

        The user code lives in its own module, so a syntax error surfaces as a
        reported runtime error and `import` statements keep working. CommonJS
        code is wrapped on its first line, keeping stack trace line numbers.

        Example:
            ```python
            unit = wrapper.wrap(transformed.transformed_code, detection, "App.jsx")
            ```
        """
        esm = has_esm_syntax(code)
        module_filename = user_module_filename(filename, esm=esm)
        specifier = json.dumps("./" + PurePosixPath(module_filename).name)
        if esm:
            module_code = code if code.endswith("\n") else code + "\n"
            load = f"await import({specifier});"
        else:
            module_code = f"module.exports = (async () => {{ {code}\n}})();\n"
            load = f"await require({specifier});"

        parts = [self._prelude.rstrip("\n")]
        inject_jsx = detection.language in _JSX_LANGUAGES
        if inject_jsx:
            parts.append(self._polyfill)
        parts.append(
            "(async () => {\n"
            "  try {\n"
            f"    {load}\n"
            "  } catch (error) {\n"
            "    __sjr.reportError(error);\n"
            "  }\n"
            "})();\n"
        )
        return ExecutableUnit(
            code="\n".join(parts),
            language=detection.language,
            filename=executable_filename(filename),
            jsx_runtime_injected=inject_jsx,
            module_code=module_code,
            module_filename=module_filename,
        )


def parse_structured_line(line: str | bytes) -> StructuredEvent | None:
    """Parse one output line; None means it is plain text.

    Example:
        ```python
        event = parse_structured_line('{"type":"console.log","args":["hi"],"timestamp":1}')
        ```
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    text = line.strip()
    if not text.startswith("{"):
        return None
    try:
        raw = json.loads(text)
    except ValueError:
        return None
    if not isinstance(raw, dict):
        return None
    event_type = raw.pop("type", None)
    if event_type not in STRUCTURED_EVENT_TYPES:
        return None
    timestamp = raw.pop("timestamp", None)
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        timestamp = now_ms()
    return StructuredEvent(type=event_type, payload=raw, timestamp=float(timestamp))


class StructuredLineBuffer:
    """Reassemble output lines across chunk boundaries for one stream.

    Example:
        ```python
        buffer = StructuredLineBuffer()
        events = buffer.feed(b'{"type":"console.log","ar')
        events += buffer.feed(b'gs":["hi"],"timestamp":1}\\n')
        ```
    """

    def __init__(self) -> None:
        """Start with an empty pending line.

        Example:
            ```python
            buffer = StructuredLineBuffer()
            ```
        """
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes | str) -> list[StructuredEvent]:
        """Consume a chunk and return events from every completed line.

        Example:
            ```python
            events = buffer.feed(b"plain text\\n")
            ```
        """
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        self._pending += text
        *lines, self._pending = self._pending.split("\n")
        if len(self._pending) > MAX_PENDING_LINE_CHARS:
            logger.debug("Dropping oversized partial output line")
            self._pending = ""
        return self._parse(lines)

    def flush(self) -> list[StructuredEvent]:
        """Parse whatever remains at end of stream.

        Example:
            ```python
            events = buffer.flush()
            ```
        """
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return self._parse([tail]) if tail else []

    def _parse(self, lines: list[str]) -> list[StructuredEvent]:
        """Parse lines, skipping plain text.

        Example:
            ```python
            events = buffer._parse(["hello"])
            ```
        """
        events: list[StructuredEvent] = []
        for line in lines:
            event = parse_structured_line(line)
            if event is not None:
                events.append(event)
        return events
