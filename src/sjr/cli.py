from __future__ import annotations

import argparse
import asyncio
import json
import logging
import warnings
from dataclasses import asdict
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter
from safe_js_runner import (
    DependencyMissingWarning,
    DockerNodeRuntime,
    EngineConfig,
    LocalNodeRuntime,
    SandboxSpawnError,
    TransformError,
    build_coordinator,
)
from safe_js_runner import events as ev
from safe_js_runner.dependencies import DependencyAnalyzer
from safe_js_runner.detection import LanguageDetector
from safe_js_runner.execution.capabilities import capabilities_for_runtime, check_runtime_available
from safe_js_runner.execution.config import DEFAULT_NODE_IMAGE, DockerRuntimeSettings, default_workdir
from safe_js_runner.execution.engine import SandboxRuntime
from safe_js_runner.execution.types import ExecutionOptions, ExecutionResult, StructuredEvent
from safe_js_runner.transform import TransformerRegistry, TransformPipeline

_CONSOLE = Console(no_color=False)
_ERR_CONSOLE = Console(stderr=True)
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
_CONSOLE_STYLES = {
    "console.log": "white",
    "console.warn": "yellow",
    "console.error": "red",
}


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="sjr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for running and inspecting JavaScript-family code.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="sjr",
        description=(
            "safe-js-runner CLI\n"
            "Detect, transform and run JavaScript, TypeScript, JSX and TSX\n"
            "inside a local Node.js workspace or a locked-down Docker container."
        ),
        epilog=(
            "Quick Examples:\n"
            "  sjr run script.ts\n"
            "  sjr run app.tsx --timeout-ms 5000 --json\n"
            "  sjr detect snippet.js\n"
            "  sjr deps index.js --installed lodash\n"
            "  sjr transform component.jsx\n"
            "  sjr info\n\n"
            "Docker Examples:\n"
            "  sjr --runtime docker run script.js\n"
            "  sjr --runtime docker --docker-context my-remote-context run script.js"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--config",
        help=(
            "Path to a TOML file with an [engine] table.\n"
            "Example: --config ./sjr.toml"
        ),
    )
    parser.add_argument(
        "--log-level",
        choices=_LOG_LEVELS,
        default="WARNING",
        help="Library log level rendered on stderr (default: WARNING).",
    )
    parser.add_argument(
        "--runtime",
        choices=("local", "docker"),
        default="local",
        help="Sandbox runtime used for execution (default: local).",
    )
    parser.add_argument(
        "--workdir",
        help="Workspace directory shared with the sandbox (default: a temp directory).",
    )
    parser.add_argument(
        "--docker-image",
        default=DEFAULT_NODE_IMAGE,
        help=f"Node.js image for --runtime docker (default: {DEFAULT_NODE_IMAGE}).",
    )
    parser.add_argument(
        "--docker-context",
        help=(
            "Use an existing Docker context name.\n"
            "Example: --docker-context prod-us-east"
        ),
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Run a source file and stream its console output.",
        description=(
            "Detect the dialect, transform it to JavaScript, instrument the\n"
            "console and run it with a deadline. Exit code mirrors the program;\n"
            "a timeout exits with 124."
        ),
        epilog=(
            "Examples:\n"
            "  sjr run script.ts\n"
            "  sjr run script.js --timeout-ms 2000 --no-deps\n"
            "  sjr run script.js --raw"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("file")
    run_cmd.add_argument(
        "--timeout-ms",
        type=int,
        help="Execution deadline in milliseconds (default: from config).",
    )
    run_cmd.add_argument(
        "--no-deps",
        action="store_true",
        help="Skip dependency analysis before running.",
    )
    run_cmd.add_argument(
        "--auto-install",
        action="store_true",
        help="Install missing npm packages before running.",
    )
    output_mode = run_cmd.add_mutually_exclusive_group()
    output_mode.add_argument(
        "--json",
        action="store_true",
        help="Print the final result as JSON instead of live output.",
    )
    output_mode.add_argument(
        "--raw",
        action="store_true",
        help="Stream raw stdout/stderr chunks instead of structured events.",
    )

    detect_cmd = sub.add_parser(
        "detect",
        help="Detect the language of a source file.",
        description="Classify a file by extension and content heuristics.",
        formatter_class=_HELP_FORMATTER,
    )
    detect_cmd.add_argument("file")

    deps_cmd = sub.add_parser(
        "deps",
        help="List imports and missing npm packages of a source file.",
        description=(
            "Statically extract imports and requires.\n"
            "Reports missing packages, suggestions and conflicts."
        ),
        epilog=(
            "Examples:\n"
            "  sjr deps index.js\n"
            "  sjr deps index.ts --installed lodash dayjs"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    deps_cmd.add_argument("file")
    deps_cmd.add_argument(
        "--installed",
        nargs="*",
        default=[],
        metavar="PACKAGE",
        help="Packages to treat as installed in addition to the config.",
    )

    transform_cmd = sub.add_parser(
        "transform",
        help="Print the JavaScript a source file transforms to.",
        description="Run the transform stage only and print its output.",
        formatter_class=_HELP_FORMATTER,
    )
    transform_cmd.add_argument("file")

    sub.add_parser(
        "info",
        help="Show runtime capabilities and availability.",
        description="Report what each runtime enforces and whether the selected one is usable.",
        formatter_class=_HELP_FORMATTER,
    )

    return parser


def _configure_logging(level: str) -> None:
    """Route library logs through Rich on stderr.

    Example:
        ```python
        _configure_logging("INFO")
        ```
    """
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=_ERR_CONSOLE, show_path=False, rich_tracebacks=True)],
        force=True,
    )


def load_config(args: argparse.Namespace) -> EngineConfig:
    """Load the engine config named by --config, or the bundled defaults.

    Example:
        ```python
        config = load_config(args)
        ```
    """
    if args.config:
        return EngineConfig.from_file(args.config)
    return EngineConfig()


def build_runtime(args: argparse.Namespace, config: EngineConfig) -> SandboxRuntime:
    """Create the sandbox runtime selected by global CLI flags.

    Example:
        ```python
        runtime = build_runtime(args, EngineConfig())
        ```
    """
    workdir = Path(args.workdir) if args.workdir else default_workdir(config.workdir_name)
    if args.runtime == "docker":
        settings = DockerRuntimeSettings(image=args.docker_image, docker_context=args.docker_context)
        return DockerNodeRuntime(workdir, settings=settings)
    return LocalNodeRuntime(workdir)


def build_registry(config: EngineConfig) -> TransformerRegistry:
    """Create the transformer registry used by `run` and `transform`.

    Example:
        ```python
        registry = build_registry(EngineConfig())
        ```
    """
    return TransformerRegistry.default(config)


def _read_source(path: str) -> str | None:
    """Read a source file, reporting failures as a red panel.

    Example:
        ```python
        code = _read_source("script.ts")
        ```
    """
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        _CONSOLE.print(Panel.fit(Text(f"Cannot read {path}: {exc}"), style="bold red"))
        return None


def _format_arg(value: Any) -> str:
    """Render one console argument the way Node prints it.

    Example:
        ```python
        _format_arg({"a": 1})
        ```
    """
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _print_table(event: StructuredEvent) -> None:
    """Render a console.table event as a Rich table.

    Example:
        ```python
        _print_table(StructuredEvent("console.table", {"data": [{"a": 1}]}, 0))
        ```
    """
    data = event.data
    rows = list(data.items()) if isinstance(data, dict) else list(enumerate(data or []))
    columns = list(event.columns or [])
    if not columns:
        for _, row in rows:
            for key in row if isinstance(row, dict) else ["Values"]:
                if key not in columns:
                    columns.append(key)
    table = Table(title="console.table")
    table.add_column("(index)", style="cyan")
    for column in columns:
        table.add_column(str(column))
    for index, row in rows:
        if isinstance(row, dict):
            cells = [_format_arg(row[col]) if col in row else "" for col in columns]
        else:
            cells = [_format_arg(row) if col == "Values" else "" for col in columns]
        table.add_row(Text(str(index)), *(Text(cell) for cell in cells))
    _CONSOLE.print(table)


def render_event(event: StructuredEvent) -> None:
    """Print one structured event from the running program.

    Example:
        ```python
        render_event(StructuredEvent("console.log", {"args": ["hi"]}, 0))
        ```
    """
    if event.type == "console.table":
        _print_table(event)
        return
    if event.type == "runtime.error":
        error = event.error or {}
        body = f"{error.get('name', 'Error')}: {error.get('message', '')}"
        _CONSOLE.print(Panel.fit(Text(body), title="Uncaught error", border_style="red"))
        return
    text = " ".join(_format_arg(arg) for arg in event.args)
    _CONSOLE.print(text, style=_CONSOLE_STYLES.get(event.type, "white"), markup=False, highlight=False)


def _result_payload(result: ExecutionResult) -> dict[str, Any]:
    """JSON-safe view of an execution result.

    Example:
        ```python
        payload = _result_payload(result)
        ```
    """
    return {
        "exit_code": result.exit_code,
        "success": result.success,
        "timeout": result.timeout,
        "cancelled": result.cancelled,
        "execution_time_ms": result.execution_time_ms,
        "language": result.language.value if result.language else None,
        "error": result.error,
        "stdout": result.stdout,
        "stderr": result.stderr,
        "events": [event.to_dict() for event in result.events],
    }


def _print_summary(result: ExecutionResult) -> None:
    """Render the end-of-run summary panel.

    Example:
        ```python
        _print_summary(result)
        ```
    """
    if result.timeout:
        status, style = "timed out", "yellow"
    elif result.cancelled:
        status, style = "cancelled", "yellow"
    elif result.success:
        status, style = "success", "green"
    else:
        status, style = "failed", "red"
    lines = [
        f"Status: {status}",
        f"Exit code: {result.exit_code}",
        f"Language: {result.language.value if result.language else 'unknown'}",
        f"Time: {result.execution_time_ms:.1f} ms",
    ]
    if result.error and not result.success:
        lines.append(f"Error: {result.error}")
    _CONSOLE.print(Panel.fit(Text("\n".join(lines)), title="Execution", border_style=style))


def _exit_code(result: ExecutionResult) -> int:
    """Process exit status for a finished run.

    Example:
        ```python
        code = _exit_code(result)
        ```
    """
    if result.success:
        return 0
    return result.exit_code if result.exit_code > 0 else 1


def _cmd_run(args: argparse.Namespace, config: EngineConfig) -> int:
    """Handle `sjr run`.

    Example:
        ```python
        code = _cmd_run(args, EngineConfig())
        ```
    """
    code = _read_source(args.file)
    if code is None:
        return 1
    overrides: dict[str, Any] = {
        "filename": Path(args.file).name,
        "check_dependencies": not args.no_deps,
        "auto_install_deps": args.auto_install,
    }
    if args.timeout_ms is not None:
        overrides["timeout_ms"] = args.timeout_ms
    try:
        options = ExecutionOptions.from_config(config, **overrides)
    except ValueError as exc:
        _CONSOLE.print(Panel.fit(Text(str(exc)), style="bold red"))
        return 2

    coordinator = build_coordinator(build_runtime(args, config), config, registry=build_registry(config))
    channel = coordinator.events
    if not args.json:
        channel.subscribe(ev.DEPENDENCIES_MISSING, _on_missing)
        channel.subscribe(ev.EXECUTION_ERROR, _on_error)
        if args.raw:
            channel.subscribe(ev.EXECUTION_OUTPUT, _on_raw)
        else:
            channel.subscribe(ev.EXECUTION_STRUCTURED_OUTPUT, lambda payload: render_event(payload["data"]))

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", DependencyMissingWarning)
        try:
            result = asyncio.run(coordinator.execute(code, options))
        except SandboxSpawnError as exc:
            if args.json:
                _CONSOLE.print_json(json.dumps({"error": str(exc), "code": exc.code}))
            return 125

    if args.json:
        _CONSOLE.print_json(json.dumps(_result_payload(result), default=str))
    else:
        _print_summary(result)
    return _exit_code(result)


def _on_missing(payload: dict[str, Any]) -> None:
    """Warn about missing packages before a run.

    Example:
        ```python
        _on_missing({"missing": [{"name": "lodash"}]})
        ```
    """
    names = ", ".join(item["name"] for item in payload.get("missing", []))
    _CONSOLE.print(
        Panel.fit(Text(f"Missing packages: {names}\nInstall with --auto-install"), border_style="yellow")
    )


def _on_error(payload: dict[str, Any]) -> None:
    """Show a preparation or sandbox failure.

    Example:
        ```python
        _on_error({"error": "[typescript] Unexpected token"})
        ```
    """
    _CONSOLE.print(Panel.fit(Text(str(payload.get("error"))), title="Error", border_style="red"))


def _on_raw(payload: dict[str, Any]) -> None:
    """Echo one raw output chunk.

    Example:
        ```python
        _on_raw({"type": "stdout", "data": "hi\\n"})
        ```
    """
    target = _ERR_CONSOLE if payload.get("type") == "stderr" else _CONSOLE
    target.out(payload.get("data", ""), end="", highlight=False)


def _cmd_detect(args: argparse.Namespace, config: EngineConfig) -> int:
    """Handle `sjr detect`.

    Example:
        ```python
        code = _cmd_detect(args, EngineConfig())
        ```
    """
    code = _read_source(args.file)
    if code is None:
        return 1
    detection = LanguageDetector(cache_size=config.detection_cache_size).detect(code, Path(args.file).name)
    table = Table(title="Detected Language")
    table.add_column("Language", style="cyan")
    table.add_column("Confidence")
    table.add_column("Display name", style="magenta")
    table.add_column("Editor language")
    table.add_column("Detected by")
    table.add_row(
        detection.language.value,
        f"{detection.confidence:.2f}",
        detection.display_name,
        detection.editor_language_id,
        detection.detected_by,
    )
    _CONSOLE.print(table)
    return 0


def _cmd_deps(args: argparse.Namespace, config: EngineConfig) -> int:
    """Handle `sjr deps`.

    Example:
        ```python
        code = _cmd_deps(args, EngineConfig())
        ```
    """
    code = _read_source(args.file)
    if code is None:
        return 1
    detection = LanguageDetector(cache_size=config.detection_cache_size).detect(code, Path(args.file).name)
    analyzer = DependencyAnalyzer(installed=[*config.installed_packages, *args.installed])
    report = analyzer.analyze(code, detection.language)

    table = Table(title="Imports")
    table.add_column("Package", style="cyan")
    table.add_column("Status")
    missing = set(report.missing_names)
    for name in sorted(report.found):
        status = "[red]missing[/red]" if name in missing else "[green]ok[/green]"
        table.add_row(name, status)
    _CONSOLE.print(table)

    if report.suggestions:
        hints = Table(title="Suggestions")
        hints.add_column("Package", style="cyan")
        hints.add_column("Category")
        hints.add_column("Priority")
        hints.add_column("Reason")
        for hint in report.suggestions:
            hints.add_row(hint.name, hint.category, hint.priority, hint.reason)
        _CONSOLE.print(hints)
    for conflict in report.conflicts:
        _CONSOLE.print(Panel.fit(Text(conflict.message), title=" / ".join(conflict.packages), border_style="yellow"))
    _CONSOLE.print(Panel.fit(Pretty(asdict(report.metadata)), title="Import Stats", border_style="cyan"))
    return 1 if missing else 0


def _cmd_transform(args: argparse.Namespace, config: EngineConfig) -> int:
    """Handle `sjr transform`.

    Example:
        ```python
        code = _cmd_transform(args, EngineConfig())
        ```
    """
    code = _read_source(args.file)
    if code is None:
        return 1
    filename = Path(args.file).name
    detection = LanguageDetector(cache_size=config.detection_cache_size).detect(code, filename)
    pipeline = TransformPipeline(build_registry(config), cache_size=config.transform_cache_size)
    try:
        result = pipeline.transform(code, detection, filename)
    except TransformError as exc:
        _CONSOLE.print(Panel.fit(Text(exc.message), title=f"Transform failed ({exc.language})", style="bold red"))
        return 1
    _CONSOLE.out(result.transformed_code, highlight=False)
    return 0


def _cmd_info(args: argparse.Namespace, config: EngineConfig) -> int:
    """Handle `sjr info`.

    Example:
        ```python
        code = _cmd_info(args, EngineConfig())
        ```
    """
    table = Table(title="Runtime Capabilities")
    table.add_column("Runtime", style="cyan")
    for column in ("Network isolation", "Memory limit", "Timeout", "Package install"):
        table.add_column(column)
    for name in ("local", "docker"):
        caps = capabilities_for_runtime(name)
        table.add_row(
            name,
            *(
                "yes" if flag else "no"
                for flag in (
                    caps.supports_network_isolation,
                    caps.supports_memory_limit,
                    caps.supports_timeout,
                    caps.supports_package_install,
                )
            ),
        )
    _CONSOLE.print(table)

    runtime = build_runtime(args, config)
    available, reason = check_runtime_available(runtime)
    summary = {
        "runtime": args.runtime,
        "available": available,
        "reason": reason,
        "workdir": str(getattr(runtime, "workdir", "")),
        "node_command": config.node_command,
        "transform_command": " ".join(config.transform_command),
        "timeout_ms": config.timeout_ms,
        "config_path": config.config_path,
    }
    border = "green" if available else "red"
    _CONSOLE.print(Panel.fit(Pretty(summary), title="Selected Runtime", border_style=border))
    return 0 if available else 1


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `sjr` CLI command handler.

    Example:
        ```python
        code = main(["run", "script.ts"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.log_level)
    try:
        config = load_config(args)
    except (OSError, ValueError) as exc:
        _CONSOLE.print(Panel.fit(Text(f"Invalid config: {exc}"), style="bold red"))
        return 2

    handlers = {
        "run": _cmd_run,
        "detect": _cmd_detect,
        "deps": _cmd_deps,
        "transform": _cmd_transform,
        "info": _cmd_info,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.error("Unhandled command")
    return handler(args, config)
