from __future__ import annotations

import json
from pathlib import Path

import pytest

from safe_js_runner.execution.types import Language
from safe_js_runner.transform import PassthroughTransformer, TransformerRegistry
from sjr import cli


class _Broken:
    def transform(self, code: str, *, filename: str) -> str:
        raise RuntimeError("Unexpected token")


def _line(event_type: str, **payload: object) -> bytes:
    return (json.dumps({"type": event_type, **payload, "timestamp": 1700000000000}) + "\n").encode()


@pytest.fixture(autouse=True)
def _patch_cli(monkeypatch: pytest.MonkeyPatch, runtime) -> None:
    registry = TransformerRegistry()
    registry.register(Language.JAVASCRIPT, PassthroughTransformer())
    registry.register(Language.TYPESCRIPT, _Broken())
    monkeypatch.setattr(cli, "_configure_logging", lambda level: None)
    monkeypatch.setattr(cli, "build_runtime", lambda args, config: runtime)
    monkeypatch.setattr(cli, "build_registry", lambda config: registry)


def _source(tmp_path: Path, name: str, code: str) -> str:
    path = tmp_path / name
    path.write_text(code, encoding="utf-8")
    return str(path)


def test_cli_run_renders_console_output(
    tmp_path: Path, runtime, capsys: pytest.CaptureFixture[str]
) -> None:
    runtime.queue([b"hello sandbox\n" + _line("console.log", args=["hello sandbox", 42])])
    script = _source(tmp_path, "script.js", "console.log('hello sandbox', 42)")

    code = cli.main(["run", script])

    output = capsys.readouterr().out
    assert code == 0
    assert "hello sandbox 42" in output
    assert "success" in output
    assert runtime.spawned == [("node", ["script.cjs"])]


def test_cli_run_json(tmp_path: Path, runtime, capsys: pytest.CaptureFixture[str]) -> None:
    runtime.queue([_line("console.warn", args=["careful"])], exit_code=0)
    script = _source(tmp_path, "script.js", "console.warn('careful')")

    code = cli.main(["run", script, "--json", "--no-deps"])

    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["success"] is True
    assert payload["language"] == "javascript"
    assert payload["events"][0]["type"] == "console.warn"
    assert payload["events"][0]["args"] == ["careful"]


def test_cli_run_timeout_exits_124(tmp_path: Path, runtime, capsys: pytest.CaptureFixture[str]) -> None:
    runtime.queue(hang=True)
    script = _source(tmp_path, "loop.js", "while (true) {}")

    code = cli.main(["run", script, "--timeout-ms", "50"])

    assert code == 124
    assert "timed out" in capsys.readouterr().out
    assert runtime.processes[0].killed is True


def test_cli_run_propagates_program_exit_code(tmp_path: Path, runtime) -> None:
    runtime.queue(
        [_line("runtime.error", error={"name": "Error", "message": "boom", "stack": None})],
        exit_code=1,
    )
    script = _source(tmp_path, "fail.js", "throw new Error('boom')")
    assert cli.main(["run", script]) == 1


def test_cli_run_missing_sandbox(
    tmp_path: Path, missing_node, capsys: pytest.CaptureFixture[str]
) -> None:
    script = _source(tmp_path, "script.js", "console.log(1)")
    code = cli.main(["run", script, "--json"])
    payload = json.loads(capsys.readouterr().out)
    assert code == 125
    assert payload["code"] == "SANDBOX_SPAWN_ERROR"


def test_cli_run_rejects_bad_timeout(tmp_path: Path, runtime) -> None:
    script = _source(tmp_path, "script.js", "console.log(1)")
    assert cli.main(["run", script, "--timeout-ms", "0"]) == 2
    assert runtime.spawned == []


def test_cli_run_unreadable_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["run", str(tmp_path / "nope.js")])
    assert code == 1
    assert "Cannot read" in capsys.readouterr().out


def test_cli_run_raw_and_json_are_exclusive(tmp_path: Path) -> None:
    script = _source(tmp_path, "script.js", "console.log(1)")
    with pytest.raises(SystemExit) as exc:
        cli.main(["run", script, "--json", "--raw"])
    assert exc.value.code == 2


def test_cli_detect(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    script = _source(
        tmp_path,
        "Button.tsx",
        "interface Props { label: string }\nexport const Button = (p: Props) => <button>{p.label}</button>;\n",
    )
    code = cli.main(["detect", script])
    output = capsys.readouterr().out
    assert code == 0
    assert "Detected Language" in output
    assert "tsx" in output


def test_cli_deps_reports_missing(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    script = _source(tmp_path, "index.js", "const pad = require('left-pad');\nconst fs = require('fs');\n")

    assert cli.main(["deps", script]) == 1
    output = capsys.readouterr().out
    assert "left-pad" in output
    assert "missing" in output

    assert cli.main(["deps", script, "--installed", "left-pad"]) == 0


def test_cli_transform_prints_code(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    script = _source(tmp_path, "plain.js", "const answer = 42;\n")
    code = cli.main(["transform", script])
    assert code == 0
    assert "const answer = 42;" in capsys.readouterr().out


def test_cli_transform_failure(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    script = _source(tmp_path, "bad.ts", "const a: number = ;\n")
    code = cli.main(["transform", script])
    assert code == 1
    assert "Unexpected token" in capsys.readouterr().out


def test_cli_info(runtime, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["info"])
    output = capsys.readouterr().out
    assert code == 0
    assert "Runtime Capabilities" in output
    assert "docker" in output

    runtime.available = (False, "daemon offline")
    assert cli.main(["info"]) == 1
    assert "daemon offline" in capsys.readouterr().out


def test_cli_invalid_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config = tmp_path / "sjr.toml"
    config.write_text("[engine]\ntimeout_ms = -5\n", encoding="utf-8")
    code = cli.main(["--config", str(config), "info"])
    assert code == 2
    assert "Invalid config" in capsys.readouterr().out
