from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Any, Sequence

import pytest

from polyscript import DEFAULT_TABLE, DispatchTable, dispatch
from polyscript.errors import ScriptUnreadable, UnknownLanguage
from polyscript.execution import bridges
from polyscript.execution.bridges import ReexecBridge, SubprocessBridge
from polyscript.types import ExecutionResult


class _RecordingBridge:
    in_process = False

    def __init__(self) -> None:
        self.calls: list[tuple[str, list[str], bool]] = []

    def run(self, script: str, arguments: Sequence[str], *, capture: bool = False) -> ExecutionResult:
        self.calls.append((script, list(arguments), capture))
        return ExecutionResult(exit_code=0, stdout="ok\n")

    def fallback(self) -> "_RecordingBridge":
        return self

    def describe(self) -> str:
        return "recording"


def _forbid_spawn(monkeypatch: pytest.MonkeyPatch) -> None:
    def _no_spawn(*args: Any, **kwargs: Any) -> None:
        raise AssertionError("no process should be spawned")

    monkeypatch.setattr(bridges.subprocess, "run", _no_spawn)


def test_default_table_lists_every_language() -> None:
    assert DEFAULT_TABLE.languages() == [
        "py",
        "jl",
        "jlc",
        "go",
        "js",
        "ts",
        "lua",
        "r",
        "mojo",
        "zig",
        "wasm",
        "hs",
        "swift",
        "kt",
        "ktn",
        "nim",
        "fort",
        "cpp",
    ]


def test_default_table_is_read_only() -> None:
    with pytest.raises(TypeError):
        DEFAULT_TABLE.entries["cobol"] = SubprocessBridge("cobc")  # type: ignore[index]


def test_unknown_language_spawns_nothing(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _forbid_spawn(monkeypatch)
    script = tmp_path / "a.cbl"
    script.write_text("", encoding="utf-8")

    with pytest.raises(UnknownLanguage, match="Unknown language 'cobol'") as excinfo:
        DEFAULT_TABLE.dispatch("cobol", str(script), [])
    assert excinfo.value.exit_code == 2
    assert "py" in str(excinfo.value)


def test_missing_script_spawns_nothing(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _forbid_spawn(monkeypatch)

    with pytest.raises(ScriptUnreadable):
        DEFAULT_TABLE.dispatch("go", str(tmp_path / "missing.go"), [])


def test_resolve_swaps_in_process_bridges_when_concurrent() -> None:
    assert DEFAULT_TABLE.resolve("py").in_process is True
    assert DEFAULT_TABLE.resolve("py", concurrent=True) == SubprocessBridge(sys.executable)
    assert isinstance(DEFAULT_TABLE.resolve("cpp", concurrent=True), ReexecBridge)
    assert DEFAULT_TABLE.resolve("go", concurrent=True) is DEFAULT_TABLE.entries["go"]


def test_dispatch_passes_script_and_args_to_interpreter(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    calls: list[list[str]] = []

    def _fake_run(argv: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
        calls.append(argv)
        return subprocess.CompletedProcess(argv, 0, stdout=b"42\n", stderr=b"")

    monkeypatch.setattr(bridges.subprocess, "run", _fake_run)
    script = tmp_path / "b.go"
    script.write_text("package main\n", encoding="utf-8")

    result = DEFAULT_TABLE.dispatch("go", str(script), ["2"])

    assert calls == [["go", "run", str(script), "2"]]
    assert result == ExecutionResult(exit_code=0, stdout="42\n", stderr="")


def test_dispatch_runs_python_in_process(write_script) -> None:
    script = write_script("hello.py", "import sys\nprint('hello', *sys.argv[1:])\n")

    result = dispatch("py", str(script), ["x"])

    assert result == ExecutionResult(exit_code=0, stdout="hello x\n", stderr="")


def test_dispatch_accepts_custom_table(tmp_path: Path) -> None:
    bridge = _RecordingBridge()
    table = DispatchTable({"rec": bridge})
    script = tmp_path / "a.rec"
    script.write_text("", encoding="utf-8")

    result = dispatch("rec", str(script), ["1", "2"], capture=False, table=table)

    assert result.stdout == "ok\n"
    assert bridge.calls == [(str(script), ["1", "2"], False)]
    assert table.languages() == ["rec"]
