from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Any

import pytest

from polyscript.errors import DispatchError, ScriptUnreadable, SpawnFailure
from polyscript.execution import bridges
from polyscript.execution.bridges import (
    CompileRunBridge,
    PythonBridge,
    ReexecBridge,
    SharedLibraryBridge,
    SubprocessBridge,
    ensure_readable,
    exit_status,
    spawn,
)
from polyscript.types import ExecutionResult


class _FakeRun:
    def __init__(self, *results: subprocess.CompletedProcess) -> None:
        self.results = list(results)
        self.calls: list[tuple[list[str], dict[str, Any]]] = []

    def __call__(self, argv: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
        self.calls.append((argv, kwargs))
        return self.results.pop(0)


def _completed(returncode: int, stdout: bytes = b"", stderr: bytes = b"") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def test_exit_status_maps_signals_to_shell_codes() -> None:
    assert exit_status(0) == 0
    assert exit_status(3) == 3
    assert exit_status(-9) == 137
    assert exit_status(-15) == 143


def test_spawn_captures_and_decodes_output(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeRun(_completed(2, b"caf\xc3\xa9\n", b"bad \xff\n"))
    monkeypatch.setattr(bridges.subprocess, "run", fake)

    result = spawn(["node", "a.js"], capture=True)

    assert result == ExecutionResult(exit_code=2, stdout="café\n", stderr="bad �\n")
    argv, kwargs = fake.calls[0]
    assert argv == ["node", "a.js"]
    assert kwargs["capture_output"] is True
    assert kwargs["stdin"] is subprocess.DEVNULL
    assert kwargs["check"] is False


def test_spawn_inherits_streams_when_not_capturing(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeRun(_completed(0, None, None))
    monkeypatch.setattr(bridges.subprocess, "run", fake)

    result = spawn(["lua", "a.lua"])

    assert result == ExecutionResult(exit_code=0)
    assert fake.calls[0][1]["capture_output"] is False
    assert fake.calls[0][1]["stdin"] is None


def test_spawn_failure_reports_missing_interpreter(monkeypatch: pytest.MonkeyPatch) -> None:
    def _missing(argv: list[str], **kwargs: Any) -> None:
        raise FileNotFoundError(2, "No such file or directory")

    monkeypatch.setattr(bridges.subprocess, "run", _missing)

    with pytest.raises(SpawnFailure, match="Failed to spawn 'deno'") as excinfo:
        spawn(["deno", "run", "a.ts"], capture=True)
    assert excinfo.value.exit_code == 127


def test_subprocess_bridge_builds_argv_and_description() -> None:
    bridge = SubprocessBridge("go", ("run",))

    assert bridge.argv("b.go", ["2", "three"]) == ["go", "run", "b.go", "2", "three"]
    assert bridge.describe() == "go run <script>"
    assert bridge.in_process is False
    assert bridge.fallback() is bridge


def test_compile_run_bridge_runs_built_output(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeRun(_completed(0, b"", b"compiled\n"), _completed(0, b"hello 3\n", b""))
    monkeypatch.setattr(bridges.subprocess, "run", fake)
    bridge = CompileRunBridge(("gfortran", "{script}", "-o", "{out}"), ("{out}",))

    result = bridge.run("hello.f90", ["3"], capture=True)

    assert result == ExecutionResult(exit_code=0, stdout="hello 3\n", stderr="compiled\n")
    compile_argv, _ = fake.calls[0]
    run_argv, _ = fake.calls[1]
    assert compile_argv[:2] == ["gfortran", "hello.f90"]
    out = compile_argv[-1]
    assert Path(out).name == "program"
    assert "polyscript_build_" in out
    assert run_argv == [out, "3"]


def test_compile_run_bridge_returns_compile_failure_without_running(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeRun(_completed(1, b"", b"syntax error\n"))
    monkeypatch.setattr(bridges.subprocess, "run", fake)
    bridge = CompileRunBridge(
        ("kotlinc", "{script}", "-include-runtime", "-d", "{out}"),
        ("java", "-jar", "{out}"),
        output_name="program.jar",
    )

    result = bridge.run("Main.kt", [], capture=True)

    assert result.exit_code == 1
    assert result.stderr == "syntax error\n"
    assert len(fake.calls) == 1


def test_compile_run_bridges_use_private_build_dirs(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeRun(*(_completed(0) for _ in range(4)))
    monkeypatch.setattr(bridges.subprocess, "run", fake)
    bridge = CompileRunBridge(("juliac", "--output-exe", "{out}", "{script}"), ("{out}",))

    bridge.run("a.jl", [], capture=True)
    bridge.run("a.jl", [], capture=True)

    first_out = fake.calls[0][0][2]
    second_out = fake.calls[2][0][2]
    assert first_out != second_out


def test_reexec_bridge_spawns_cli_module() -> None:
    bridge = ReexecBridge("py", "/usr/bin/python3")

    assert bridge.argv("/tmp/a.py", ["x"]) == ["/usr/bin/python3", "-m", "polys", "py", "/tmp/a.py", "x"]


def test_python_bridge_runs_script_in_process(write_script) -> None:
    script = write_script(
        "hello.py",
        """
        import sys
        print("hello", " ".join(sys.argv[1:]))
        print("to stderr", file=sys.stderr)
        """,
    )
    saved_argv = list(sys.argv)

    result = PythonBridge().run(str(script), ["x", "y"], capture=True)

    assert result == ExecutionResult(exit_code=0, stdout="hello x y\n", stderr="to stderr\n")
    assert sys.argv == saved_argv


def test_python_bridge_returns_sys_exit_code(write_script) -> None:
    script = write_script("fail.py", "import sys\nsys.exit(3)\n")

    result = PythonBridge().run(str(script), [], capture=True)

    assert result.exit_code == 3


def test_python_bridge_reports_uncaught_exception(write_script) -> None:
    script = write_script("boom.py", "raise RuntimeError('boom')\n")

    result = PythonBridge().run(str(script), [], capture=True)

    assert result.exit_code == 1
    assert "RuntimeError: boom" in result.stderr


def test_python_bridge_script_dir_is_importable(write_script) -> None:
    write_script("helper_mod_for_bridge.py", "VALUE = 41\n")
    script = write_script(
        "uses_helper.py",
        "import helper_mod_for_bridge\nprint(helper_mod_for_bridge.VALUE + 1)\n",
    )
    saved_path = list(sys.path)

    result = PythonBridge().run(str(script), [], capture=True)

    assert result.stdout == "42\n"
    assert sys.path == saved_path
    sys.modules.pop("helper_mod_for_bridge", None)


def test_in_process_bridges_fall_back_to_subprocesses() -> None:
    py_fallback = PythonBridge(python_executable="/usr/bin/python3").fallback()
    cpp_fallback = SharedLibraryBridge(python_executable="/usr/bin/python3").fallback()

    assert py_fallback == SubprocessBridge("/usr/bin/python3")
    assert cpp_fallback == ReexecBridge("cpp", "/usr/bin/python3")


def test_shared_library_bridge_captures_through_child(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeRun(_completed(5, b"native\n", b""))
    monkeypatch.setattr(bridges.subprocess, "run", fake)

    result = SharedLibraryBridge(python_executable="/usr/bin/python3").run(
        "./libexample.so", ["run", "a"], capture=True
    )

    assert result == ExecutionResult(exit_code=5, stdout="native\n", stderr="")
    assert fake.calls[0][0] == ["/usr/bin/python3", "-m", "polys", "cpp", "./libexample.so", "run", "a"]


def test_shared_library_bridge_requires_function_name() -> None:
    with pytest.raises(DispatchError, match="<function>"):
        SharedLibraryBridge().run("./libexample.so", [])


def test_shared_library_bridge_rejects_unloadable_library(tmp_path: Path) -> None:
    lib = tmp_path / "libnotreal.so"
    lib.write_bytes(b"not an elf file")

    with pytest.raises(SpawnFailure, match="Failed to load library"):
        SharedLibraryBridge().run(str(lib), ["run"])


def test_ensure_readable_rejects_missing_script(tmp_path: Path) -> None:
    with pytest.raises(ScriptUnreadable, match="not found") as excinfo:
        ensure_readable(str(tmp_path / "missing.py"))
    assert excinfo.value.exit_code == 127

    with pytest.raises(ScriptUnreadable):
        ensure_readable("")


def test_spawn_rejects_embedded_null_byte_as_spawn_failure() -> None:
    with pytest.raises(SpawnFailure, match="null byte") as excinfo:
        spawn([sys.executable, "-c", "pass", "a\x00b"], capture=True)
    assert excinfo.value.exit_code == 127
