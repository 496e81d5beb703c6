from __future__ import annotations

import contextlib
import ctypes
import io
import os
import runpy
import subprocess
import sys
import tempfile
import traceback
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from ..errors import DispatchError, ScriptUnreadable, SpawnFailure
from ..types import ExecutionResult, decode_output

CLI_MODULE = "polys"


class Bridge(Protocol):
    """Invocation strategy for one language.

    `in_process` bridges run inside the calling interpreter and must not be
    entered from several threads at once; `fallback()` returns the subprocess
    strategy used in their place when jobs run concurrently.
    """

    in_process: bool

    def run(self, script: str, arguments: Sequence[str], *, capture: bool = False) -> ExecutionResult:
        """Run one script, inheriting standard streams unless `capture` is set.

        Example:
            ```python
            result = bridge.run("a.py", ["x"], capture=True)
            ```
        """
        ...

    def fallback(self) -> Bridge:
        """Return the bridge to use when this one cannot run concurrently.

        Example:
            ```python
            safe = bridge.fallback() if bridge.in_process else bridge
            ```
        """
        ...

    def describe(self) -> str:
        """Return a one-line human description of the strategy.

        Example:
            ```python
            print(bridge.describe())
            ```
        """
        ...


def ensure_readable(script: str) -> None:
    """Raise ScriptUnreadable unless the script path exists and is readable.

    Example:
        ```python
        ensure_readable("scripts/hello.py")
        ```
    """
    if not script or not os.path.exists(script):
        raise ScriptUnreadable(script, "not found")
    if not os.access(script, os.R_OK):
        raise ScriptUnreadable(script, "not readable")


def exit_status(returncode: int) -> int:
    """Map a subprocess return code to a shell-style exit status.

    Signal deaths (negative return codes) become 128 + signal number.

    Example:
        ```python
        assert exit_status(-9) == 137
        ```
    """
    if returncode < 0:
        return 128 + abs(returncode)
    return returncode


def spawn(argv: Sequence[str], *, capture: bool = False) -> ExecutionResult:
    """Run one child process to completion and normalize its outcome.

    Example:
        ```python
        result = spawn(["node", "a.js", "x"], capture=True)
        ```
    """
    try:
        completed = subprocess.run(
            list(argv),
            capture_output=capture,
            stdin=subprocess.DEVNULL if capture else None,
            check=False,
        )
    except (OSError, ValueError) as exc:
        # ValueError: an argument holds an embedded NUL byte.
        reason = getattr(exc, "strerror", None) or str(exc)
        raise SpawnFailure(f"Failed to spawn '{argv[0]}': {reason}") from exc
    return ExecutionResult(
        exit_code=exit_status(completed.returncode),
        stdout=decode_output(completed.stdout),
        stderr=decode_output(completed.stderr),
    )


@dataclass(frozen=True, slots=True)
class SubprocessBridge:
    """Run `command [pre_args...] script [args...]` as a child process.

    Example:
        ```python
        bridge = SubprocessBridge("go", ("run",))
        ```
    """

    command: str
    pre_args: tuple[str, ...] = ()
    in_process: bool = field(default=False, init=False)

    def argv(self, script: str, arguments: Sequence[str]) -> list[str]:
        """Build the child argv for a script.

        Example:
            ```python
            assert SubprocessBridge("deno", ("run",)).argv("a.ts", ["1"]) == ["deno", "run", "a.ts", "1"]
            ```
        """
        return [self.command, *self.pre_args, script, *arguments]

    def run(self, script: str, arguments: Sequence[str], *, capture: bool = False) -> ExecutionResult:
        """Spawn the interpreter for one script.

        Example:
            ```python
            result = SubprocessBridge("lua").run("a.lua", [], capture=True)
            ```
        """
        return spawn(self.argv(script, arguments), capture=capture)

    def fallback(self) -> Bridge:
        """Return self; a subprocess bridge is always safe to run concurrently.

        Example:
            ```python
            assert bridge.fallback() is bridge
            ```
        """
        return self

    def describe(self) -> str:
        """Describe the command line this bridge runs.

        Example:
            ```python
            SubprocessBridge("go", ("run",)).describe()  # "go run <script>"
            ```
        """
        return " ".join([self.command, *self.pre_args, "<script>"])


@dataclass(frozen=True, slots=True)
class CompileRunBridge:
    """Compile a script into a private temporary directory, then run the output.

    Templates use `{script}` and `{out}` placeholders.

    Example:
        ```python
        bridge = CompileRunBridge(("gfortran", "{script}", "-o", "{out}"), ("{out}",))
        ```
    """

    compile_template: tuple[str, ...]
    run_template: tuple[str, ...]
    output_name: str = "program"
    in_process: bool = field(default=False, init=False)

    def run(self, script: str, arguments: Sequence[str], *, capture: bool = False) -> ExecutionResult:
        """Compile then run; a failed compile is returned as the job's result.

        Example:
            ```python
            result = bridge.run("hello.f90", ["3"], capture=True)
            ```
        """
        with tempfile.TemporaryDirectory(prefix="polyscript_build_") as build_dir:
            out = os.path.join(build_dir, self.output_name)
            values = {"script": script, "out": out}
            compiled = spawn([part.format(**values) for part in self.compile_template], capture=capture)
            if not compiled.ok:
                return compiled
            executed = spawn(
                [*(part.format(**values) for part in self.run_template), *arguments],
                capture=capture,
            )
        return ExecutionResult(
            exit_code=executed.exit_code,
            stdout=compiled.stdout + executed.stdout,
            stderr=compiled.stderr + executed.stderr,
        )

    def fallback(self) -> Bridge:
        """Return self; every invocation builds into its own directory.

        Example:
            ```python
            assert bridge.fallback() is bridge
            ```
        """
        return self

    def describe(self) -> str:
        """Describe the compile and run steps.

        Example:
            ```python
            print(bridge.describe())
            ```
        """
        compile_step = " ".join(self.compile_template).format(script="<script>", out="<out>")
        run_step = " ".join(self.run_template).format(script="<script>", out="<out>")
        return f"{compile_step} && {run_step}"


@dataclass(frozen=True, slots=True)
class ReexecBridge:
    """Run a language through a fresh `python -m polys` child process.

    The daemon services every request this way, so interpreter state set up by
    one request can never leak into another.

    Example:
        ```python
        bridge = ReexecBridge("py")
        ```
    """

    language: str
    python_executable: str = field(default_factory=lambda: sys.executable)
    in_process: bool = field(default=False, init=False)

    def argv(self, script: str, arguments: Sequence[str]) -> list[str]:
        """Build the self re-exec argv.

        Example:
            ```python
            ReexecBridge("py", "/usr/bin/python3").argv("a.py", ["x"])
            ```
        """
        return [self.python_executable, "-m", CLI_MODULE, self.language, script, *arguments]

    def run(self, script: str, arguments: Sequence[str], *, capture: bool = False) -> ExecutionResult:
        """Spawn a polyscript child for one script.

        Example:
            ```python
            result = ReexecBridge("py").run("a.py", ["x"], capture=True)
            ```
        """
        return spawn(self.argv(script, arguments), capture=capture)

    def fallback(self) -> Bridge:
        """Return self; the child process is already isolated.

        Example:
            ```python
            assert bridge.fallback() is bridge
            ```
        """
        return self

    def describe(self) -> str:
        """Describe the re-exec command.

        Example:
            ```python
            print(ReexecBridge("cpp").describe())
            ```
        """
        return f"python -m {CLI_MODULE} {self.language} <script>"


def _system_exit_code(exc: SystemExit) -> int:
    """Translate SystemExit the way the interpreter does at process exit.

    Example:
        ```python
        assert _system_exit_code(SystemExit(3)) == 3
        ```
    """
    code = exc.code
    if code is None:
        return 0
    if isinstance(code, int):
        return code
    print(code, file=sys.stderr)
    return 1


def _run_main(script: str) -> int:
    """Execute a script file as `__main__` and return its exit status.

    Example:
        ```python
        status = _run_main("a.py")
        ```
    """
    try:
        runpy.run_path(script, run_name="__main__")
    except SystemExit as exc:
        return _system_exit_code(exc)
    except Exception:
        traceback.print_exc()
        return 1
    return 0


@dataclass(frozen=True, slots=True)
class PythonBridge:
    """Run a Python script inside the current interpreter.

    Swaps `sys.argv` and `sys.path[0]` for the duration of the call, so it must
    not run on several threads at once; concurrent callers use `fallback()`.

    Example:
        ```python
        result = PythonBridge().run("a.py", ["x"], capture=True)
        ```
    """

    python_executable: str = field(default_factory=lambda: sys.executable)
    in_process: bool = field(default=True, init=False)

    def run(self, script: str, arguments: Sequence[str], *, capture: bool = False) -> ExecutionResult:
        """Run the script in-process, optionally capturing its output.

        Example:
            ```python
            result = PythonBridge().run("a.py", ["x"], capture=True)
            ```
        """
        saved_argv = sys.argv
        saved_path = list(sys.path)
        sys.argv = [script, *arguments]
        sys.path.insert(0, os.path.dirname(os.path.abspath(script)))
        stdout_buffer = io.StringIO()
        stderr_buffer = io.StringIO()
        try:
            if capture:
                with contextlib.redirect_stdout(stdout_buffer), contextlib.redirect_stderr(stderr_buffer):
                    status = _run_main(script)
            else:
                status = _run_main(script)
                sys.stdout.flush()
                sys.stderr.flush()
        finally:
            sys.argv = saved_argv
            sys.path[:] = saved_path
        return ExecutionResult(
            exit_code=status,
            stdout=stdout_buffer.getvalue(),
            stderr=stderr_buffer.getvalue(),
        )

    def fallback(self) -> Bridge:
        """Return a plain `python script` subprocess bridge.

        Example:
            ```python
            assert PythonBridge().fallback().in_process is False
            ```
        """
        return SubprocessBridge(self.python_executable)

    def describe(self) -> str:
        """Describe the in-process strategy.

        Example:
            ```python
            print(PythonBridge().describe())
            ```
        """
        return "in-process Python (runpy); subprocess fallback when concurrent"


@dataclass(frozen=True, slots=True)
class SharedLibraryBridge:
    """Call `int <func>(int argc, const char **argv)` from a shared library via ctypes.

    The script is the library path, the first argument names the exported
    function and the remaining arguments become its argv. Native code writes to
    the process file descriptors directly, so captured runs go through a
    re-exec child.

    Example:
        ```python
        result = SharedLibraryBridge().run("./libexample.so", ["run", "a", "b"])
        ```
    """

    language: str = "cpp"
    python_executable: str = field(default_factory=lambda: sys.executable)
    in_process: bool = field(default=True, init=False)

    def run(self, script: str, arguments: Sequence[str], *, capture: bool = False) -> ExecutionResult:
        """Load the library and call the requested function.

        Example:
            ```python
            result = SharedLibraryBridge().run("./libexample.so", ["run", "x"])
            ```
        """
        if capture:
            return self.fallback().run(script, arguments, capture=True)
        if not arguments:
            raise DispatchError(f"{self.language}: expected '<library> <function> [args...]'")
        func_name, *rest = arguments
        try:
            library = ctypes.CDLL(os.path.abspath(script))
        except OSError as exc:
            raise SpawnFailure(f"Failed to load library '{script}': {exc}") from exc
        try:
            func = getattr(library, func_name)
        except AttributeError as exc:
            raise SpawnFailure(f"Symbol '{func_name}' not found in '{script}'") from exc
        func.argtypes = [ctypes.c_int, ctypes.POINTER(ctypes.c_char_p)]
        func.restype = ctypes.c_int
        encoded = [arg.encode("utf-8") for arg in rest]
        c_argv = (ctypes.c_char_p * len(encoded))(*encoded)
        sys.stdout.flush()
        status = int(func(len(encoded), c_argv))
        return ExecutionResult(exit_code=status)

    def fallback(self) -> Bridge:
        """Return a re-exec bridge so the native call runs in its own process.

        Example:
            ```python
            assert SharedLibraryBridge().fallback().in_process is False
            ```
        """
        return ReexecBridge(self.language, self.python_executable)

    def describe(self) -> str:
        """Describe the FFI strategy.

        Example:
            ```python
            print(SharedLibraryBridge().describe())
            ```
        """
        return "in-process FFI (ctypes): <library> <function> [args...]"

