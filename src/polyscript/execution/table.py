from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Sequence

from ..errors import UnknownLanguage
from ..types import ExecutionResult
from .bridges import (
    Bridge,
    CompileRunBridge,
    PythonBridge,
    SharedLibraryBridge,
    SubprocessBridge,
    ensure_readable,
)


@dataclass(frozen=True, slots=True)
class DispatchTable:
    """Immutable mapping from language tag to bridge.

    Example:
        ```python
        table = DispatchTable({"lua": SubprocessBridge("lua")})
        ```
    """

    entries: Mapping[str, Bridge]

    def __post_init__(self) -> None:
        """Freeze the entries so the table cannot be mutated after construction.

        Example:
            ```python
            DispatchTable({"js": SubprocessBridge("node")})
            ```
        """
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    def languages(self) -> list[str]:
        """Return the recognized tags in table order.

        Example:
            ```python
            assert "py" in DEFAULT_TABLE.languages()
            ```
        """
        return list(self.entries)

    def resolve(self, language: str, *, concurrent: bool = False) -> Bridge:
        """Return the bridge for a tag, using the fallback of in-process bridges when concurrent.

        Example:
            ```python
            bridge = DEFAULT_TABLE.resolve("py", concurrent=True)
            ```
        """
        try:
            bridge = self.entries[language]
        except KeyError:
            raise UnknownLanguage(language, self.languages()) from None
        if concurrent and bridge.in_process:
            return bridge.fallback()
        return bridge

    def dispatch(
        self,
        language: str,
        script: str,
        arguments: Sequence[str] = (),
        *,
        capture: bool = True,
        concurrent: bool = False,
    ) -> ExecutionResult:
        """Run one script through its bridge and return the exit code and output.

        Example:
            ```python
            result = DEFAULT_TABLE.dispatch("py", "a.py", ["x"])
            ```
        """
        bridge = self.resolve(language, concurrent=concurrent)
        ensure_readable(script)
        return bridge.run(script, list(arguments), capture=capture)


def build_default_table() -> DispatchTable:
    """Build the table of every supported language.

    Example:
        ```python
        table = build_default_table()
        ```
    """
    return DispatchTable(
        {
            "py": PythonBridge(),
            "jl": SubprocessBridge("julia"),
            "jlc": CompileRunBridge(("juliac", "--output-exe", "{out}", "{script}"), ("{out}",)),
            "go": SubprocessBridge("go", ("run",)),
            "js": SubprocessBridge("node"),
            "ts": SubprocessBridge("deno", ("run",)),
            "lua": SubprocessBridge("lua"),
            "r": SubprocessBridge("Rscript"),
            "mojo": SubprocessBridge("mojo"),
            "zig": SubprocessBridge("zig", ("run",)),
            "wasm": SubprocessBridge("wasmtime", ("run",)),
            "hs": SubprocessBridge("runghc"),
            "swift": SubprocessBridge("swift"),
            "kt": SubprocessBridge("kotlinc", ("-script",)),
            "ktn": CompileRunBridge(
                ("kotlinc", "{script}", "-include-runtime", "-d", "{out}"),
                ("java", "-jar", "{out}"),
                output_name="program.jar",
            ),
            "nim": SubprocessBridge("nim", ("r",)),
            "fort": CompileRunBridge(("gfortran", "{script}", "-o", "{out}"), ("{out}",)),
            "cpp": SharedLibraryBridge(),
        }
    )


DEFAULT_TABLE = build_default_table()


def dispatch(
    language: str,
    script: str,
    arguments: Sequence[str] = (),
    *,
    capture: bool = True,
    table: DispatchTable | None = None,
) -> ExecutionResult:
    """Dispatch through the default table unless another table is given.

    Example:
        ```python
        from polyscript import dispatch
        result = dispatch("py", "hello.py", ["x"])
        ```
    """
    return (table or DEFAULT_TABLE).dispatch(language, script, arguments, capture=capture)
