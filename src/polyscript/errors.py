from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .parallel import JobOutcome
    from .types import ExecutionResult


class PolyscriptError(Exception):
    """Base class for every error raised by polyscript.

    Example:
        ```python
        try:
            dispatch("cobol", "a.cbl", [])
        except PolyscriptError as exc:
            print(exc.exit_code)
        ```
    """

    exit_code: int = 1


class DispatchError(PolyscriptError):
    """A request could not be dispatched to a bridge.

    Example:
        ```python
        raise DispatchError("cannot dispatch")
        ```
    """


class UnknownLanguage(DispatchError):
    """The language tag is not part of the dispatch table.

    Example:
        ```python
        raise UnknownLanguage("cobol", ["py", "go"])
        ```
    """

    exit_code = 2

    def __init__(self, language: str, known: Sequence[str] = ()) -> None:
        """Store the rejected tag and build a message listing known tags.

        Example:
            ```python
            err = UnknownLanguage("cobol", ["py", "go"])
            ```
        """
        self.language = language
        message = f"Unknown language '{language}'"
        if known:
            message += f" (expected one of: {', '.join(known)})"
        super().__init__(message)


class MalformedSpec(DispatchError):
    """A parallel batch spec could not be split into language and script.

    Example:
        ```python
        raise MalformedSpec("py", "expected '<lang> <script> [args...]'")
        ```
    """

    exit_code = 2

    def __init__(self, spec: str, reason: str) -> None:
        """Store the offending spec text.

        Example:
            ```python
            err = MalformedSpec("py", "missing script")
            ```
        """
        self.spec = spec
        super().__init__(f"Malformed spec {spec!r}: {reason}")


class SpawnFailure(DispatchError):
    """The child process for a job could not be created.

    Example:
        ```python
        raise SpawnFailure("Failed to spawn 'node': No such file or directory")
        ```
    """

    exit_code = 127


class ScriptUnreadable(SpawnFailure):
    """The script path does not exist or cannot be read.

    Example:
        ```python
        raise ScriptUnreadable("missing.py")
        ```
    """

    def __init__(self, script: str, reason: str = "not found or not readable") -> None:
        """Store the script path that failed the readability check.

        Example:
            ```python
            err = ScriptUnreadable("missing.py")
            ```
        """
        self.script = script
        super().__init__(f"Script '{script}' is {reason}")


class ProtocolError(PolyscriptError):
    """A wire line could not be decoded into a request or response.

    Example:
        ```python
        raise ProtocolError("Invalid JSON: Expecting value")
        ```
    """


class DaemonNotRunning(PolyscriptError):
    """No daemon is listening on the configured socket.

    Example:
        ```python
        raise DaemonNotRunning("/tmp/polyscript_daemon.sock")
        ```
    """

    def __init__(self, socket_path: str, hint: str = "start it with `polyscript daemon start`") -> None:
        """Build an actionable message for the interactive caller.

        Example:
            ```python
            err = DaemonNotRunning("/tmp/polyscript_daemon.sock")
            ```
        """
        self.socket_path = socket_path
        message = f"Daemon not running at {socket_path}"
        if hint:
            message += f"; {hint}"
        super().__init__(message)


class DaemonAlreadyRunning(PolyscriptError):
    """A daemon already answers on the configured socket.

    Example:
        ```python
        raise DaemonAlreadyRunning("/tmp/polyscript_daemon.sock")
        ```
    """

    def __init__(self, socket_path: str) -> None:
        """Store the socket path that is already served.

        Example:
            ```python
            err = DaemonAlreadyRunning("/tmp/polyscript_daemon.sock")
            ```
        """
        self.socket_path = socket_path
        super().__init__(f"Daemon already running at {socket_path}")


class BindFailure(PolyscriptError):
    """The listening socket could not be bound; startup is aborted.

    Example:
        ```python
        raise BindFailure("Failed to bind /tmp/polyscript_daemon.sock: Address already in use")
        ```
    """


class JobFailure(PolyscriptError):
    """A job ran to completion but exited non-zero.

    Example:
        ```python
        raise JobFailure(ExecutionResult(exit_code=3, stdout="", stderr="boom"))
        ```
    """

    def __init__(self, result: ExecutionResult) -> None:
        """Carry the full result so callers can mirror its exit code.

        Example:
            ```python
            err = JobFailure(ExecutionResult(exit_code=3, stdout="", stderr=""))
            ```
        """
        self.result = result
        super().__init__(f"Script exited with {result.exit_code}")

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        """Return the failed job's exit code.

        Example:
            ```python
            assert JobFailure(ExecutionResult(3, "", "")).exit_code == 3
            ```
        """
        return self.result.exit_code


class BatchFailure(PolyscriptError):
    """At least one job of a parallel batch failed.

    Example:
        ```python
        raise BatchFailure(report.outcomes)
        ```
    """

    def __init__(self, outcomes: Sequence[JobOutcome]) -> None:
        """Store every outcome of the batch, failed or not.

        Example:
            ```python
            err = BatchFailure(report.outcomes)
            ```
        """
        self.outcomes = list(outcomes)
        failed = [outcome for outcome in self.outcomes if not outcome.ok]
        super().__init__(f"{len(failed)} of {len(self.outcomes)} parallel job(s) failed")
