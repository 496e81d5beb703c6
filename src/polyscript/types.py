from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """One decoded client request, or the stop sentinel when `stop` is set.

    Example:
        ```python
        req = ExecutionRequest(language="py", script="a.py", arguments=("x",))
        ```
    """

    language: str
    script: str
    arguments: tuple[str, ...] = field(default_factory=tuple)
    stop: bool = False

    @classmethod
    def stop_sentinel(cls) -> "ExecutionRequest":
        """Return the request that asks the daemon to shut down.

        Example:
            ```python
            req = ExecutionRequest.stop_sentinel()
            ```
        """
        return cls(language="", script="", arguments=(), stop=True)


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Exit code and captured output of one job.

    Example:
        ```python
        out = ExecutionResult(exit_code=0, stdout="hello x\\n", stderr="")
        ```
    """

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """Return whether the job exited with status zero.

        Example:
            ```python
            assert ExecutionResult(exit_code=0).ok
            ```
        """
        return self.exit_code == 0


STOP_ACKNOWLEDGEMENT = ExecutionResult(exit_code=0, stdout="", stderr="daemon stopped")


def decode_output(data: bytes | str | None) -> str:
    """Materialize child output as text, replacing invalid UTF-8 sequences.

    Example:
        ```python
        text = decode_output(b"caf\\xc3\\xa9")
        ```
    """
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")
