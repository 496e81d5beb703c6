from __future__ import annotations

import shlex
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Sequence, TextIO

from .errors import BatchFailure, MalformedSpec, PolyscriptError
from .logging import get_logger
from .runner import JobRunner
from .types import ExecutionRequest, ExecutionResult

logger = get_logger("parallel")


@dataclass(frozen=True, slots=True)
class JobSpec:
    """One parsed batch item: `<lang> <script> [args...]`.

    Example:
        ```python
        spec = JobSpec(language="py", script="a.py", arguments=("1",))
        ```
    """

    language: str
    script: str
    arguments: tuple[str, ...] = ()

    def to_request(self) -> ExecutionRequest:
        """Return the execution request for this spec.

        Example:
            ```python
            req = parse_spec("py a.py 1").to_request()
            ```
        """
        return ExecutionRequest(language=self.language, script=self.script, arguments=self.arguments)


def parse_spec(text: str) -> JobSpec:
    """Split a textual spec with shell-style quoting.

    Example:
        ```python
        spec = parse_spec('go b.go 2 "two words"')
        ```
    """
    try:
        tokens = shlex.split(text)
    except ValueError as exc:
        raise MalformedSpec(text, str(exc)) from exc
    if len(tokens) < 2:
        raise MalformedSpec(text, "expected '<lang> <script> [args...]'")
    language, script, *arguments = tokens
    return JobSpec(language=language, script=script, arguments=tuple(arguments))


@dataclass(frozen=True, slots=True)
class JobOutcome:
    """Result of one batch item: a captured result, or the error that prevented it.

    Example:
        ```python
        outcome = JobOutcome(spec="py a.py 1", result=ExecutionResult(exit_code=0))
        ```
    """

    spec: str
    result: ExecutionResult | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        """Return whether the job ran and exited zero.

        Example:
            ```python
            assert JobOutcome("py a.py", ExecutionResult(0)).ok
            ```
        """
        return self.error is None and self.result is not None and self.result.ok

    @property
    def exit_code(self) -> int:
        """Return the job's exit code, or the error's code when it never ran.

        Example:
            ```python
            code = outcome.exit_code
            ```
        """
        if self.result is not None:
            return self.result.exit_code
        if isinstance(self.error, PolyscriptError):
            return self.error.exit_code
        return 1


@dataclass(frozen=True, slots=True)
class BatchReport:
    """Every outcome of a batch, in input order.

    Example:
        ```python
        report = ParallelExecutor().run(["py a.py 1"])
        ```
    """

    outcomes: tuple[JobOutcome, ...]

    @property
    def ok(self) -> bool:
        """Return whether every job succeeded.

        Example:
            ```python
            assert report.ok
            ```
        """
        return all(outcome.ok for outcome in self.outcomes)

    @property
    def failed(self) -> list[JobOutcome]:
        """Return the outcomes that did not succeed.

        Example:
            ```python
            names = [outcome.spec for outcome in report.failed]
            ```
        """
        return [outcome for outcome in self.outcomes if not outcome.ok]


class ParallelExecutor:
    """Run a batch of specs on one thread each and join them all.

    In-process bridges are replaced by their subprocess fallbacks, so the
    embedded Python runtime is never entered from two threads. Each job's
    captured output is echoed as one block when it finishes.

    Example:
        ```python
        ParallelExecutor().run_batch(["py a.py 1", "go b.go 2"])
        ```
    """

    def __init__(
        self,
        runner: JobRunner | None = None,
        *,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        echo: bool = True,
    ) -> None:
        """Configure the runner and the streams job output is echoed to.

        Example:
            ```python
            executor = ParallelExecutor(echo=False)
            ```
        """
        self._runner = runner or JobRunner(concurrent=True)
        self._stdout = stdout
        self._stderr = stderr
        self._echo_enabled = echo
        self._echo_lock = threading.Lock()

    def run(self, specs: Sequence[str]) -> BatchReport:
        """Run every spec concurrently and wait for all of them.

        Failures never cancel sibling jobs.

        Example:
            ```python
            report = ParallelExecutor().run(["py a.py 1", "go b.go 2"])
            ```
        """
        if not specs:
            return BatchReport(outcomes=())
        logger.info("Dispatching jobs in parallel", count=len(specs))
        with ThreadPoolExecutor(max_workers=len(specs), thread_name_prefix="polyscript-job") as pool:
            futures = [pool.submit(self._run_one, text) for text in specs]
            wait(futures)

        outcomes: list[JobOutcome] = []
        for text, future in zip(specs, futures):
            exc = future.exception()
            if exc is not None:
                logger.error("Job thread terminated abnormally", spec=text, error=repr(exc))
                outcomes.append(JobOutcome(spec=text, error=exc))
            else:
                outcomes.append(future.result())
        return BatchReport(outcomes=tuple(outcomes))

    def run_batch(self, specs: Sequence[str]) -> BatchReport:
        """Run every spec and raise BatchFailure if any of them failed.

        Example:
            ```python
            report = ParallelExecutor().run_batch(["py a.py 1"])
            ```
        """
        report = self.run(specs)
        if not report.ok:
            raise BatchFailure(report.outcomes)
        return report

    def _run_one(self, text: str) -> JobOutcome:
        """Parse and execute one spec, recording dispatch errors as outcomes.

        Example:
            ```python
            outcome = executor._run_one("py a.py 1")
            ```
        """
        try:
            spec = parse_spec(text)
            result = self._runner.run(spec.to_request())
        except PolyscriptError as exc:
            outcome = JobOutcome(spec=text, error=exc)
        else:
            outcome = JobOutcome(spec=text, result=result)
        logger.info("Job finished", spec=text, exit_code=outcome.exit_code, ok=outcome.ok)
        self._echo(outcome)
        return outcome

    def _echo(self, outcome: JobOutcome) -> None:
        """Write a finished job's output without interleaving it with other jobs.

        Example:
            ```python
            executor._echo(outcome)
            ```
        """
        if not self._echo_enabled:
            return
        out = self._stdout or sys.stdout
        err = self._stderr or sys.stderr
        with self._echo_lock:
            if outcome.result is not None:
                out.write(outcome.result.stdout)
                out.flush()
                err.write(outcome.result.stderr)
            if outcome.error is not None:
                err.write(f"polyscript: {outcome.spec}: {outcome.error}\n")
            err.flush()
