from __future__ import annotations

import sys
import time
from dataclasses import replace

from .execution.bridges import Bridge, ReexecBridge, ensure_readable
from .execution.table import DEFAULT_TABLE, DispatchTable
from .logging import get_logger
from .types import ExecutionRequest, ExecutionResult

logger = get_logger("runner")


class JobRunner:
    """Execute one request to completion and return its captured result.

    `isolate=True` runs every job in a fresh `python -m polys` child (daemon
    mode); `concurrent=True` swaps in-process bridges for their subprocess
    fallbacks (parallel mode). Both child kinds run under `python_executable`.
    Non-zero exits are returned, never raised.

    Example:
        ```python
        runner = JobRunner(isolate=True)
        result = runner.run(ExecutionRequest(language="py", script="a.py", arguments=("x",)))
        ```
    """

    def __init__(
        self,
        table: DispatchTable | None = None,
        *,
        isolate: bool = False,
        concurrent: bool = False,
        python_executable: str | None = None,
    ) -> None:
        """Configure how requests are mapped onto bridges.

        Example:
            ```python
            runner = JobRunner(concurrent=True)
            ```
        """
        self._table = table or DEFAULT_TABLE
        self._isolate = isolate
        self._concurrent = concurrent
        self._python_executable = python_executable or sys.executable

    def bridge_for(self, language: str) -> Bridge:
        """Resolve the bridge a request will run through, rejecting unknown tags.

        Example:
            ```python
            bridge = JobRunner(isolate=True).bridge_for("py")
            ```
        """
        bridge = self._table.resolve(language)
        if self._isolate:
            return ReexecBridge(language, self._python_executable)
        if self._concurrent and bridge.in_process:
            if hasattr(bridge, "python_executable"):
                bridge = replace(bridge, python_executable=self._python_executable)
            return bridge.fallback()
        return bridge

    def run(self, request: ExecutionRequest) -> ExecutionResult:
        """Run a non-stop request and capture exit code, stdout and stderr.

        Raises UnknownLanguage or SpawnFailure when the job cannot start.

        Example:
            ```python
            result = JobRunner().run(ExecutionRequest("py", "a.py", ("x",)))
            ```
        """
        if request.stop:
            raise ValueError("The stop sentinel is not an executable job")
        bridge = self.bridge_for(request.language)
        ensure_readable(request.script)
        started = time.perf_counter()
        result = bridge.run(request.script, list(request.arguments), capture=True)
        logger.debug(
            "Job finished",
            language=request.language,
            script=request.script,
            exit_code=result.exit_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return result
