from __future__ import annotations

import contextlib
import socket
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from ..config import DaemonConfig
from ..errors import DaemonAlreadyRunning, DaemonNotRunning, JobFailure, ProtocolError, SpawnFailure
from ..execution.bridges import CLI_MODULE
from ..logging import get_logger
from ..protocol import decode_result, encode_request
from ..types import ExecutionRequest, ExecutionResult

logger = get_logger("daemon.lifecycle")

DEFAULT_START_WAIT_SECONDS = 5.0
_POLL_INTERVAL_SECONDS = 0.05


@dataclass(frozen=True, slots=True)
class DaemonRecord:
    """Advisory pid of the daemon started by `polyscript daemon start`.

    Liveness is decided by connecting to the socket, never by this record.

    Example:
        ```python
        DaemonRecord(pid=4242).write(Path("/tmp/polyscript_daemon.pid"))
        ```
    """

    pid: int

    def write(self, path: Path) -> None:
        """Persist the pid as decimal text.

        Example:
            ```python
            DaemonRecord(pid=4242).write(Path("/tmp/polyscript_daemon.pid"))
            ```
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"{self.pid}\n", encoding="utf-8")

    @classmethod
    def read(cls, path: Path) -> "DaemonRecord | None":
        """Return the recorded pid, or None when the file is missing or garbled.

        Example:
            ```python
            record = DaemonRecord.read(Path("/tmp/polyscript_daemon.pid"))
            ```
        """
        try:
            text = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        if not text.isdigit():
            return None
        return cls(pid=int(text))

    @staticmethod
    def remove(path: Path) -> None:
        """Delete the record, ignoring a missing file.

        Example:
            ```python
            DaemonRecord.remove(Path("/tmp/polyscript_daemon.pid"))
            ```
        """
        with contextlib.suppress(FileNotFoundError):
            path.unlink()


class DaemonManager:
    """Start, stop and talk to the resident daemon.

    Example:
        ```python
        manager = DaemonManager(DaemonConfig())
        manager.start()
        manager.run("py", "a.py", ["x"])
        manager.stop()
        ```
    """

    def __init__(self, config: DaemonConfig) -> None:
        """Bind the manager to one socket and pid path.

        Example:
            ```python
            manager = DaemonManager(DaemonConfig(socket_path=Path("/tmp/ps/d.sock")))
            ```
        """
        self.config = config

    def connect(self, hint: str = "start it with `polyscript daemon start`") -> socket.socket:
        """Open a client connection or raise DaemonNotRunning.

        Example:
            ```python
            with manager.connect() as client:
                client.sendall(b"...")
            ```
        """
        client = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            client.connect(str(self.config.socket_path))
        except OSError:
            client.close()
            raise DaemonNotRunning(str(self.config.socket_path), hint) from None
        return client

    def is_running(self) -> bool:
        """Return whether a daemon accepts connections on the socket.

        Example:
            ```python
            if not manager.is_running():
                manager.start()
            ```
        """
        try:
            client = self.connect()
        except DaemonNotRunning:
            return False
        client.close()
        return True

    def serve_command(self) -> list[str]:
        """Return the argv of the detached server process.

        Example:
            ```python
            argv = manager.serve_command()
            ```
        """
        return [self.config.python_executable, "-m", CLI_MODULE, *self.config.cli_args(), "daemon", "serve"]

    def start(self, wait_seconds: float = DEFAULT_START_WAIT_SECONDS) -> int:
        """Spawn a detached daemon, record its pid and wait until it accepts connections.

        Refuses to start a second daemon when one already answers on the socket.

        Example:
            ```python
            pid = manager.start()
            ```
        """
        if self.is_running():
            raise DaemonAlreadyRunning(str(self.config.socket_path))
        self.config.log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config.log_path, "ab") as log_file:
            try:
                process = subprocess.Popen(
                    self.serve_command(),
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=log_file,
                    start_new_session=True,
                )
            except OSError as exc:
                raise SpawnFailure(f"Failed to spawn daemon: {exc.strerror or exc}") from exc
        DaemonRecord(process.pid).write(self.config.pid_path)
        logger.info("Daemon started", pid=process.pid, socket=str(self.config.socket_path))

        deadline = time.time() + wait_seconds
        while time.time() < deadline:
            if self.is_running():
                return process.pid
            returncode = process.poll()
            if returncode is not None:
                DaemonRecord.remove(self.config.pid_path)
                raise SpawnFailure(
                    f"Daemon exited during startup with code {returncode}; see {self.config.log_path}"
                )
            time.sleep(_POLL_INTERVAL_SECONDS)
        if wait_seconds > 0:
            logger.warning("Daemon not accepting connections yet", pid=process.pid, waited_s=wait_seconds)
        return process.pid

    def stop(self) -> int | None:
        """Send the stop sentinel, wait for the acknowledgment and clear the pid record.

        Returns the recorded pid, if any.

        Example:
            ```python
            pid = manager.stop()
            ```
        """
        record = DaemonRecord.read(self.config.pid_path)
        with self.connect(hint="nothing to stop") as client:
            client.sendall(encode_request(ExecutionRequest.stop_sentinel()))
            with client.makefile("rb") as reader:
                line = reader.readline()
        if not line:
            raise ProtocolError("Daemon closed the connection without acknowledging stop")
        decode_result(line)
        DaemonRecord.remove(self.config.pid_path)
        logger.info("Daemon stopped", pid=record.pid if record else None)
        return record.pid if record else None

    def request(self, request: ExecutionRequest) -> ExecutionResult:
        """Send one request and return the daemon's response.

        Example:
            ```python
            result = manager.request(ExecutionRequest("py", "a.py", ("x",)))
            ```
        """
        with self.connect() as client:
            client.sendall(encode_request(request))
            client.shutdown(socket.SHUT_WR)
            with client.makefile("rb") as reader:
                line = reader.readline()
        if not line:
            raise ProtocolError("Daemon closed the connection without a response")
        return decode_result(line)

    def run(
        self,
        language: str,
        script: str,
        arguments: list[str] | tuple[str, ...] = (),
        *,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> ExecutionResult:
        """Run a script through the daemon, mirroring its output to the caller's streams.

        Raises JobFailure when the script exits non-zero.

        Example:
            ```python
            manager.run("py", "a.py", ["x"])
            ```
        """
        script_path = str(Path(script).resolve()) if script else script
        result = self.request(ExecutionRequest(language, script_path, tuple(arguments)))
        out = stdout or sys.stdout
        err = stderr or sys.stderr
        out.write(result.stdout)
        out.flush()
        err.write(result.stderr)
        err.flush()
        if not result.ok:
            raise JobFailure(result)
        return result
