from __future__ import annotations

import contextlib
import os
import socketserver
import threading
import time
from typing import Any, Callable

from ..config import DaemonConfig
from ..errors import BindFailure, DispatchError, ProtocolError
from ..logging import get_logger
from ..protocol import decode_request, encode_result
from ..runner import JobRunner
from ..types import STOP_ACKNOWLEDGEMENT, ExecutionRequest, ExecutionResult

logger = get_logger("daemon.server")

ExitFunc = Callable[[int], Any]


class Session(socketserver.StreamRequestHandler):
    """Serve one connection: read a request line, write one response, repeat.

    The session ends when the peer closes the stream, a line fails to decode,
    or a stop request is processed.
    """

    server: DaemonServer

    def handle(self) -> None:
        """Loop over request lines strictly in arrival order.

        Example:
            ```python
            # invoked by socketserver on a dedicated thread per connection
            ```
        """
        log = logger.bind(session=threading.current_thread().name)
        log.debug("Session opened")
        while True:
            line = self.rfile.readline()
            if not line:
                log.debug("Session closed by peer")
                return
            try:
                request = decode_request(line)
            except ProtocolError as exc:
                log.warning("Closing session after protocol error", error=str(exc))
                return
            if request.stop:
                self._respond(STOP_ACKNOWLEDGEMENT)
                log.info("Stop requested")
                self.server.schedule_exit()
                return
            self._respond(self.server.execute(request))

    def _respond(self, result: ExecutionResult) -> None:
        """Write one response line and flush it to the peer.

        Example:
            ```python
            self._respond(ExecutionResult(exit_code=0))
            ```
        """
        self.wfile.write(encode_result(result))
        self.wfile.flush()


class DaemonServer(socketserver.ThreadingUnixStreamServer):
    """Unix socket server that hands every connection to its own Session thread.

    Example:
        ```python
        server = DaemonServer(DaemonConfig(), JobRunner(isolate=True))
        server.serve_forever()
        ```
    """

    daemon_threads = True

    def __init__(
        self,
        config: DaemonConfig,
        runner: JobRunner,
        *,
        exit_func: ExitFunc | None = None,
    ) -> None:
        """Bind the configured socket path; bind errors abort startup.

        Example:
            ```python
            server = DaemonServer(config, JobRunner(isolate=True), exit_func=lambda code: None)
            ```
        """
        self.config = config
        self.runner = runner
        self._exit = exit_func or os._exit
        try:
            super().__init__(str(config.socket_path), Session)
        except OSError as exc:
            raise BindFailure(f"Failed to bind {config.socket_path}: {exc.strerror or exc}") from exc

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run one request, turning dispatch errors into an error response.

        Example:
            ```python
            result = server.execute(ExecutionRequest("py", "a.py", ("x",)))
            ```
        """
        started = time.perf_counter()
        log = logger.bind(language=request.language, script=request.script)
        log.debug("Request started", arguments=list(request.arguments))
        try:
            result = self.runner.run(request)
        except DispatchError as exc:
            log.warning("Request could not be run", error=str(exc))
            return ExecutionResult(exit_code=exc.exit_code, stdout="", stderr=f"{exc}\n")
        log.info(
            "Request done",
            exit_code=result.exit_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return result

    def get_request(self) -> tuple[Any, Any]:
        """Accept one connection, logging failures before the accept loop moves on.

        Example:
            ```python
            conn, addr = server.get_request()
            ```
        """
        try:
            return super().get_request()
        except OSError as exc:
            logger.error("Accept failed", error=str(exc))
            raise

    def handle_error(self, request: Any, client_address: Any) -> None:
        """Log an unexpected session failure without stopping the server.

        Example:
            ```python
            # called by socketserver when Session.handle raises
            ```
        """
        logger.exception("Session failed")

    def schedule_exit(self) -> None:
        """Exit the process after the grace delay on a background thread.

        In-flight sessions are not drained; they are cut off when the process
        exits.

        Example:
            ```python
            server.schedule_exit()
            ```
        """

        def _exit_after_grace() -> None:
            """Sleep for the grace delay, remove the socket file and exit.

            Example:
                ```python
                threading.Thread(target=_exit_after_grace, daemon=True).start()
                ```
            """
            time.sleep(self.config.stop_grace_seconds)
            self.remove_socket_file()
            logger.info("Daemon exiting")
            self._exit(0)

        threading.Thread(target=_exit_after_grace, name="polyscript-exit", daemon=True).start()

    def remove_socket_file(self) -> None:
        """Unlink the socket path, ignoring an already missing file.

        Example:
            ```python
            server.remove_socket_file()
            ```
        """
        with contextlib.suppress(FileNotFoundError):
            os.unlink(self.config.socket_path)


def remove_stale_socket(config: DaemonConfig) -> None:
    """Remove a socket file left behind by a crashed daemon.

    Example:
        ```python
        remove_stale_socket(DaemonConfig())
        ```
    """
    config.socket_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.unlink(config.socket_path)
    except FileNotFoundError:
        return
    except OSError as exc:
        raise BindFailure(f"Failed to remove stale socket {config.socket_path}: {exc.strerror or exc}") from exc
    logger.debug("Removed stale socket", socket=str(config.socket_path))


def serve(
    config: DaemonConfig,
    runner: JobRunner | None = None,
    *,
    exit_func: ExitFunc | None = None,
) -> None:
    """Bind the socket and serve connections until the process exits.

    Example:
        ```python
        serve(DaemonConfig())
        ```
    """
    remove_stale_socket(config)
    server = DaemonServer(
        config,
        runner or JobRunner(isolate=True, python_executable=config.python_executable),
        exit_func=exit_func,
    )
    logger.info("Listening", socket=str(config.socket_path), pid=os.getpid())
    with server:
        server.serve_forever()
