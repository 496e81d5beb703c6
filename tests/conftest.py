from __future__ import annotations

import shutil
import tempfile
import textwrap
import threading
from pathlib import Path
from typing import Callable, Iterator

import pytest

from polyscript.config import CONFIG_ENV_VAR, IPC_ENV_VAR, DaemonConfig
from polyscript.daemon.server import DaemonServer, remove_stale_socket
from polyscript.logging import setup_logging
from polyscript.runner import JobRunner


@pytest.fixture(autouse=True)
def _quiet_logging_and_env(monkeypatch: pytest.MonkeyPatch) -> None:
    setup_logging(level="warning")
    for name in (CONFIG_ENV_VAR, IPC_ENV_VAR):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


@pytest.fixture
def socket_dir() -> Iterator[Path]:
    # Unix socket paths are limited to ~104 bytes, so stay out of tmp_path.
    path = Path(tempfile.mkdtemp(prefix="ps-", dir="/tmp"))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def daemon_config(socket_dir: Path) -> DaemonConfig:
    return DaemonConfig(
        socket_path=socket_dir / "d.sock",
        pid_path=socket_dir / "d.pid",
        log_path=socket_dir / "d.log",
        stop_grace_seconds=0.0,
    )


@pytest.fixture
def write_script(tmp_path: Path) -> Callable[[str, str], Path]:
    def _write(name: str, body: str) -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(body), encoding="utf-8")
        return path

    return _write


class RunningServer:
    def __init__(self) -> None:
        self.server: DaemonServer | None = None
        self.thread: threading.Thread | None = None
        self.exit_codes: list[int] = []
        self.exited = threading.Event()

    def record_exit(self, code: int) -> None:
        self.exit_codes.append(code)
        self.exited.set()


@pytest.fixture
def start_server(daemon_config: DaemonConfig) -> Iterator[Callable[..., RunningServer]]:
    started: list[RunningServer] = []

    def _start(runner=None) -> RunningServer:
        handle = RunningServer()
        remove_stale_socket(daemon_config)
        handle.server = DaemonServer(
            daemon_config,
            runner or JobRunner(concurrent=True),
            exit_func=handle.record_exit,
        )
        handle.thread = threading.Thread(
            target=handle.server.serve_forever,
            kwargs={"poll_interval": 0.05},
            daemon=True,
        )
        handle.thread.start()
        started.append(handle)
        return handle

    yield _start

    for handle in started:
        assert handle.server is not None and handle.thread is not None
        handle.server.shutdown()
        handle.server.server_close()
        handle.thread.join(timeout=5)
