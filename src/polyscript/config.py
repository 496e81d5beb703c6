from __future__ import annotations

import os
import sys
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

DEFAULT_SOCKET_PATH = "/tmp/polyscript_daemon.sock"
DEFAULT_PID_PATH = "/tmp/polyscript_daemon.pid"
DEFAULT_LOG_PATH = "/tmp/polyscript_daemon.log"
DEFAULT_STOP_GRACE_SECONDS = 0.1

CONFIG_ENV_VAR = "POLYSCRIPT_CONFIG"
IPC_ENV_VAR = "POLYSCRIPT_IPC"


def _read_config_toml(path: Path) -> dict[str, Any]:
    """Read a config TOML file and return the daemon table.

    Example:
        ```python
        raw = _read_config_toml(Path("/tmp/polyscript.toml"))
        ```
    """
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    daemon_obj = raw.get("daemon", raw)
    if not isinstance(daemon_obj, dict):
        raise ValueError("Daemon config must be a TOML table")
    return daemon_obj


def _path_value(value: Any, field_name: str) -> Path:
    """Validate and normalize a path-valued config field.

    Example:
        ```python
        sock = _path_value("~/polyscript.sock", "socket_path")
        ```
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{field_name}' must be a non-empty string")
    return Path(value.strip()).expanduser()


def _seconds_value(value: Any, field_name: str) -> float:
    """Validate a non-negative number of seconds.

    Example:
        ```python
        grace = _seconds_value(0.25, "stop_grace_seconds")
        ```
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{field_name}' must be a number")
    if value < 0:
        raise ValueError(f"'{field_name}' must not be negative")
    return float(value)


@dataclass(frozen=True, slots=True)
class DaemonConfig:
    """Process-wide daemon settings passed to the server and lifecycle manager.

    Example:
        ```python
        config = DaemonConfig(socket_path=Path("/tmp/ps/test.sock"), pid_path=Path("/tmp/ps/test.pid"))
        ```
    """

    socket_path: Path = Path(DEFAULT_SOCKET_PATH)
    pid_path: Path = Path(DEFAULT_PID_PATH)
    log_path: Path = Path(DEFAULT_LOG_PATH)
    stop_grace_seconds: float = DEFAULT_STOP_GRACE_SECONDS
    python_executable: str = field(default_factory=lambda: sys.executable)
    config_path: str | None = None

    @classmethod
    def from_file(cls, config_path: str) -> "DaemonConfig":
        """Create a config from a TOML file, keeping defaults for missing keys.

        Example:
            ```python
            config = DaemonConfig.from_file("/tmp/polyscript.toml")
            ```
        """
        raw = _read_config_toml(Path(config_path))
        defaults = cls()
        return cls(
            socket_path=_path_value(raw["socket_path"], "socket_path")
            if "socket_path" in raw
            else defaults.socket_path,
            pid_path=_path_value(raw["pid_path"], "pid_path") if "pid_path" in raw else defaults.pid_path,
            log_path=_path_value(raw["log_path"], "log_path") if "log_path" in raw else defaults.log_path,
            stop_grace_seconds=_seconds_value(raw["stop_grace_seconds"], "stop_grace_seconds")
            if "stop_grace_seconds" in raw
            else defaults.stop_grace_seconds,
            config_path=config_path,
        )

    def with_overrides(
        self,
        *,
        socket_path: str | None = None,
        pid_path: str | None = None,
        log_path: str | None = None,
    ) -> "DaemonConfig":
        """Return a copy with explicitly provided paths replaced.

        Example:
            ```python
            config = DaemonConfig().with_overrides(socket_path="/tmp/other.sock")
            ```
        """
        changes: dict[str, Any] = {}
        if socket_path:
            changes["socket_path"] = _path_value(socket_path, "socket_path")
        if pid_path:
            changes["pid_path"] = _path_value(pid_path, "pid_path")
        if log_path:
            changes["log_path"] = _path_value(log_path, "log_path")
        return replace(self, **changes) if changes else self

    def cli_args(self) -> list[str]:
        """Render the paths as global CLI flags for a spawned daemon process.

        Example:
            ```python
            argv = ["python", "-m", "polys", *config.cli_args(), "daemon", "serve"]
            ```
        """
        argv = ["--config", self.config_path] if self.config_path else []
        return argv + [
            "--socket",
            str(self.socket_path),
            "--pid-file",
            str(self.pid_path),
            "--log-file",
            str(self.log_path),
        ]


def load_config(config_path: str | None = None, environ: Mapping[str, str] | None = None) -> DaemonConfig:
    """Resolve the effective config from an explicit file, the environment, or defaults.

    Example:
        ```python
        config = load_config(None, {"POLYSCRIPT_CONFIG": "/tmp/polyscript.toml"})
        ```
    """
    env = os.environ if environ is None else environ
    path = config_path or env.get(CONFIG_ENV_VAR)
    if path:
        return DaemonConfig.from_file(path)
    return DaemonConfig()


def export_ipc_hint(config: DaemonConfig, environ: dict[str, str] | None = None) -> str:
    """Compute the IPC path hint once and expose it to child processes.

    Example:
        ```python
        hint = export_ipc_hint(DaemonConfig())
        ```
    """
    env = os.environ if environ is None else environ
    return env.setdefault(IPC_ENV_VAR, str(config.socket_path))
