from .config import DaemonConfig, load_config
from .daemon import DaemonManager, DaemonServer, serve
from .errors import (
    BatchFailure,
    BindFailure,
    DaemonAlreadyRunning,
    DaemonNotRunning,
    DispatchError,
    JobFailure,
    MalformedSpec,
    PolyscriptError,
    ProtocolError,
    ScriptUnreadable,
    SpawnFailure,
    UnknownLanguage,
)
from .execution import DEFAULT_TABLE, DispatchTable, dispatch
from .parallel import BatchReport, JobOutcome, ParallelExecutor, parse_spec
from .runner import JobRunner
from .types import ExecutionRequest, ExecutionResult

__all__ = [
    "BatchFailure",
    "BatchReport",
    "BindFailure",
    "DEFAULT_TABLE",
    "DaemonAlreadyRunning",
    "DaemonConfig",
    "DaemonManager",
    "DaemonNotRunning",
    "DaemonServer",
    "DispatchError",
    "DispatchTable",
    "ExecutionRequest",
    "ExecutionResult",
    "JobFailure",
    "JobOutcome",
    "JobRunner",
    "MalformedSpec",
    "ParallelExecutor",
    "PolyscriptError",
    "ProtocolError",
    "ScriptUnreadable",
    "SpawnFailure",
    "UnknownLanguage",
    "dispatch",
    "load_config",
    "parse_spec",
    "serve",
]
