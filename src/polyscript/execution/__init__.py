from .bridges import (
    Bridge,
    CompileRunBridge,
    PythonBridge,
    ReexecBridge,
    SharedLibraryBridge,
    SubprocessBridge,
)
from .table import DEFAULT_TABLE, DispatchTable, build_default_table, dispatch

__all__ = [
    "Bridge",
    "CompileRunBridge",
    "DEFAULT_TABLE",
    "DispatchTable",
    "PythonBridge",
    "ReexecBridge",
    "SharedLibraryBridge",
    "SubprocessBridge",
    "build_default_table",
    "dispatch",
]
