from .lifecycle import DaemonManager, DaemonRecord
from .server import DaemonServer, Session, serve

__all__ = ["DaemonManager", "DaemonRecord", "DaemonServer", "Session", "serve"]
