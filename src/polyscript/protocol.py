"""Newline-delimited JSON wire format spoken over the daemon socket.

Client to server: ``{"lang": "py", "script": "a.py", "args": ["x"], "stop": false}``
Server to client: ``{"exit": 0, "stdout": "hello x\\n", "stderr": ""}``
Stop request:     ``{"lang": "", "script": "", "stop": true}``

Unknown request fields are ignored. Response fields are always present.
"""

from __future__ import annotations

import json
from typing import Any

from .errors import ProtocolError
from .types import ExecutionRequest, ExecutionResult


def _load_object(line: bytes | str) -> dict[str, Any]:
    """Parse one wire line into a JSON object.

    Example:
        ```python
        obj = _load_object(b'{"exit": 0}\\n')
        ```
    """
    try:
        obj = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"Invalid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise ProtocolError("Message must be a JSON object")
    return obj


def _str_field(obj: dict[str, Any], name: str, default: str | None = None) -> str:
    """Read a required (or defaulted) string field.

    Example:
        ```python
        lang = _str_field({"lang": "py"}, "lang")
        ```
    """
    value = obj.get(name, default)
    if not isinstance(value, str):
        raise ProtocolError(f"'{name}' must be a string")
    return value


def decode_request(line: bytes | str) -> ExecutionRequest:
    """Decode one request line.

    Example:
        ```python
        req = decode_request('{"lang":"py","script":"a.py","args":["x"]}')
        ```
    """
    obj = _load_object(line)
    stop = obj.get("stop", False)
    if not isinstance(stop, bool):
        raise ProtocolError("'stop' must be a boolean")
    if stop:
        return ExecutionRequest.stop_sentinel()
    args = obj.get("args", [])
    if args is None:
        args = []
    if not isinstance(args, list) or not all(isinstance(item, str) for item in args):
        raise ProtocolError("'args' must be a list of strings")
    return ExecutionRequest(
        language=_str_field(obj, "lang"),
        script=_str_field(obj, "script"),
        arguments=tuple(args),
    )


def encode_request(request: ExecutionRequest) -> bytes:
    """Encode a request as one newline-terminated line.

    Example:
        ```python
        line = encode_request(ExecutionRequest.stop_sentinel())
        ```
    """
    payload = {
        "lang": request.language,
        "script": request.script,
        "args": list(request.arguments),
        "stop": request.stop,
    }
    return json.dumps(payload, separators=(",", ":")).encode("utf-8") + b"\n"


def decode_result(line: bytes | str) -> ExecutionResult:
    """Decode one response line.

    Example:
        ```python
        result = decode_result(b'{"exit":0,"stdout":"hi\\\\n","stderr":""}')
        ```
    """
    obj = _load_object(line)
    exit_code = obj.get("exit")
    if isinstance(exit_code, bool) or not isinstance(exit_code, int):
        raise ProtocolError("'exit' must be an integer")
    return ExecutionResult(
        exit_code=exit_code,
        stdout=_str_field(obj, "stdout"),
        stderr=_str_field(obj, "stderr"),
    )


def encode_result(result: ExecutionResult) -> bytes:
    """Encode a result as one newline-terminated line.

    Example:
        ```python
        line = encode_result(ExecutionResult(exit_code=0, stdout="hello x\\n"))
        ```
    """
    payload = {"exit": result.exit_code, "stdout": result.stdout, "stderr": result.stderr}
    return json.dumps(payload, separators=(",", ":")).encode("utf-8") + b"\n"
