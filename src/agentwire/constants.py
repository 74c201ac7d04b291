"""Shared constants and type aliases for the agentwire runtime."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

#: Maximum bytes held while waiting for a newline from the subprocess (1 MB).
DEFAULT_MAX_BUFFER_SIZE = 1_048_576

#: Seconds a control request waits for its response.
DEFAULT_CONTROL_TIMEOUT = 60.0

#: Lower bound for the initialize handshake timeout, in seconds.
MIN_INITIALIZE_TIMEOUT = 60.0

#: Env var (milliseconds) the agent CLI also honours for stream shutdown.
STREAM_CLOSE_TIMEOUT_ENV = "CLAUDE_CODE_STREAM_CLOSE_TIMEOUT"

#: One decoded JSON record from the line-oriented stream.
Frame = dict[str, Any]

#: ``(tool_name, input, context) -> PermissionResult | dict``
CanUseTool = Callable[..., Any]

#: ``(input, tool_use_id, context) -> dict``
HookCallback = Callable[..., Any]

#: ``(server_name, message) -> dict``
McpMessageHandler = Callable[..., Any]

#: Receives each stderr line from the subprocess.
StderrCallback = Callable[[str], Any]
