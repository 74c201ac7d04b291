"""Exception taxonomy for the agentwire protocol engine."""

from __future__ import annotations

from typing import Any


class AgentWireError(Exception):
    """Base class for every error raised by agentwire."""


class UsageError(AgentWireError):
    """An operation was attempted in a mode or state that does not allow it."""


class CLIConnectionError(AgentWireError):
    """The agent subprocess could not be started or its pipes broke."""


class CLINotFoundError(CLIConnectionError):
    """The agent executable could not be located."""


class FramingError(AgentWireError):
    """The subprocess output could not be split into JSON records.

    Fatal to the connection: the frame sequence ends with this error.
    """


class CLIJSONDecodeError(FramingError):
    """A complete output line was not a valid JSON object."""

    def __init__(self, message: str, line: str) -> None:
        super().__init__(message)
        self.line = line


class BufferOverflowError(FramingError):
    """Unterminated output grew past the configured buffer limit."""

    def __init__(self, limit: int) -> None:
        super().__init__(
            f"JSON message exceeded maximum buffer size of {limit} bytes"
        )
        self.limit = limit


class ProcessError(AgentWireError):
    """The agent subprocess exited with a non-zero status."""

    def __init__(self, exit_code: int, stderr: str = "") -> None:
        msg = f"Agent CLI exited with code {exit_code}"
        if stderr:
            msg += f". Stderr:\n  {stderr}"
        super().__init__(msg)
        self.exit_code = exit_code
        self.stderr = stderr


class ControlTimeoutError(AgentWireError):
    """A control request was not answered before its deadline."""

    def __init__(self, subtype: str, timeout: float) -> None:
        super().__init__(f"Control request timeout: {subtype} (after {timeout:g}s)")
        self.subtype = subtype
        self.timeout = timeout


class ControlRemoteError(AgentWireError):
    """The agent answered a control request with an error."""

    def __init__(self, message: str, subtype: str | None = None) -> None:
        super().__init__(message)
        self.subtype = subtype


class MessageParseError(AgentWireError):
    """A frame could not be turned into a typed message."""

    def __init__(self, message: str, raw: Any) -> None:
        super().__init__(message)
        self.raw = raw
