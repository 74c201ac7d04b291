"""agentwire — control-protocol client for agent CLI subprocesses."""

__version__ = "0.1.0"

from agentwire.client import AgentClient
from agentwire.config import AgentOptions, HookMatcher, load_options
from agentwire.errors import (
    AgentWireError,
    BufferOverflowError,
    CLIConnectionError,
    CLIJSONDecodeError,
    CLINotFoundError,
    ControlRemoteError,
    ControlTimeoutError,
    FramingError,
    MessageParseError,
    ProcessError,
    UsageError,
)
from agentwire.mcp import SdkMcpServer, SdkMcpTool, create_sdk_mcp_server, tool
from agentwire.query import query
from agentwire.types import (
    AssistantMessage,
    PermissionResultAllow,
    PermissionResultDeny,
    ResultMessage,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolPermissionContext,
    ToolResultBlock,
    ToolUseBlock,
    UnknownMessage,
    UserMessage,
)

__all__ = [
    "AgentClient",
    "AgentOptions",
    "AgentWireError",
    "AssistantMessage",
    "BufferOverflowError",
    "CLIConnectionError",
    "CLIJSONDecodeError",
    "CLINotFoundError",
    "ControlRemoteError",
    "ControlTimeoutError",
    "FramingError",
    "HookMatcher",
    "MessageParseError",
    "PermissionResultAllow",
    "PermissionResultDeny",
    "ProcessError",
    "ResultMessage",
    "SdkMcpServer",
    "SdkMcpTool",
    "StreamEvent",
    "SystemMessage",
    "TextBlock",
    "ThinkingBlock",
    "ToolPermissionContext",
    "ToolResultBlock",
    "ToolUseBlock",
    "UnknownMessage",
    "UsageError",
    "UserMessage",
    "__version__",
    "create_sdk_mcp_server",
    "load_options",
    "query",
    "tool",
]
