"""In-process MCP servers answered over the control protocol.

Tools registered here run inside the host process.  The agent reaches them
through ``mcp_message`` control requests, so no separate MCP server process
is needed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from agentwire.helpers import maybe_await

logger = logging.getLogger(__name__)

#: MCP protocol revision reported in the ``initialize`` reply.
MCP_PROTOCOL_VERSION = "2024-11-05"

#: JSON-RPC "method not found".
_METHOD_NOT_FOUND = -32601


@dataclass
class SdkMcpTool:
    """One tool exposed by an :class:`SdkMcpServer`.

    ``handler`` receives the call arguments and returns an MCP result dict
    (``{"content": [...]}``) or any other value, which is sent back as text.
    It may be a plain function or a coroutine function.
    """

    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict)
    handler: Callable[[dict[str, Any]], Any] | None = None


def _text_result(text: str, *, is_error: bool = False) -> dict[str, Any]:
    result: dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["is_error"] = True
    return result


class SdkMcpServer:
    """A minimal JSON-RPC MCP server backed by Python callables."""

    def __init__(
        self,
        name: str,
        version: str = "1.0.0",
        tools: list[SdkMcpTool] | None = None,
    ) -> None:
        self.name = name
        self.version = version
        self._tools: dict[str, SdkMcpTool] = {}
        for item in tools or []:
            if not isinstance(item, SdkMcpTool):
                logger.warning("Ignoring non-tool %r on MCP server %s", item, name)
                continue
            self._tools[item.name] = item

    @property
    def has_tools(self) -> bool:
        return bool(self._tools)

    def list_tools(self) -> list[dict[str, Any]]:
        """Return tool definitions in MCP ``tools/list`` shape."""
        return [
            {
                "name": item.name,
                "description": item.description,
                "inputSchema": item.input_schema,
            }
            for item in self._tools.values()
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Run tool *name*.  Failures come back as ``is_error`` results."""
        item = self._tools.get(name)
        if item is None or item.handler is None:
            return _text_result(f"Tool '{name}' not found", is_error=True)

        try:
            result = await maybe_await(item.handler(arguments))
        except Exception as exc:
            logger.warning("MCP tool %s/%s failed: %s", self.name, name, exc)
            return _text_result(str(exc), is_error=True)

        if isinstance(result, dict):
            return result
        return _text_result(str(result))

    async def handle_message(self, message: dict[str, Any]) -> dict[str, Any]:
        """Answer one JSON-RPC message from the agent."""
        method = message.get("method")
        msg_id = message.get("id")
        params = message.get("params") or {}

        if method == "initialize":
            return {
                "jsonrpc": "2.0",
                "id": msg_id,
                "result": {
                    "protocolVersion": MCP_PROTOCOL_VERSION,
                    "capabilities": {"tools": {}},
                    "serverInfo": {"name": self.name, "version": self.version},
                },
            }

        if method == "tools/list":
            return {
                "jsonrpc": "2.0",
                "id": msg_id,
                "result": {"tools": self.list_tools()},
            }

        if method == "tools/call":
            arguments = params.get("arguments")
            result = await self.call_tool(
                str(params.get("name")),
                arguments if isinstance(arguments, dict) else {},
            )
            return {"jsonrpc": "2.0", "id": msg_id, "result": result}

        if method == "notifications/initialized":
            return {"jsonrpc": "2.0", "result": {}}

        return {
            "jsonrpc": "2.0",
            "id": msg_id,
            "error": {
                "code": _METHOD_NOT_FOUND,
                "message": f"Method '{method}' not found",
            },
        }


def tool(
    name: str,
    description: str,
    input_schema: dict[str, Any] | None = None,
) -> Callable[[Callable[[dict[str, Any]], Any]], SdkMcpTool]:
    """Decorator turning a handler function into an :class:`SdkMcpTool`.

    Usage::

        @tool("greet", "Say hello", {"type": "object"})
        async def greet(args):
            return {"content": [{"type": "text", "text": "hi"}]}
    """

    def decorator(handler: Callable[[dict[str, Any]], Any]) -> SdkMcpTool:
        return SdkMcpTool(
            name=name,
            description=description,
            input_schema=input_schema or {"type": "object", "properties": {}},
            handler=handler,
        )

    return decorator


def create_sdk_mcp_server(
    name: str,
    version: str = "1.0.0",
    tools: list[SdkMcpTool] | None = None,
) -> dict[str, Any]:
    """Build the ``mcp_servers`` entry for an in-process server."""
    return {
        "type": "sdk",
        "name": name,
        "version": version,
        "instance": SdkMcpServer(name, version, tools),
    }
