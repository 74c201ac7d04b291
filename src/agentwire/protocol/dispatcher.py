"""Inbound control dispatcher — answers control requests sent by the agent."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from agentwire.constants import CanUseTool, Frame, McpMessageHandler
from agentwire.errors import AgentWireError
from agentwire.helpers import maybe_await
from agentwire.protocol.hooks import HookRegistry, convert_hook_output
from agentwire.transport.base import Transport
from agentwire.types.permissions import (
    HookContext,
    PermissionResultAllow,
    PermissionResultDeny,
    ToolPermissionContext,
)

logger = logging.getLogger(__name__)


class InboundDispatcher:
    """Routes agent-initiated control requests to locally supplied callbacks.

    Every request gets exactly one ``control_response`` frame back.  Any
    exception raised while answering is converted into an ``error``
    response; nothing escapes ``handle()``.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        can_use_tool: CanUseTool | None = None,
        hooks: HookRegistry | None = None,
        mcp_message_handler: McpMessageHandler | None = None,
        mcp_servers: Mapping[str, Any] | None = None,
    ) -> None:
        self._transport = transport
        self._can_use_tool = can_use_tool
        self._hooks = hooks if hooks is not None else HookRegistry()
        self._mcp_message_handler = mcp_message_handler
        self._mcp_servers = dict(mcp_servers or {})

        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
            "can_use_tool": self._handle_can_use_tool,
            "hook_callback": self._handle_hook_callback,
            "mcp_message": self._handle_mcp_message,
        }

    @property
    def hooks(self) -> HookRegistry:
        return self._hooks

    async def handle(self, message: Frame) -> None:
        """Answer one inbound ``control_request`` frame."""
        request_id = message.get("request_id")
        request = message.get("request")
        if not isinstance(request_id, str):
            # Nothing to correlate an answer with.
            logger.warning("inbound control request without request_id dropped")
            return

        subtype = request.get("subtype") if isinstance(request, dict) else None
        logger.debug("inbound control request %s (%s)", request_id, subtype)

        try:
            if not isinstance(request, dict):
                msg = "Malformed control request: missing request body"
                raise RuntimeError(msg)
            handler = self._handlers.get(str(subtype))
            if handler is None:
                msg = f"Unsupported control request subtype: {subtype}"
                raise RuntimeError(msg)
            payload = await handler(request)
        except Exception as exc:
            logger.error(
                "control request %s (%s) failed: %s", request_id, subtype, exc
            )
            response: dict[str, Any] = {
                "subtype": "error",
                "request_id": request_id,
                "error": str(exc) or type(exc).__name__,
            }
        else:
            response = {
                "subtype": "success",
                "request_id": request_id,
                "response": payload,
            }

        try:
            await self._transport.write(
                {"type": "control_response", "response": response}
            )
        except (AgentWireError, OSError) as exc:
            logger.warning("could not answer control request %s: %s", request_id, exc)

    # ------------------------------------------------------------------ #
    # Subtype handlers
    # ------------------------------------------------------------------ #

    async def _handle_can_use_tool(self, request: dict[str, Any]) -> dict[str, Any]:
        if self._can_use_tool is None:
            msg = "can_use_tool callback is not provided"
            raise RuntimeError(msg)

        tool_name = str(request.get("tool_name", ""))
        tool_input = request.get("input")
        if not isinstance(tool_input, dict):
            tool_input = {}
        context = ToolPermissionContext(
            suggestions=list(request.get("permission_suggestions") or []),
            blocked_path=request.get("blocked_path"),
        )

        result = await maybe_await(self._can_use_tool(tool_name, tool_input, context))

        if isinstance(result, PermissionResultAllow):
            response: dict[str, Any] = {
                "behavior": "allow",
                "updatedInput": (
                    result.updated_input
                    if result.updated_input is not None
                    else tool_input
                ),
            }
            if result.updated_permissions is not None:
                response["updatedPermissions"] = result.updated_permissions
            return response

        if isinstance(result, PermissionResultDeny):
            response = {"behavior": "deny", "message": result.message}
            if result.interrupt:
                response["interrupt"] = True
            return response

        if isinstance(result, dict):
            return result

        msg = (
            "can_use_tool must return PermissionResultAllow, "
            f"PermissionResultDeny, or dict, got {type(result).__name__}"
        )
        raise TypeError(msg)

    async def _handle_hook_callback(self, request: dict[str, Any]) -> dict[str, Any]:
        callback_id = request.get("callback_id")
        if not isinstance(callback_id, str):
            msg = "Hook callback missing callback_id"
            raise RuntimeError(msg)

        callback = self._hooks.get(callback_id)
        if callback is None:
            msg = f"No hook callback found for ID: {callback_id}"
            raise RuntimeError(msg)

        output = await maybe_await(
            callback(request.get("input"), request.get("tool_use_id"), HookContext())
        )
        if not isinstance(output, dict):
            msg = f"Hook callback must return a dict, got {type(output).__name__}"
            raise TypeError(msg)
        return convert_hook_output(output)

    async def _handle_mcp_message(self, request: dict[str, Any]) -> dict[str, Any]:
        server_name = request.get("server_name")
        message = request.get("message")
        if not isinstance(server_name, str) or not isinstance(message, dict):
            msg = "Invalid mcp_message request"
            raise RuntimeError(msg)

        if self._mcp_message_handler is not None:
            reply = await maybe_await(self._mcp_message_handler(server_name, message))
            if not isinstance(reply, dict):
                msg = (
                    "mcp_message_handler must return a dict, "
                    f"got {type(reply).__name__}"
                )
                raise TypeError(msg)
            return {"mcp_response": reply}

        server = self._mcp_servers.get(server_name)
        if server is not None:
            reply = await server.handle_message(message)
            return {"mcp_response": reply}

        msg = f"No MCP handler configured for server '{server_name}'"
        raise RuntimeError(msg)
