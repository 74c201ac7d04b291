"""AgentClient — a bidirectional session with the agent CLI."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from typing import Any

from agentwire.config.models import AgentOptions, PermissionMode
from agentwire.constants import (
    MIN_INITIALIZE_TIMEOUT,
    STREAM_CLOSE_TIMEOUT_ENV,
    Frame,
)
from agentwire.errors import AgentWireError, UsageError
from agentwire.protocol.correlator import ControlCorrelator
from agentwire.protocol.dispatcher import InboundDispatcher
from agentwire.protocol.hooks import HookRegistry
from agentwire.protocol.router import MessageRouter
from agentwire.transport.base import Transport
from agentwire.transport.subprocess_cli import SubprocessCLITransport
from agentwire.types.messages import Message, ResultMessage, parse_message

logger = logging.getLogger(__name__)

Prompt = str | Iterable[Frame] | AsyncIterable[Frame]


class AgentClient:
    """Talks to one agent CLI subprocess over stream-json.

    ``connect(None)`` or an iterable prompt opens a *streaming* session:
    input stays open, control requests (interrupt, model switch, ...) are
    allowed and the agent may call back into ``can_use_tool``, hooks and
    in-process MCP servers.  A string prompt opens a *single-shot* session
    with no control protocol.

    Usage::

        async with AgentClient(options) as client:
            await client.query("hello")
            async for message in client.receive_response():
                ...
    """

    def __init__(
        self,
        options: AgentOptions | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._options = options or AgentOptions()
        self._custom_transport = transport

        self._transport: Transport | None = None
        self._router: MessageRouter | None = None
        self._correlator: ControlCorrelator | None = None
        self._streaming = False
        self._input_task: asyncio.Task[None] | None = None

        #: Response payload of the last ``initialize`` handshake.
        self.server_info: dict[str, Any] | None = None

    @property
    def connected(self) -> bool:
        return self._router is not None

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    @property
    def options(self) -> AgentOptions:
        return self._options

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def connect(self, prompt: Prompt | None = None) -> None:
        """Start the agent and, in streaming mode, run the initialize handshake."""
        if self._router is not None:
            msg = "Already connected"
            raise UsageError(msg)

        options = self._options
        streaming = not isinstance(prompt, str)

        if options.can_use_tool is not None:
            if not streaming:
                msg = "can_use_tool requires streaming mode (iterable prompt)"
                raise UsageError(msg)
            if options.permission_prompt_tool_name is not None:
                msg = "can_use_tool cannot be used with permission_prompt_tool_name"
                raise UsageError(msg)
            options = options.with_overrides(permission_prompt_tool_name="stdio")

        transport = self._custom_transport or SubprocessCLITransport(
            prompt if isinstance(prompt, str) else None, options
        )
        await transport.connect()

        streamed_prompt = prompt is not None and streaming
        dispatcher = InboundDispatcher(
            transport,
            can_use_tool=options.can_use_tool,
            hooks=HookRegistry.build(options.hooks),
            mcp_message_handler=options.mcp_message_handler,
            mcp_servers=options.sdk_mcp_servers(),
        )
        self._transport = transport
        self._streaming = streaming
        self._router = MessageRouter(
            transport,
            dispatcher,
            close_input_on_result=streamed_prompt and options.has_control_callbacks,
        )
        self._correlator = ControlCorrelator(
            transport, self._router.pending, options.control_timeout
        )
        self._router.start()
        logger.info(
            "connected (%s mode)", "streaming" if streaming else "single-shot"
        )

        try:
            if streaming and not options.skip_initialize:
                await self.initialize()
        except BaseException:
            await self.close()
            raise

        if streamed_prompt:
            self._input_task = asyncio.create_task(
                self._stream_input(
                    prompt,  # type: ignore[arg-type]
                    close_when_done=not options.has_control_callbacks,
                )
            )
            self._input_task.add_done_callback(self._input_done)

    async def close_input(self) -> None:
        """Signal end of input; the agent finishes the current turn and exits."""
        if self._transport is not None:
            await self._transport.close_input()

    async def close(self) -> None:
        """Tear down the session.  Safe to call more than once."""
        if self._input_task is not None and not self._input_task.done():
            self._input_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._input_task
        self._input_task = None

        if self._router is not None:
            await self._router.close()
            self._router = None
        self._correlator = None

        if self._transport is not None:
            await self._transport.close()
            self._transport = None
            logger.info("disconnected")

    async def disconnect(self) -> None:
        await self.close()

    async def __aenter__(self) -> AgentClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Messages
    # ------------------------------------------------------------------ #

    async def receive_messages(self) -> AsyncIterator[Message]:
        """Yield every message until the agent's output ends.

        Framing and process-exit errors are raised from here.
        """
        router = self._require_connected()
        while True:
            frame = await router.next_message()
            if frame is None:
                return
            yield parse_message(frame)

    async def receive_response(self) -> AsyncIterator[Message]:
        """Yield messages up to and including the next :class:`ResultMessage`."""
        async for message in self.receive_messages():
            yield message
            if isinstance(message, ResultMessage):
                return

    async def query(
        self,
        prompt: str | Iterable[Frame] | AsyncIterable[Frame],
        session_id: str = "default",
    ) -> None:
        """Send a user turn (or a sequence of raw message dicts)."""
        transport = self._require_streaming()

        if isinstance(prompt, str):
            await transport.write(
                {
                    "type": "user",
                    "message": {"role": "user", "content": prompt},
                    "parent_tool_use_id": None,
                    "session_id": session_id,
                }
            )
            return

        async for message in _iterate(prompt):
            if isinstance(message, dict) and "session_id" not in message:
                message = {**message, "session_id": session_id}
            await transport.write(message)

    # ------------------------------------------------------------------ #
    # Control requests
    # ------------------------------------------------------------------ #

    async def initialize(self) -> dict[str, Any] | None:
        """Send the ``initialize`` handshake, registering hook callbacks."""
        self._require_streaming()
        router = self._require_connected()
        hooks = router.dispatcher.hooks if router.dispatcher else HookRegistry()
        self.server_info = await self._send_control(
            {"subtype": "initialize", "hooks": hooks.config or None},
            timeout=self._initialize_timeout(),
        )
        logger.debug("initialized: %s", self.server_info)
        return self.server_info

    async def interrupt(self) -> None:
        await self._send_control({"subtype": "interrupt"})

    async def set_permission_mode(self, mode: PermissionMode | str) -> None:
        await self._send_control({"subtype": "set_permission_mode", "mode": mode})

    async def set_model(self, model: str | None) -> None:
        await self._send_control({"subtype": "set_model", "model": model})

    async def rewind_files(self, user_message_id: str) -> None:
        """Restore files to their state at *user_message_id*.

        Requires ``enable_file_checkpointing``.
        """
        await self._send_control(
            {"subtype": "rewind_files", "user_message_id": user_message_id}
        )

    async def get_mcp_status(self) -> dict[str, Any]:
        return await self._send_control({"subtype": "mcp_status"})

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    async def _send_control(
        self, request: dict[str, Any], timeout: float | None = None
    ) -> dict[str, Any]:
        self._require_streaming()
        assert self._correlator is not None
        return await self._correlator.send(request, timeout)

    def _require_connected(self) -> MessageRouter:
        if self._router is None:
            msg = "Not connected. Call connect() first."
            raise UsageError(msg)
        return self._router

    def _require_streaming(self) -> Transport:
        self._require_connected()
        if not self._streaming:
            msg = "Control requests and writes require streaming mode"
            raise UsageError(msg)
        assert self._transport is not None
        return self._transport

    def _initialize_timeout(self) -> float:
        """Explicit option, else the CLI's stream-close env var, floored at 60s."""
        timeout = self._options.initialize_timeout
        if timeout is None:
            raw = os.environ.get(STREAM_CLOSE_TIMEOUT_ENV, "")
            try:
                ms = int(raw)
            except ValueError:
                ms = 0
            timeout = ms / 1000.0 if ms > 0 else MIN_INITIALIZE_TIMEOUT
        return max(timeout, MIN_INITIALIZE_TIMEOUT)

    async def _stream_input(self, prompt: Prompt, *, close_when_done: bool) -> None:
        transport = self._transport
        if transport is None:
            return
        async for message in _iterate(prompt):  # type: ignore[arg-type]
            await transport.write(message)
        if close_when_done:
            await transport.close_input()
            logger.debug("prompt exhausted, input closed")

    def _input_done(self, task: asyncio.Task[None]) -> None:
        """Callback for the prompt-streaming task — log failures."""
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, AgentWireError):
            logger.warning("prompt streaming stopped: %s", exc)
        elif exc is not None:
            logger.error("prompt streaming failed: %s", exc)


async def _iterate(
    source: Iterable[Frame] | AsyncIterable[Frame],
) -> AsyncIterator[Frame]:
    """Iterate sync and async iterables alike."""
    if isinstance(source, AsyncIterable):
        async for item in source:
            yield item
    else:
        for item in source:
            yield item
