"""One-shot queries: connect, stream every message, disconnect."""

from __future__ import annotations

from collections.abc import AsyncIterator

from agentwire.client import AgentClient, Prompt
from agentwire.config.models import AgentOptions
from agentwire.transport.base import Transport
from agentwire.types.messages import Message


async def query(
    prompt: Prompt,
    options: AgentOptions | None = None,
    transport: Transport | None = None,
) -> AsyncIterator[Message]:
    """Run *prompt* to completion and yield every message the agent emits.

    A string prompt runs single-shot; an iterable of message dicts streams
    them with the control protocol enabled.  The subprocess is always shut
    down, even if the caller stops iterating early.
    """
    client = AgentClient(options, transport)
    try:
        await client.connect(prompt)
        async for message in client.receive_messages():
            yield message
    finally:
        await client.close()
