"""Transport protocol consumed by the message router."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from agentwire.constants import Frame


@runtime_checkable
class Transport(Protocol):
    """Minimal protocol a transport must satisfy for the router.

    ``read_messages()`` must return the same forward-only iterator every
    time it is called; once exhausted it stays exhausted.
    """

    async def connect(self) -> None:
        """Start the underlying process or connection."""
        ...

    def read_messages(self) -> AsyncIterator[Frame]:
        """Return the lazy sequence of decoded frames."""
        ...

    async def write(self, frame: Frame) -> None:
        """Send one frame as a JSON line.  A no-op once input is closed."""
        ...

    async def close_input(self) -> None:
        """Signal end-of-input while the peer keeps running.  Idempotent."""
        ...

    async def close(self) -> None:
        """Terminate the peer and release its streams.  Idempotent."""
        ...
