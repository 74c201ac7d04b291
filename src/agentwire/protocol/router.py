"""Message router — the single consumer of the transport's frame sequence."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass

from agentwire.constants import Frame
from agentwire.errors import CLIConnectionError, MessageParseError
from agentwire.protocol.dispatcher import InboundDispatcher
from agentwire.protocol.pending import PendingTable
from agentwire.transport.base import Transport

logger = logging.getLogger(__name__)


@dataclass
class _StreamEnd:
    """Queue marker placed after the last ordinary frame."""

    error: BaseException | None = None


class MessageRouter:
    """Classifies every inbound frame and routes it to exactly one place.

    A background reader task pulls frames from the transport:

    * ``control_response`` resolves an entry in the pending table.
    * ``control_request`` is answered by the inbound dispatcher in its own
      task, so slow callbacks never hold up ordinary messages.
    * ``control_cancel_request`` is dropped.
    * anything else is queued, in arrival order, for ``next_message()``.

    When ``close_input_on_result`` is set, the first ``result`` frame also
    closes the transport's input before it is queued.
    """

    def __init__(
        self,
        transport: Transport,
        dispatcher: InboundDispatcher | None = None,
        *,
        close_input_on_result: bool = False,
    ) -> None:
        self._transport = transport
        self._dispatcher = dispatcher
        self._close_input_on_result = close_input_on_result

        self.pending = PendingTable()
        self._queue: asyncio.Queue[Frame | _StreamEnd] = asyncio.Queue()
        self._read_task: asyncio.Task[None] | None = None
        self._inbound_tasks: set[asyncio.Task[None]] = set()
        self._finished = False
        self._end_queued = False

    @property
    def running(self) -> bool:
        return self._read_task is not None and not self._read_task.done()

    @property
    def dispatcher(self) -> InboundDispatcher | None:
        return self._dispatcher

    @property
    def inbound_tasks(self) -> set[asyncio.Task[None]]:
        """Inbound control requests currently being answered."""
        return self._inbound_tasks

    def start(self) -> None:
        """Begin pumping frames.  Calling it again is a no-op."""
        if self._read_task is None:
            self._read_task = asyncio.create_task(self._read_loop())

    async def next_message(self) -> Frame | None:
        """Return the next ordinary frame, or ``None`` at end of stream.

        A fatal stream error is raised once; afterwards the router reports
        end of stream permanently.
        """
        if self._finished:
            return None
        item = await self._queue.get()
        if isinstance(item, _StreamEnd):
            self._finished = True
            if item.error is not None:
                raise item.error
            return None
        return item

    async def close(self) -> None:
        """Stop the reader and inbound handlers and fail pending requests."""
        if self._read_task is not None and not self._read_task.done():
            self._read_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._read_task

        for task in list(self._inbound_tasks):
            task.cancel()
        if self._inbound_tasks:
            await asyncio.gather(*self._inbound_tasks, return_exceptions=True)
        self._inbound_tasks.clear()

        if not self.pending.closed:
            self.pending.fail_all(CLIConnectionError("Connection closed"))
        self._dispatcher = None
        # Wake any consumer blocked in next_message().
        self._put_end(_StreamEnd())
        self._finished = True

    # ------------------------------------------------------------------ #
    # Reader
    # ------------------------------------------------------------------ #

    async def _read_loop(self) -> None:
        error: BaseException | None = None
        try:
            async for frame in self._transport.read_messages():
                await self._route(frame)
        except asyncio.CancelledError:
            self.pending.fail_all(CLIConnectionError("Connection closed"))
            raise
        except Exception as exc:
            logger.error("message stream failed: %s", exc)
            error = exc

        # Answer anything still in flight before reporting the end.
        if self._inbound_tasks:
            await asyncio.gather(*self._inbound_tasks, return_exceptions=True)

        self.pending.fail_all(
            error
            if error is not None
            else CLIConnectionError("Stream ended before control response arrived")
        )
        self._put_end(_StreamEnd(error))
        logger.debug("message stream ended")

    def _put_end(self, marker: _StreamEnd) -> None:
        if not self._end_queued:
            self._end_queued = True
            self._queue.put_nowait(marker)

    async def _route(self, frame: Frame) -> None:
        msg_type = frame.get("type")
        if not isinstance(msg_type, str):
            msg = "Message missing type field"
            raise MessageParseError(msg, frame)

        if msg_type == "control_response":
            response = frame.get("response")
            if isinstance(response, dict):
                self.pending.resolve(response)
            else:
                logger.warning("control_response without response body dropped")
            return

        if msg_type == "control_request":
            self._spawn_inbound(frame)
            return

        if msg_type == "control_cancel_request":
            logger.debug("control_cancel_request ignored: %s", frame.get("request_id"))
            return

        if msg_type == "result" and self._close_input_on_result:
            self._close_input_on_result = False
            await self._transport.close_input()
            logger.info("input closed after first result")

        self._queue.put_nowait(frame)

    def _spawn_inbound(self, frame: Frame) -> None:
        if self._dispatcher is None:
            logger.warning(
                "inbound control request %s ignored: no dispatcher",
                frame.get("request_id"),
            )
            return
        task = asyncio.create_task(self._dispatcher.handle(frame))
        self._inbound_tasks.add(task)
        task.add_done_callback(self._inbound_done)

    def _inbound_done(self, task: asyncio.Task[None]) -> None:
        """Callback for inbound handler tasks — log errors, remove from set."""
        self._inbound_tasks.discard(task)
        if not task.cancelled():
            exc = task.exception()
            if exc is not None:
                logger.error("inbound control dispatch error: %s", exc)
