"""Outbound control requests and their correlation with responses."""

from __future__ import annotations

import asyncio
import itertools
import logging
import secrets
from typing import Any

from agentwire.constants import DEFAULT_CONTROL_TIMEOUT
from agentwire.errors import ControlRemoteError, ControlTimeoutError
from agentwire.protocol.pending import PendingTable
from agentwire.transport.base import Transport

logger = logging.getLogger(__name__)


class ControlCorrelator:
    """Sends ``control_request`` frames and waits for the matching response.

    Request ids are unique for the life of the connection.  The response is
    delivered through the shared :class:`PendingTable`, which the message
    router fills as ``control_response`` frames arrive.
    """

    def __init__(
        self,
        transport: Transport,
        pending: PendingTable,
        default_timeout: float = DEFAULT_CONTROL_TIMEOUT,
    ) -> None:
        if default_timeout <= 0:
            msg = "default_timeout must be positive"
            raise ValueError(msg)
        self._transport = transport
        self._pending = pending
        self._default_timeout = default_timeout
        self._counter = itertools.count(1)

    @property
    def default_timeout(self) -> float:
        return self._default_timeout

    def next_request_id(self) -> str:
        return f"req_{next(self._counter)}_{secrets.token_hex(4)}"

    async def send(
        self, request: dict[str, Any], timeout: float | None = None
    ) -> dict[str, Any]:
        """Send *request* and return the agent's response payload.

        Raises :class:`ControlTimeoutError` if no response arrives within
        *timeout* seconds, :class:`ControlRemoteError` if the agent answers
        with an error, or the stream's terminal error if it ends first.
        """
        subtype = str(request.get("subtype", "unknown"))
        timeout = self._default_timeout if timeout is None else timeout
        request_id = self.next_request_id()

        future = self._pending.register(request_id)
        try:
            await self._transport.write(
                {
                    "type": "control_request",
                    "request_id": request_id,
                    "request": request,
                }
            )
        except BaseException:
            self._pending.discard(request_id)
            raise
        logger.debug("control request %s sent (%s)", request_id, subtype)

        try:
            return await asyncio.wait_for(future, timeout)
        except TimeoutError:
            self._pending.discard(request_id)
            logger.warning("control request %s (%s) timed out", request_id, subtype)
            raise ControlTimeoutError(subtype, timeout) from None
        except ControlRemoteError as exc:
            exc.subtype = subtype
            raise
        except asyncio.CancelledError:
            self._pending.discard(request_id)
            raise
