"""Pending-request table for outbound control requests."""

from __future__ import annotations

import asyncio
import collections
import logging
from typing import Any

from agentwire.errors import ControlRemoteError

logger = logging.getLogger(__name__)

#: Responses without a registered waiter kept for late registration.
_MAX_UNCLAIMED = 64


class PendingTable:
    """Maps control ``request_id`` values to futures awaiting their response.

    Each entry is removed exactly once: by ``resolve()`` when the response
    arrives, by ``discard()`` when the waiter gives up, or by ``fail_all()``
    when the stream ends.  Resolving an entry twice is a logic error.
    """

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._unclaimed: collections.OrderedDict[str, dict[str, Any]] = (
            collections.OrderedDict()
        )
        self._closed_error: BaseException | None = None

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    @property
    def closed(self) -> bool:
        return self._closed_error is not None

    def register(self, request_id: str) -> asyncio.Future[dict[str, Any]]:
        """Create the waiting slot for *request_id*.

        Raises the stream's terminal error if the table was already failed.
        A response that arrived before registration resolves the slot
        immediately.
        """
        if self._closed_error is not None:
            raise self._closed_error
        if request_id in self._pending:
            msg = f"Duplicate control request id: {request_id}"
            raise RuntimeError(msg)

        loop = asyncio.get_running_loop()
        future: asyncio.Future[dict[str, Any]] = loop.create_future()
        self._pending[request_id] = future

        early = self._unclaimed.pop(request_id, None)
        if early is not None:
            self.resolve(early)
        return future

    def resolve(self, response: dict[str, Any]) -> None:
        """Complete the slot named by ``response["request_id"]``."""
        request_id = response.get("request_id")
        if not isinstance(request_id, str):
            logger.warning("control response without request_id dropped")
            return

        future = self._pending.pop(request_id, None)
        if future is None:
            self._keep_unclaimed(request_id, response)
            return
        if future.cancelled():
            logger.debug("late control response %s dropped", request_id)
            return
        if future.done():
            msg = f"Control request {request_id} resolved twice"
            raise RuntimeError(msg)

        if response.get("subtype") == "error":
            error = str(response.get("error") or "Unknown error")
            future.set_exception(ControlRemoteError(error))
        else:
            payload = response.get("response")
            future.set_result(payload if isinstance(payload, dict) else {})

    def discard(self, request_id: str) -> None:
        """Remove a slot whose waiter timed out or was cancelled."""
        future = self._pending.pop(request_id, None)
        if future is not None and not future.done():
            future.cancel()

    def fail_all(self, error: BaseException) -> None:
        """Fail every waiter with *error* and refuse new registrations."""
        self._closed_error = error
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()
        self._unclaimed.clear()

    def _keep_unclaimed(self, request_id: str, response: dict[str, Any]) -> None:
        logger.warning("control response for unknown request %s retained", request_id)
        self._unclaimed[request_id] = response
        while len(self._unclaimed) > _MAX_UNCLAIMED:
            self._unclaimed.popitem(last=False)
