"""Newline-delimited JSON framing for subprocess output."""

from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any

from agentwire.constants import DEFAULT_MAX_BUFFER_SIZE
from agentwire.errors import BufferOverflowError, CLIJSONDecodeError


class JSONLineFramer:
    """Accumulates raw output bytes and splits them into JSON records.

    Records are separated by ``\\n``.  Blank lines are skipped, and a record
    that spans several chunks is only decoded once its newline arrives.
    A complete line that is not valid JSON is fatal: ``drain()`` raises
    ``CLIJSONDecodeError`` instead of skipping it.
    """

    def __init__(self, max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE) -> None:
        if max_buffer_size <= 0:
            msg = f"max_buffer_size must be positive, got {max_buffer_size}"
            raise ValueError(msg)
        self._max_buffer_size = max_buffer_size
        self._buffer = bytearray()

    @property
    def max_buffer_size(self) -> int:
        return self._max_buffer_size

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for a newline."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> None:
        """Append *chunk* to the buffer.

        Raises ``BufferOverflowError`` when the buffer is over the limit and
        still holds no newline.  With a newline present the size does not
        matter, since a complete record is about to be extracted.
        """
        self._buffer.extend(chunk)
        if len(self._buffer) <= self._max_buffer_size:
            return
        if b"\n" in self._buffer:
            return
        raise BufferOverflowError(self._max_buffer_size)

    def drain(self) -> Iterator[Any]:
        """Yield every complete record currently in the buffer."""
        while True:
            pos = self._buffer.find(b"\n")
            if pos < 0:
                return
            line = bytes(self._buffer[:pos]).strip()
            del self._buffer[: pos + 1]
            if not line:
                continue
            yield _decode(line)

    def flush(self) -> Iterator[Any]:
        """Decode whatever is left after end-of-stream as one final record."""
        remaining = bytes(self._buffer).strip()
        self._buffer.clear()
        if remaining:
            yield _decode(remaining)


def _decode(line: bytes) -> Any:
    try:
        return json.loads(line)
    except ValueError as exc:
        text = line.decode(errors="replace")
        msg = f"Failed to decode JSON from CLI output: {text[:200]}"
        raise CLIJSONDecodeError(msg, text) from exc
