"""Shared helper functions for the protocol engine."""

from __future__ import annotations

import inspect
from typing import Any


def format_stderr_preview(stderr_text: str, max_lines: int = 5) -> str:
    """Extract and format the last N non-empty lines from stderr output."""
    lines = [line for line in stderr_text.split("\n") if line.strip()]
    last = lines[-max_lines:] if len(lines) > max_lines else lines
    return "\n  ".join(last)


async def maybe_await(value: Any) -> Any:
    """Return *value*, awaiting it first when a callback handed back a coroutine."""
    if inspect.isawaitable(value):
        return await value
    return value
