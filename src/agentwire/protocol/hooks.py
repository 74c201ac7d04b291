"""Hook callback registry and hook-output conversion."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from agentwire.config.models import HookMatcher
from agentwire.constants import HookCallback

#: Python-safe aliases for hook output keys that are reserved words.
_RESERVED_ALIASES = {"async_": "async", "continue_": "continue"}


class HookRegistry:
    """Maps opaque callback ids to the hook callables they stand for.

    Built once from the session's hook configuration when the connection
    initializes; read-only afterwards.
    """

    def __init__(self) -> None:
        self._callbacks: dict[str, HookCallback] = {}
        self._config: dict[str, list[dict[str, Any]]] = {}

    @classmethod
    def build(cls, hooks: Mapping[str, list[HookMatcher]] | None) -> HookRegistry:
        """Assign ids to every callback in *hooks* and record the wire config."""
        registry = cls()
        next_id = 0
        for event, matchers in (hooks or {}).items():
            entries: list[dict[str, Any]] = []
            for matcher in matchers:
                callback_ids: list[str] = []
                for callback in matcher.hooks:
                    callback_id = f"hook_{next_id}"
                    next_id += 1
                    registry._callbacks[callback_id] = callback
                    callback_ids.append(callback_id)
                entry: dict[str, Any] = {
                    "matcher": matcher.matcher,
                    "hookCallbackIds": callback_ids,
                }
                if matcher.timeout is not None:
                    entry["timeout"] = matcher.timeout
                entries.append(entry)
            registry._config[event] = entries
        return registry

    def __len__(self) -> int:
        return len(self._callbacks)

    @property
    def config(self) -> dict[str, list[dict[str, Any]]]:
        """The ``hooks`` payload sent with the initialize request."""
        return self._config

    def get(self, callback_id: str) -> HookCallback | None:
        return self._callbacks.get(callback_id)


def convert_hook_output(output: Mapping[str, Any]) -> dict[str, Any]:
    """Restore reserved key names such as ``async_`` and ``continue_``.

    All other keys pass through unchanged.
    """
    return {_RESERVED_ALIASES.get(key, key): value for key, value in output.items()}
