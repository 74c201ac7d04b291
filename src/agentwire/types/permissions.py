"""Permission decisions and callback context objects."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class PermissionResultAllow:
    """Let the tool run, optionally with rewritten input or new rules."""

    updated_input: dict[str, Any] | None = None
    updated_permissions: list[Any] | None = None


@dataclass
class PermissionResultDeny:
    """Refuse the tool call; ``interrupt`` also stops the current turn."""

    message: str = ""
    interrupt: bool = False


PermissionResult = PermissionResultAllow | PermissionResultDeny


@dataclass
class ToolPermissionContext:
    """Extra information passed to the permission callback."""

    suggestions: list[Any] = field(default_factory=list)
    blocked_path: str | None = None


@dataclass
class HookContext:
    """Context passed to hook callbacks.

    ``signal`` is reserved for abort support and is currently always None.
    """

    signal: Any = None
