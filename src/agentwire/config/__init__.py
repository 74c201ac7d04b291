"""Session options and the agentwire.yaml loader."""

from agentwire.config.models import AgentOptions, HookMatcher, PermissionMode
from agentwire.config.parser import ConfigError, load_options

__all__ = [
    "AgentOptions",
    "ConfigError",
    "HookMatcher",
    "PermissionMode",
    "load_options",
]
