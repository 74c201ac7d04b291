"""Transports — subprocess management and JSONL framing."""

from agentwire.transport.base import Transport
from agentwire.transport.command import build_command, build_env, find_cli
from agentwire.transport.framer import JSONLineFramer
from agentwire.transport.subprocess_cli import SubprocessCLITransport

__all__ = [
    "JSONLineFramer",
    "SubprocessCLITransport",
    "Transport",
    "build_command",
    "build_env",
    "find_cli",
]
