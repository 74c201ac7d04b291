"""Control-protocol layer: routing, correlation, and inbound dispatch."""

from agentwire.protocol.correlator import ControlCorrelator
from agentwire.protocol.dispatcher import InboundDispatcher
from agentwire.protocol.hooks import HookRegistry, convert_hook_output
from agentwire.protocol.pending import PendingTable
from agentwire.protocol.router import MessageRouter

__all__ = [
    "ControlCorrelator",
    "HookRegistry",
    "InboundDispatcher",
    "MessageRouter",
    "PendingTable",
    "convert_hook_output",
]
