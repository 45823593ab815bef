"""Daemon architecture for VCCE.

A long-running TCP service that editors keep a persistent connection to.

Architecture:
- protocol: length-prefixed JSON frames and the incremental FrameBuffer
- CommandDispatcher: routes requests, streams exec events via EventSink
- DaemonState: context cache, pending patches, running processes
- DaemonServer: asyncio TCP server, one task per connection
- DaemonClient: blocking client speaking the same framing
"""

from vcce.daemon.client import DaemonClient
from vcce.daemon.dispatcher import CommandDispatcher, Connection, EventSink
from vcce.daemon.protocol import (
    FrameBuffer,
    decode_frame,
    encode_frame,
    make_event,
    make_response,
)
from vcce.daemon.state import DaemonState

__all__ = [
    "CommandDispatcher",
    "Connection",
    "DaemonClient",
    "DaemonState",
    "EventSink",
    "FrameBuffer",
    "decode_frame",
    "encode_frame",
    "make_event",
    "make_response",
]
