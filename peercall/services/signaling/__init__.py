"""
Signaling Module

Server-push channel, outbound signal sender and the inbound signal router.
The router is imported from its own module to keep the call package free of
import cycles.
"""
from .channel import SignalingChannel, SSEDecoder, ServerEvent
from .sender import SignalSender

__all__ = [
    "SignalingChannel",
    "SSEDecoder",
    "ServerEvent",
    "SignalSender",
]
