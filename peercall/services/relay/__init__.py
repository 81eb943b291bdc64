"""
Relay Module

Server-side fan-out of signaling events to subscribed identities, plus the
record of the calls relayed through it.
"""
from .exceptions import InvalidCallTransitionError, RelayError
from .hub import SignalHub, Subscriber, format_sse, signal_hub
from .records import CallRecordStore, call_records

__all__ = [
    "CallRecordStore",
    "InvalidCallTransitionError",
    "RelayError",
    "SignalHub",
    "Subscriber",
    "call_records",
    "format_sse",
    "signal_hub",
]
