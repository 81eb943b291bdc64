"""
Schemas Package

Pydantic models for signaling messages and call state.
"""

from peercall.schemas.signal import (
    SignalType,
    TERMINATION_SIGNALS,
    Identity,
    SignalMessage,
    SignalEvent,
    UserSummary,
    IncomingCallOffer,
    CallIntent,
)

__all__ = [
    "SignalType",
    "TERMINATION_SIGNALS",
    "Identity",
    "SignalMessage",
    "SignalEvent",
    "UserSummary",
    "IncomingCallOffer",
    "CallIntent",
]
