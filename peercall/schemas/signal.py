"""
Signaling Schemas

Pydantic models for the messages exchanged over the signaling relay.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SignalType(str, Enum):
    OFFER = "OFFER"
    ANSWER = "ANSWER"
    CANDIDATE = "CANDIDATE"
    CHAT = "CHAT"
    HANGUP = "HANGUP"
    BUSY = "BUSY"
    REJECT = "REJECT"


# Signals that end a call attempt, whatever phase it is in
TERMINATION_SIGNALS = frozenset({SignalType.HANGUP, SignalType.BUSY, SignalType.REJECT})


class Identity(BaseModel):
    """Authenticated user: e-mail plus an opaque bearer token."""
    model_config = ConfigDict(frozen=True)

    email: str
    token: str


class SignalMessage(BaseModel):
    """
    A single signaling message.

    `data` is always a pre-serialized string: SDP JSON for OFFER/ANSWER,
    candidate JSON for CANDIDATE, raw text for CHAT and "{}" otherwise.
    Messages pushed by the relay omit `target`.
    """
    sender: str
    target: str = ""
    type: SignalType
    data: str = ""


class SignalEvent(BaseModel):
    """Payload of the `signal` server-push event."""
    sender: str
    type: SignalType
    data: str = ""


class UserSummary(BaseModel):
    """One entry of the `user_list` snapshot."""
    email: str
    username: str


class IncomingCallOffer(BaseModel):
    """
    An OFFER waiting for the user to accept or reject it.

    `candidates` collects the CANDIDATE payloads the caller sent while the
    offer was pending, in arrival order.
    """
    sender: str
    data: str
    candidates: List[str] = Field(default_factory=list)


class CallIntent(BaseModel):
    """Decoded view of the persisted call-intent keys."""
    target: str
    initiator: bool
    offer: Optional[str] = None
    candidates: List[str] = Field(default_factory=list)
