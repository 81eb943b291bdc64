"""
Call Session State

The single mutable unit of call state, exclusively owned by
CallSessionManager.
"""
import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Optional

from aiortc import RTCIceCandidate, RTCPeerConnection, RTCRtpSender

from .media import MediaStream


class CallRole(str, Enum):
    INITIATOR = "INITIATOR"
    RECEIVER = "RECEIVER"


class CallState(str, Enum):
    IDLE = "IDLE"
    NEGOTIATING = "NEGOTIATING"
    ACTIVE = "ACTIVE"


class EndReason(str, Enum):
    LOCAL_HANGUP = "local_hangup"
    REMOTE_HANGUP = "remote_hangup"
    BUSY = "busy"
    REJECTED = "rejected"
    SETUP_FAILED = "setup_failed"
    SUPERSEDED = "superseded"


@dataclass(eq=False)
class CallSession:
    role: CallRole
    target_id: str
    peer_connection: Optional[RTCPeerConnection] = None
    local_stream: Optional[MediaStream] = None
    camera_stream: Optional[MediaStream] = None
    screen_stream: Optional[MediaStream] = None
    remote_stream: MediaStream = field(default_factory=MediaStream)
    video_sender: Optional[RTCRtpSender] = None
    pending_candidates: Deque[RTCIceCandidate] = field(default_factory=deque)
    flushing_candidates: bool = False
    is_screen_sharing: bool = False
    # In-flight construction shared by everyone who needs this session's peer connection
    initializing: Optional["asyncio.Task[RTCPeerConnection]"] = None
    # Set once our OFFER/ANSWER went out, so the peer knows about this attempt
    announced: bool = False
    closed: bool = False

    @property
    def has_remote_description(self) -> bool:
        pc = self.peer_connection
        return pc is not None and pc.remoteDescription is not None

    @property
    def state(self) -> CallState:
        if self.closed:
            return CallState.IDLE
        if self.has_remote_description:
            return CallState.ACTIVE
        return CallState.NEGOTIATING
