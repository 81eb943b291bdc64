"""
Call Session Module

Re-exports the call session manager, its state types and exceptions.
"""
from .manager import CallSessionManager, create_peer_connection
from .session import CallSession, CallRole, CallState, EndReason
from .media import MediaStream, DeviceMediaProvider
from .intent import CallIntentStore
from .exceptions import (
    CallServiceError,
    MediaAcquisitionError,
    CallSetupError,
    CallCancelledError,
    MalformedSignalError,
)

__all__ = [
    "CallSessionManager",
    "create_peer_connection",
    "CallSession",
    "CallRole",
    "CallState",
    "EndReason",
    "MediaStream",
    "DeviceMediaProvider",
    "CallIntentStore",
    "CallServiceError",
    "MediaAcquisitionError",
    "CallSetupError",
    "CallCancelledError",
    "MalformedSignalError",
]
