"""
Call Record Schemas

What the relay remembers about each call attempt it has relayed.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class CallStatus(str, Enum):
    TRYING = "TRYING"
    CONNECTED = "CONNECTED"
    ENDED = "ENDED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    BUSY = "BUSY"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_CALL_STATUSES

    def can_transition_to(self, next_status: "CallStatus") -> bool:
        """
        TRYING may move to any other status, CONNECTED only to ENDED.
        Terminal statuses never change. Staying put is always allowed.
        """
        if next_status == self:
            return True
        if self.is_terminal:
            return False
        if self == CallStatus.CONNECTED:
            return next_status == CallStatus.ENDED
        return True


TERMINAL_CALL_STATUSES = frozenset({
    CallStatus.ENDED,
    CallStatus.CANCELLED,
    CallStatus.REJECTED,
    CallStatus.BUSY,
})


class CallRecord(BaseModel):
    session_id: str
    caller: str
    callee: str
    status: CallStatus = CallStatus.TRYING
    created_at: datetime
    connected_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    def involves(self, email: str) -> bool:
        return email in (self.caller, self.callee)


class CallHistoryResponse(BaseModel):
    calls: List[CallRecord]
