"""
Signal Router

Invoked once per inbound `signal` event. Decides, from the signal type and
the current call state, which single downstream target handles it:

- CHAT                     -> chat collaborator (regardless of call state)
- OFFER                    -> incoming-call presentation, or an immediate BUSY
- ANSWER / CANDIDATE       -> CallSessionManager (dropped when there is no session;
                              candidates for a pending offer are buffered)
- HANGUP / BUSY / REJECT   -> CallSessionManager teardown, plus cancelling a
                              pending offer from the same sender
"""
import logging
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Union

from pydantic import ValidationError
from redis.exceptions import RedisError

from peercall.config.constants import EMPTY_SIGNAL_DATA
from peercall.schemas.signal import (
    IncomingCallOffer,
    SignalEvent,
    SignalMessage,
    SignalType,
    TERMINATION_SIGNALS,
)
from peercall.services.protocols import ChatSinkProtocol
from peercall.services.signaling.sender import SignalSender

if TYPE_CHECKING:
    from peercall.services.call.intent import CallIntentStore
    from peercall.services.call.manager import CallSessionManager

logger = logging.getLogger(__name__)


class Route(str, Enum):
    CHAT = "chat"
    INCOMING_CALL = "incoming_call"
    BUSY_REPLY = "busy_reply"
    CALL_SESSION = "call_session"
    BUFFERED = "buffered"
    DROPPED = "dropped"


class SignalRouter:
    def __init__(
        self,
        call_manager: "CallSessionManager",
        signal_sender: SignalSender,
        chat: ChatSinkProtocol,
        intent_store: Optional["CallIntentStore"] = None,
        on_incoming_call: Optional[Callable[[IncomingCallOffer], None]] = None,
        on_incoming_call_cancelled: Optional[Callable[[IncomingCallOffer, SignalType], None]] = None,
    ):
        self.call_manager = call_manager
        self.sender = signal_sender
        self.chat = chat
        self.intent_store = intent_store
        self.on_incoming_call = on_incoming_call
        self.on_incoming_call_cancelled = on_incoming_call_cancelled
        self._incoming_offer: Optional[IncomingCallOffer] = None

    @property
    def incoming_offer(self) -> Optional[IncomingCallOffer]:
        return self._incoming_offer

    def take_incoming_offer(self) -> Optional[IncomingCallOffer]:
        """Remove and return the pending offer (used when it is accepted or rejected)."""
        offer = self._incoming_offer
        self._incoming_offer = None
        return offer

    async def route(self, payload: Union[SignalEvent, SignalMessage, dict]) -> Route:
        if isinstance(payload, dict):
            try:
                payload = SignalEvent.model_validate(payload)
            except ValidationError as e:
                logger.warning(f"[Router] Dropping malformed signal: {e}")
                return Route.DROPPED

        sender, signal_type, data = payload.sender, payload.type, payload.data

        if signal_type == SignalType.CHAT:
            self.chat.add_message(sender, data)
            return Route.CHAT

        if signal_type == SignalType.OFFER:
            return await self._route_offer(sender, data)

        if signal_type in TERMINATION_SIGNALS:
            pending = self._incoming_offer
            if pending is not None and pending.sender == sender:
                self._incoming_offer = None
                logger.info(f"[Router] {sender} cancelled their pending call ({signal_type.value})")
                self._notify(self.on_incoming_call_cancelled, pending, signal_type)
                if self.intent_store is not None:
                    await self._persist("clear", self.intent_store.clear())
            await self.call_manager.handle_signal(sender, signal_type, data)
            return Route.CALL_SESSION

        # ANSWER / CANDIDATE
        if self.call_manager.has_session:
            await self.call_manager.handle_signal(sender, signal_type, data)
            return Route.CALL_SESSION

        pending = self._incoming_offer
        if signal_type == SignalType.CANDIDATE and pending is not None and pending.sender == sender:
            pending.candidates.append(data)
            if self.intent_store is not None:
                await self._persist("buffer_candidate", self.intent_store.buffer_candidate(data))
            return Route.BUFFERED

        logger.warning(f"[Router] No session for {signal_type.value} from {sender}, dropping")
        return Route.DROPPED

    async def _route_offer(self, sender: str, data: str) -> Route:
        if self.call_manager.has_session or self._incoming_offer is not None:
            busy_with = self.call_manager.target_id or self._incoming_offer.sender
            logger.info(f"[Router] OFFER from {sender} while busy with {busy_with}, replying BUSY")
            await self.sender.send(sender, SignalType.BUSY, EMPTY_SIGNAL_DATA)
            return Route.BUSY_REPLY

        offer = IncomingCallOffer(sender=sender, data=data)
        self._incoming_offer = offer
        logger.info(f"[Router] Incoming call from {sender}")
        self._notify(self.on_incoming_call, offer)
        if self.intent_store is not None:
            await self._persist("discard_candidates", self.intent_store.discard_candidates())
        return Route.INCOMING_CALL

    def _notify(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("[Router] Presentation callback failed")

    async def _persist(self, operation: str, pending: Awaitable) -> None:
        # Routing continues when the intent store is unreachable
        try:
            await pending
        except RedisError as e:
            logger.error(f"[Router] Intent store {operation} failed: {e}")
