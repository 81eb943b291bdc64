"""
Call Client

Wires the signaling channel, the router, the call session manager, the
intent store and the chat log together for one logged-in identity, and
turns call outcomes into user-facing notices.

Usage:
    client = CallClient(Identity(email="alice@example.com", token=token))
    await client.connect()
    await client.place_call("bob@example.com")
    ...
    await client.hangup()
    await client.aclose()
"""
import logging
from typing import Callable, Iterable, List, Optional

import httpx
from aiortc import RTCPeerConnection

from peercall.config.constants import EMPTY_SIGNAL_DATA, LOCAL_CHAT_SENDER
from peercall.schemas.signal import Identity, IncomingCallOffer, SignalType, UserSummary

from .call import (
    CallIntentStore,
    CallServiceError,
    CallSession,
    CallSessionManager,
    EndReason,
    MediaAcquisitionError,
    MediaStream,
)
from .chat import ChatLog, ChatMessage
from .protocols import MediaProviderProtocol
from .signaling import SignalingChannel, SignalSender
from .signaling.router import SignalRouter

logger = logging.getLogger(__name__)

# Notices shown when the peer ends the call; {peer} is their identity
_END_NOTICES = {
    EndReason.REMOTE_HANGUP: "{peer} ended the call.",
    EndReason.BUSY: "{peer} is busy.",
    EndReason.REJECTED: "{peer} rejected the call.",
}

_CANCELLED_NOTICE = "{peer} canceled the call."


class CallClient:
    def __init__(
        self,
        identity: Identity,
        media_provider: Optional[MediaProviderProtocol] = None,
        intent_store: Optional[CallIntentStore] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        peer_connection_factory: Optional[Callable[[], RTCPeerConnection]] = None,
        on_notice: Optional[Callable[[str], None]] = None,
        on_incoming_call: Optional[Callable[[IncomingCallOffer], None]] = None,
        on_users: Optional[Callable[[List[UserSummary]], None]] = None,
        on_chat_message: Optional[Callable[[ChatMessage], None]] = None,
        on_local_stream: Optional[Callable[[Optional[MediaStream]], None]] = None,
        on_remote_stream: Optional[Callable[[MediaStream], None]] = None,
    ):
        self.identity = identity
        self.on_notice = on_notice
        self.on_incoming_call = on_incoming_call
        self.on_users = on_users
        self._users: List[UserSummary] = []

        self.sender = SignalSender(identity, base_url=base_url, client=http_client)
        self.chat = ChatLog(on_message=on_chat_message)
        self.intents = intent_store or CallIntentStore(scope=identity.email)
        self.calls = CallSessionManager(
            self.sender,
            media_provider=media_provider,
            peer_connection_factory=peer_connection_factory,
            on_local_stream=on_local_stream,
            on_remote_stream=on_remote_stream,
            on_call_ended=self._on_call_ended,
        )
        self.router = SignalRouter(
            self.calls,
            self.sender,
            self.chat,
            intent_store=self.intents,
            on_incoming_call=self._on_incoming_call,
            on_incoming_call_cancelled=self._on_incoming_call_cancelled,
        )
        self.channel = SignalingChannel(
            on_connect=self._on_connect,
            on_user_list=self._on_user_list,
            on_signal=self.router.route,
            base_url=base_url,
            client=http_client,
        )

    # === Presence ===

    @property
    def users(self) -> List[UserSummary]:
        """Last user_list snapshot, including ourselves."""
        return list(self._users)

    @property
    def peers(self) -> List[UserSummary]:
        return [u for u in self._users if u.email != self.identity.email]

    @property
    def incoming_call(self) -> Optional[IncomingCallOffer]:
        return self.router.incoming_offer

    async def connect(self) -> None:
        await self.channel.connect(self.identity.token, self.identity)

    async def disconnect(self) -> None:
        await self.channel.disconnect()

    async def logout(self) -> None:
        """Hang up, drop the relay subscription and close the channel."""
        if self.calls.has_session:
            await self.hangup()
        await self.sender.logout()
        await self.channel.disconnect()
        self._users = []

    async def aclose(self) -> None:
        await self.channel.aclose()
        await self.sender.aclose()

    # === Calls ===

    async def place_call(self, target: str) -> None:
        """
        Persist the intent to call `target`, then run the call.

        A pending incoming call is rejected first.
        """
        if target == self.identity.email:
            raise ValueError("Cannot call yourself")
        if self.router.incoming_offer is not None:
            await self.reject_incoming()
        await self.intents.save_outgoing(target)
        await self.resume_call()

    async def accept_incoming(self) -> bool:
        """
        Accept the pending offer.

        Returns:
            False when there was no pending offer.
        """
        offer = self.router.incoming_offer
        if offer is None:
            logger.warning("[Client] No incoming call to accept")
            return False

        await self.intents.save_incoming(offer.sender, offer.data)
        # The offer may have been cancelled while the intent was being written
        if self.router.incoming_offer is not offer:
            logger.info(f"[Client] Call from {offer.sender} went away before it was accepted")
            await self.intents.clear()
            return False

        self.router.take_incoming_offer()
        await self._run_call(self.calls.accept_call(offer.sender, offer.data, offer.candidates))
        return True

    async def reject_incoming(self) -> bool:
        offer = self.router.take_incoming_offer()
        if offer is None:
            return False
        logger.info(f"[Client] Rejecting call from {offer.sender}")
        await self.sender.send(offer.sender, SignalType.REJECT, EMPTY_SIGNAL_DATA)
        await self.intents.clear()
        return True

    async def resume_call(self) -> bool:
        """
        Run the call recorded in the intent store.

        Returns:
            False when there is nothing to resume.

        Raises:
            MediaAcquisitionError, CallSetupError: after the matching notice.
        """
        intent = await self.intents.load()
        if intent is None:
            logger.info("[Client] No call intent to resume")
            return False

        if intent.initiator:
            await self._run_call(self.calls.start_call(intent.target))
            return True

        if not intent.offer:
            logger.warning(f"[Client] Intent for call with {intent.target} has no offer, discarding")
            await self.intents.clear()
            return False
        await self._run_call(self.calls.accept_call(intent.target, intent.offer, intent.candidates))
        return True

    async def hangup(self) -> None:
        target = self.calls.target_id
        if target is None:
            intent = await self.intents.load()
            target = intent.target if intent else None

        await self.calls.hangup(target)
        # With a session, the end-of-call hook has already cleared it
        await self.intents.clear()

    async def toggle_screen_share(self) -> bool:
        try:
            return await self.calls.toggle_screen_share()
        except MediaAcquisitionError as e:
            logger.error(f"[Client] Screen share failed: {e}")
            self._post_notice(f"Screen sharing failed: {e}")
            return self.calls.is_screen_sharing

    async def send_chat(self, text: str) -> bool:
        target = self.calls.target_id
        if target is None or not text:
            return False
        sent = await self.sender.send(target, SignalType.CHAT, text)
        if sent:
            self.chat.add_message(LOCAL_CHAT_SENDER, text)
        return sent

    async def _run_call(self, operation) -> None:
        try:
            await operation
        except MediaAcquisitionError as e:
            self._post_notice(f"Could not access camera or microphone: {e}")
            raise
        except CallServiceError as e:
            self._post_notice(f"Call failed to start: {e}")
            raise

    # === Event hooks ===

    def _on_connect(self) -> None:
        logger.info(f"[Client] Connected as {self.identity.email}")

    def _on_user_list(self, users: Iterable[UserSummary]) -> None:
        self._users = list(users)
        if self.on_users:
            self.on_users(self.peers)

    def _on_incoming_call(self, offer: IncomingCallOffer) -> None:
        if self.on_incoming_call:
            self.on_incoming_call(offer)

    def _on_incoming_call_cancelled(self, offer: IncomingCallOffer, signal_type: SignalType) -> None:
        self._post_notice(_CANCELLED_NOTICE.format(peer=offer.sender))

    async def _on_call_ended(self, session: CallSession, reason: EndReason) -> None:
        await self.intents.clear()
        self.chat.clear()
        template = _END_NOTICES.get(reason)
        if template:
            self._post_notice(template.format(peer=session.target_id))

    def _post_notice(self, text: str) -> None:
        logger.info(f"[Client] {text}")
        if self.on_notice:
            self.on_notice(text)
