"""
Call Session Manager

Owns the one peer connection this client may have, the local/remote media
streams and the pending ICE candidate queue.

Guarantees:
1. At most one peer connection exists; a new call first awaits any in-flight
   construction and tears it down before building its own.
2. ICE candidates are never applied before the remote description; earlier
   ones are queued and replayed once, in arrival order.
3. Every way a call can end (local hangup, remote HANGUP/BUSY/REJECT, setup
   failure, supersession) goes through `_teardown`, which is idempotent.
"""
import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Union

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection

from peercall.config.constants import EMPTY_SIGNAL_DATA
from peercall.config.settings import settings
from peercall.schemas.signal import SignalType, TERMINATION_SIGNALS
from peercall.services.protocols import MediaProviderProtocol
from peercall.services.signaling.sender import SignalSender

from .exceptions import (
    CallCancelledError,
    CallSetupError,
    MalformedSignalError,
    MediaAcquisitionError,
)
from .media import DeviceMediaProvider, MediaStream
from .sdp import parse_candidate, parse_description, serialize_description
from .session import CallRole, CallSession, CallState, EndReason

logger = logging.getLogger(__name__)

_END_REASONS = {
    SignalType.HANGUP: EndReason.REMOTE_HANGUP,
    SignalType.BUSY: EndReason.BUSY,
    SignalType.REJECT: EndReason.REJECTED,
}


def create_peer_connection(ice_servers: Optional[List[str]] = None) -> RTCPeerConnection:
    urls = settings.ICE_SERVERS if ice_servers is None else ice_servers
    config = RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in urls])
    return RTCPeerConnection(configuration=config)


class CallSessionManager:
    """
    Call lifecycle for a single client.

    All public operations are coroutines meant to run on one event loop.
    The manager is the only writer of its CallSession; callers read state
    through the properties below.
    """

    def __init__(
        self,
        signal_sender: SignalSender,
        media_provider: Optional[MediaProviderProtocol] = None,
        peer_connection_factory: Optional[Callable[[], RTCPeerConnection]] = None,
        on_local_stream: Optional[Callable[[Optional[MediaStream]], None]] = None,
        on_remote_stream: Optional[Callable[[MediaStream], None]] = None,
        on_call_ended: Optional[Callable[[CallSession, EndReason], Optional[Awaitable[None]]]] = None,
    ):
        self._sender = signal_sender
        self._media = media_provider or DeviceMediaProvider()
        self._pc_factory = peer_connection_factory or create_peer_connection
        self.on_local_stream = on_local_stream
        self.on_remote_stream = on_remote_stream
        self.on_call_ended = on_call_ended
        self._session: Optional[CallSession] = None

    # === State ===

    @property
    def session(self) -> Optional[CallSession]:
        return self._session

    @property
    def has_session(self) -> bool:
        return self._session is not None

    @property
    def state(self) -> CallState:
        if self._session is None:
            return CallState.IDLE
        return self._session.state

    @property
    def target_id(self) -> Optional[str]:
        return self._session.target_id if self._session else None

    @property
    def peer_connection(self) -> Optional[RTCPeerConnection]:
        return self._session.peer_connection if self._session else None

    @property
    def local_stream(self) -> Optional[MediaStream]:
        return self._session.local_stream if self._session else None

    @property
    def remote_stream(self) -> Optional[MediaStream]:
        return self._session.remote_stream if self._session else None

    @property
    def is_screen_sharing(self) -> bool:
        return bool(self._session and self._session.is_screen_sharing)

    # === Public operations ===

    async def start_call(self, target: str) -> None:
        """
        Place a call to `target`: build the peer connection, attach local
        media and send the OFFER.

        Raises:
            MediaAcquisitionError: camera/microphone could not be opened.
            CallSetupError: the offer could not be created.
        """
        logger.info(f"[CallManager] Starting call to {target}")
        try:
            session = await self._open_session(CallRole.INITIATOR, target)
            pc = session.peer_connection
            try:
                offer = await pc.createOffer()
                self._ensure_current(session)
                await pc.setLocalDescription(offer)
                self._ensure_current(session)
            except CallCancelledError:
                raise
            except Exception as e:
                await self._fail_setup(session, e, f"Could not create offer for {target}")
        except CallCancelledError as e:
            logger.info(f"[CallManager] Call to {target} abandoned: {e}")
            return

        session.announced = True
        await self._sender.send(target, SignalType.OFFER, serialize_description(pc.localDescription))

    async def accept_call(
        self,
        sender: str,
        offer_data: str,
        buffered_candidates: Iterable[str] = (),
    ) -> None:
        """
        Answer an OFFER from `sender`.

        `buffered_candidates` are candidate payloads that arrived before the
        call was accepted; they are replayed ahead of anything queued during
        construction.
        """
        logger.info(f"[CallManager] Accepting call from {sender}")
        try:
            offer = parse_description(offer_data)
        except MalformedSignalError as e:
            raise CallSetupError(f"Offer from {sender} is malformed: {e}") from e

        early = []
        for data in buffered_candidates:
            try:
                candidate = parse_candidate(data)
            except MalformedSignalError as e:
                logger.warning(f"[CallManager] Dropping buffered candidate from {sender}: {e}")
                continue
            if candidate is not None:
                early.append(candidate)

        try:
            session = await self._open_session(CallRole.RECEIVER, sender)
            session.pending_candidates.extendleft(reversed(early))
            pc = session.peer_connection
            try:
                await pc.setRemoteDescription(offer)
                self._ensure_current(session)
                await self._flush_pending_candidates(session)
                self._ensure_current(session)
                answer = await pc.createAnswer()
                self._ensure_current(session)
                await pc.setLocalDescription(answer)
                self._ensure_current(session)
            except CallCancelledError:
                raise
            except Exception as e:
                await self._fail_setup(session, e, f"Could not answer {sender}")
        except CallCancelledError as e:
            logger.info(f"[CallManager] Call from {sender} abandoned: {e}")
            return

        session.announced = True
        await self._sender.send(sender, SignalType.ANSWER, serialize_description(pc.localDescription))

    async def handle_signal(self, sender: str, signal_type: Union[SignalType, str], data: str) -> None:
        """
        Apply an inbound ANSWER/CANDIDATE or a termination signal to the
        current session. Failures are logged, never raised.
        """
        try:
            signal_type = SignalType(signal_type)
        except ValueError:
            logger.warning(f"[CallManager] Unknown signal type {signal_type!r} from {sender}")
            return

        session = self._session

        if signal_type in TERMINATION_SIGNALS:
            if session is None:
                logger.debug(f"[CallManager] {signal_type.value} from {sender} with no session")
                return
            if sender != session.target_id:
                logger.warning(
                    f"[CallManager] Ignoring {signal_type.value} from {sender}; "
                    f"current call is with {session.target_id}"
                )
                return
            logger.info(f"[CallManager] {sender} sent {signal_type.value}")
            await self._teardown(session, _END_REASONS[signal_type])
            return

        if signal_type not in (SignalType.ANSWER, SignalType.CANDIDATE):
            # OFFER and CHAT are resolved by the router
            return

        if session is None or session.closed:
            logger.warning(f"[CallManager] No session for {signal_type.value} from {sender}, dropping")
            return
        if sender != session.target_id:
            logger.warning(
                f"[CallManager] Dropping {signal_type.value} from {sender}; "
                f"current call is with {session.target_id}"
            )
            return

        try:
            if signal_type == SignalType.ANSWER:
                await self._apply_answer(session, data)
            else:
                await self._apply_candidate(session, data)
        except MalformedSignalError as e:
            logger.warning(f"[CallManager] Malformed {signal_type.value} from {sender}: {e} (data={data[:120]!r})")
        except Exception as e:
            logger.error(f"[CallManager] Failed to apply {signal_type.value} from {sender}: {e}")

    async def toggle_screen_share(self) -> bool:
        """
        Swap the outbound video between camera and screen capture.

        Returns:
            The new sharing flag.

        Raises:
            MediaAcquisitionError: screen capture could not be opened; the
            call itself is left untouched.
        """
        session = self._session
        if session is None or session.peer_connection is None or session.closed:
            logger.warning("[CallManager] Screen share requested without an active call")
            return False

        if session.is_screen_sharing:
            self._stop_screen_share(session)
            return False
        return await self._start_screen_share(session)

    async def hangup(self, target_id: Optional[str] = None) -> None:
        """End the current call. Safe to call any number of times."""
        if target_id:
            await self._sender.send(target_id, SignalType.HANGUP, EMPTY_SIGNAL_DATA)

        session = self._session
        if session is None:
            logger.debug("[CallManager] Hangup with no session")
            return
        await self._teardown(session, EndReason.LOCAL_HANGUP)

    # === Construction ===

    async def _supersede_current(self) -> None:
        """Wait out any in-flight construction, then tear down whatever is current."""
        while self._session is not None:
            session = self._session
            task = session.initializing
            if task is not None and not task.done():
                try:
                    await asyncio.shield(task)
                except asyncio.CancelledError:
                    if not task.cancelled():
                        raise
                except Exception as e:
                    logger.info(f"[CallManager] Previous setup for {session.target_id} ended: {e}")
                continue

            if session.announced and not session.closed:
                await self._sender.send(session.target_id, SignalType.HANGUP, EMPTY_SIGNAL_DATA)
            await self._teardown(session, EndReason.SUPERSEDED)

    async def _open_session(self, role: CallRole, target: str) -> CallSession:
        await self._supersede_current()

        session = CallSession(role=role, target_id=target)
        self._session = session
        task = asyncio.ensure_future(self._construct(session))
        session.initializing = task
        try:
            await task
        finally:
            session.initializing = None
        self._ensure_current(session)
        return session

    async def _construct(self, session: CallSession) -> RTCPeerConnection:
        logger.debug(f"[CallManager] Creating peer connection for {session.target_id}")
        pc = self._pc_factory()
        session.peer_connection = pc
        self._attach_handlers(session, pc)

        try:
            stream = await self._acquire_local_media(session)
            self._ensure_current(session)
            self._add_tracks(session, pc, stream)
        except CallCancelledError:
            await self._teardown(session, EndReason.SUPERSEDED)
            raise
        except asyncio.CancelledError:
            await self._teardown(session, EndReason.SUPERSEDED)
            raise
        except MediaAcquisitionError as e:
            logger.error(f"[CallManager] Failed to get media: {e}")
            await self._teardown(session, EndReason.SETUP_FAILED)
            raise
        except Exception as e:
            logger.error(f"[CallManager] Peer connection setup failed: {e}")
            await self._teardown(session, EndReason.SETUP_FAILED)
            raise CallSetupError(str(e)) from e

        return pc

    async def _acquire_local_media(self, session: CallSession) -> MediaStream:
        if session.local_stream is not None:
            return session.local_stream

        stream = await self._media.get_user_media()
        if session.closed:
            stream.stop()
            raise CallCancelledError(f"call with {session.target_id} ended while opening media")

        session.local_stream = stream
        session.camera_stream = stream
        self._notify(self.on_local_stream, stream)
        return stream

    def _add_tracks(self, session: CallSession, pc: RTCPeerConnection, stream: MediaStream) -> None:
        # Audio before video keeps the m-line order identical on both sides
        audio = stream.audio_track
        video = stream.video_track
        if audio is not None:
            pc.addTrack(audio)
        if video is not None:
            session.video_sender = pc.addTrack(video)

    def _attach_handlers(self, session: CallSession, pc: RTCPeerConnection) -> None:
        @pc.on("track")
        def on_track(track):
            if session.closed:
                return
            logger.info(f"[CallManager] Remote {track.kind} track {track.id} from {session.target_id}")
            session.remote_stream.add_track(track)
            self._notify(self.on_remote_stream, session.remote_stream)

        @pc.on("connectionstatechange")
        def on_connection_state():
            state = pc.connectionState
            if state == "failed":
                logger.warning(f"[CallManager] Connection to {session.target_id} failed")
            else:
                logger.info(f"[CallManager] Connection to {session.target_id}: {state}")

        @pc.on("iceconnectionstatechange")
        def on_ice_state():
            logger.debug(f"[CallManager] ICE state: {pc.iceConnectionState}")

        @pc.on("signalingstatechange")
        def on_signaling_state():
            logger.debug(f"[CallManager] Signaling state: {pc.signalingState}")

    def _ensure_current(self, session: CallSession) -> None:
        if session.closed or self._session is not session:
            raise CallCancelledError(f"call with {session.target_id} was superseded or hung up")

    async def _fail_setup(self, session: CallSession, error: Exception, message: str) -> None:
        if session.closed or self._session is not session:
            raise CallCancelledError(f"{message}: call ended during setup") from error
        logger.error(f"[CallManager] {message}: {error}")
        await self._teardown(session, EndReason.SETUP_FAILED)
        raise CallSetupError(f"{message}: {error}") from error

    # === Negotiation ===

    async def _apply_answer(self, session: CallSession, data: str) -> None:
        pc = session.peer_connection
        if pc is None or session.role != CallRole.INITIATOR:
            logger.warning(f"[CallManager] Unexpected ANSWER from {session.target_id}, dropping")
            return
        if pc.remoteDescription is not None:
            logger.warning(f"[CallManager] Duplicate ANSWER from {session.target_id}, dropping")
            return

        description = parse_description(data)
        await pc.setRemoteDescription(description)
        logger.info(f"[CallManager] Remote description set, {len(session.pending_candidates)} candidate(s) pending")
        await self._flush_pending_candidates(session)

    async def _apply_candidate(self, session: CallSession, data: str) -> None:
        candidate = parse_candidate(data)
        if candidate is None:
            logger.debug(f"[CallManager] End of candidates from {session.target_id}")
            return

        ready = (
            session.has_remote_description
            and not session.flushing_candidates
            and not session.pending_candidates
        )
        if ready:
            await session.peer_connection.addIceCandidate(candidate)
            logger.debug("[CallManager] ICE candidate added")
        else:
            session.pending_candidates.append(candidate)
            logger.debug(f"[CallManager] ICE candidate queued, pending count: {len(session.pending_candidates)}")

    async def _flush_pending_candidates(self, session: CallSession) -> None:
        # Candidates arriving mid-flush are appended and drained by this same loop
        session.flushing_candidates = True
        try:
            while session.pending_candidates and not session.closed:
                candidate = session.pending_candidates.popleft()
                try:
                    await session.peer_connection.addIceCandidate(candidate)
                except Exception as e:
                    logger.warning(f"[CallManager] Queued candidate rejected: {e}")
        finally:
            session.flushing_candidates = False

    # === Screen share ===

    async def _start_screen_share(self, session: CallSession) -> bool:
        if session.video_sender is None:
            logger.warning("[CallManager] No outbound video to replace with a screen capture")
            return False

        stream = await self._media.get_display_media()
        if session.closed or self._session is not session or session.is_screen_sharing:
            stream.stop()
            return session.is_screen_sharing and not session.closed

        track = stream.video_track
        if track is None:
            stream.stop()
            raise MediaAcquisitionError("Screen capture produced no video track")

        session.video_sender.replaceTrack(track)
        session.screen_stream = stream
        session.local_stream = stream
        session.is_screen_sharing = True

        @track.on("ended")
        def on_capture_ended():
            # The capture was stopped outside our control
            if session.screen_stream is stream:
                logger.info("[CallManager] Screen capture ended, reverting to camera")
                self._stop_screen_share(session)

        logger.info(f"[CallManager] Sharing screen with {session.target_id}")
        self._notify(self.on_local_stream, stream)
        return True

    def _stop_screen_share(self, session: CallSession) -> None:
        """Revert to the camera; shared by the manual toggle and the capture's ended event."""
        if not session.is_screen_sharing:
            return

        stream = session.screen_stream
        camera = session.camera_stream
        session.screen_stream = None
        session.is_screen_sharing = False

        if camera is not None and session.video_sender is not None and not session.closed:
            session.video_sender.replaceTrack(camera.video_track)
        session.local_stream = camera

        if stream is not None:
            stream.stop(keep=camera.get_tracks() if camera else ())

        logger.info(f"[CallManager] Stopped screen share with {session.target_id}")
        if not session.closed:
            self._notify(self.on_local_stream, camera)

    # === Teardown ===

    async def _teardown(self, session: CallSession, reason: EndReason) -> None:
        if self._session is session:
            self._session = None
        if session.closed:
            return

        session.closed = True
        logger.info(f"[CallManager] Tearing down call with {session.target_id} ({reason.value})")

        streams = []
        for stream in (session.screen_stream, session.local_stream, session.camera_stream, session.remote_stream):
            if stream is not None and all(stream is not s for s in streams):
                streams.append(stream)

        pc = session.peer_connection
        session.peer_connection = None
        session.video_sender = None
        session.local_stream = None
        session.camera_stream = None
        session.screen_stream = None
        session.is_screen_sharing = False
        session.pending_candidates.clear()

        for stream in streams:
            stream.stop()

        if pc is not None:
            try:
                await pc.close()
            except Exception as e:
                logger.warning(f"[CallManager] Error closing peer connection: {e}")
        if reason != EndReason.SUPERSEDED and self.on_call_ended is not None:
            try:
                result = self.on_call_ended(session, reason)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("[CallManager] on_call_ended callback failed")

    def _notify(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception(f"[CallManager] Callback {getattr(callback, '__name__', callback)} failed")
