import asyncio
import json
from collections import defaultdict
from typing import List, Optional

from aiortc import AudioStreamTrack, RTCSessionDescription, VideoStreamTrack

from peercall.schemas.signal import SignalType
from peercall.services.call.exceptions import MediaAcquisitionError
from peercall.services.call.media import MediaStream


ALICE = "alice@example.com"
BOB = "bob@example.com"
CAROL = "carol@example.com"

OFFER_SDP = "v=0\r\no=- 1 1 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\n"
ANSWER_SDP = "v=0\r\no=- 2 2 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\n"


def offer_json(sdp: str = OFFER_SDP) -> str:
    return json.dumps({"type": "offer", "sdp": sdp})


def answer_json(sdp: str = ANSWER_SDP) -> str:
    return json.dumps({"type": "answer", "sdp": sdp})


def candidate_json(port: int = 54321, ip: str = "192.168.1.2") -> str:
    return json.dumps({
        "candidate": f"candidate:1 1 UDP 2130706431 {ip} {port} typ host",
        "sdpMid": "0",
        "sdpMLineIndex": 0,
    })


class RecordingSender:
    """Stands in for SignalSender; remembers every signal it was asked to send."""

    def __init__(self, result: bool = True):
        self.sent = []
        self.result = result

    async def send(self, target, signal_type, data=""):
        self.sent.append((target, SignalType(signal_type), data))
        await asyncio.sleep(0)
        return self.result

    def types_to(self, target) -> List[SignalType]:
        return [t for (to, t, _) in self.sent if to == target]

    @property
    def types(self) -> List[SignalType]:
        return [t for (_, t, _) in self.sent]


class FakeRtpSender:
    def __init__(self, track):
        self.track = track
        self.replaced = []

    def replaceTrack(self, track):
        self.replaced.append(track)
        self.track = track


class FakePeerConnection:
    """
    Deterministic stand-in for RTCPeerConnection.

    addIceCandidate fails before a remote description is set, like a browser.
    `remote_gate`, when set, holds setRemoteDescription until released.
    """

    def __init__(self):
        self.localDescription = None
        self.remoteDescription = None
        self.connectionState = "new"
        self.iceConnectionState = "new"
        self.signalingState = "stable"
        self.candidates = []
        self.senders: List[FakeRtpSender] = []
        self.log = []
        self.close_count = 0
        self.remote_gate: Optional[asyncio.Event] = None
        self.fail_offer: Optional[Exception] = None
        self._handlers = defaultdict(list)

    @property
    def closed(self) -> bool:
        return self.close_count > 0

    def on(self, event, f=None):
        def _register(func):
            self._handlers[event].append(func)
            return func
        return _register(f) if f is not None else _register

    def emit(self, event, *args):
        for handler in list(self._handlers[event]):
            handler(*args)

    async def createOffer(self):
        await asyncio.sleep(0)
        if self.fail_offer is not None:
            raise self.fail_offer
        return RTCSessionDescription(sdp=OFFER_SDP, type="offer")

    async def createAnswer(self):
        await asyncio.sleep(0)
        return RTCSessionDescription(sdp=ANSWER_SDP, type="answer")

    async def setLocalDescription(self, description):
        await asyncio.sleep(0)
        self.localDescription = description
        self.log.append(("local", description.type))

    async def setRemoteDescription(self, description):
        if self.remote_gate is not None:
            await self.remote_gate.wait()
        await asyncio.sleep(0)
        self.remoteDescription = description
        self.log.append(("remote", description.type))

    async def addIceCandidate(self, candidate):
        if self.remoteDescription is None:
            raise RuntimeError("addIceCandidate before setRemoteDescription")
        await asyncio.sleep(0)
        self.candidates.append(candidate)
        self.log.append(("candidate", candidate.port))

    def addTrack(self, track):
        sender = FakeRtpSender(track)
        self.senders.append(sender)
        self.log.append(("track", track.kind))
        return sender

    async def close(self):
        self.close_count += 1


class FakeMediaProvider:
    """
    Produces real aiortc tracks without touching any device.

    `gate`, when set, holds get_user_media until released; `fail_user_media`
    and `fail_display_media` make the next acquisition fail.
    """

    def __init__(self):
        self.user_streams: List[MediaStream] = []
        self.display_streams: List[MediaStream] = []
        self.gate: Optional[asyncio.Event] = None
        self.fail_user_media = False
        self.fail_display_media = False

    async def get_user_media(self) -> MediaStream:
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        if self.fail_user_media:
            raise MediaAcquisitionError("Permission denied")
        stream = MediaStream([AudioStreamTrack(), VideoStreamTrack()])
        self.user_streams.append(stream)
        return stream

    async def get_display_media(self) -> MediaStream:
        await asyncio.sleep(0)
        if self.fail_display_media:
            raise MediaAcquisitionError("Screen capture cancelled")
        stream = MediaStream([VideoStreamTrack()])
        self.display_streams.append(stream)
        return stream


def all_ended(stream: MediaStream) -> bool:
    return all(t.readyState == "ended" for t in stream.get_tracks())


def any_live(stream: MediaStream) -> bool:
    return any(t.readyState == "live" for t in stream.get_tracks())
