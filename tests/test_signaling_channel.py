import asyncio
import json

import httpx
import pytest

from peercall.schemas.signal import Identity, SignalType
from peercall.services.signaling import SignalingChannel, SSEDecoder
from tests.helpers import ALICE, BOB


def _feed_all(decoder, text):
    events = []
    for line in text.split("\n"):
        event = decoder.feed(line)
        if event is not None:
            events.append(event)
    return events


def test_decoder_named_events():
    decoder = SSEDecoder()
    events = _feed_all(decoder, "event: connect\ndata: Connected as a@b.c\n\nevent: ping\ndata: keep-alive\n\n")

    assert [(e.event, e.data) for e in events] == [
        ("connect", "Connected as a@b.c"),
        ("ping", "keep-alive"),
    ]


def test_decoder_multiline_data_and_default_event():
    decoder = SSEDecoder()
    events = _feed_all(decoder, "data: first\ndata: second\n\n")

    assert len(events) == 1
    assert events[0].event == "message"
    assert events[0].data == "first\nsecond"


def test_decoder_comments_retry_and_id():
    decoder = SSEDecoder()
    events = _feed_all(decoder, ": heartbeat\nretry: 1500\nid: 7\nevent: signal\ndata:{}\n\n")

    assert decoder.retry_ms == 1500
    assert events[0].id == "7"
    assert events[0].data == "{}"


def test_decoder_ignores_blank_lines_between_events():
    decoder = SSEDecoder()
    assert _feed_all(decoder, "\n\n\r\n") == []


def _stream_body(*frames):
    return "".join(frames).encode()


def _frame(event, data):
    return f"event: {event}\ndata: {data}\n\n"


class Recorder:
    def __init__(self):
        self.connects = 0
        self.user_lists = []
        self.signals = []
        self.got_signal = asyncio.Event()

    def on_connect(self):
        self.connects += 1

    def on_user_list(self, users):
        self.user_lists.append(users)

    async def on_signal(self, payload):
        self.signals.append(payload)
        self.got_signal.set()


def _channel(recorder, handler, retry_ms=60000):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    channel = SignalingChannel(
        on_connect=recorder.on_connect,
        on_user_list=recorder.on_user_list,
        on_signal=recorder.on_signal,
        base_url="http://relay.test",
        client=client,
        retry_ms=retry_ms,
    )
    return channel, client


@pytest.mark.asyncio
async def test_channel_dispatches_events():
    recorder = Recorder()
    requests = []
    users = [{"email": ALICE, "username": "alice"}, {"email": BOB, "username": "bob"}]
    signal = {"sender": BOB, "type": "OFFER", "data": json.dumps({"type": "offer", "sdp": "v=0"})}

    def handler(request):
        requests.append(request)
        body = _stream_body(
            _frame("connect", f"Connected as {ALICE}"),
            _frame("user_list", json.dumps(users)),
            _frame("ping", "keep-alive"),
            _frame("signal", "not json"),
            _frame("signal", json.dumps(signal)),
        )
        return httpx.Response(200, content=body, headers={"Content-Type": "text/event-stream"})

    channel, client = _channel(recorder, handler)
    await channel.connect("tok-123", ALICE)
    await asyncio.wait_for(recorder.got_signal.wait(), timeout=2)
    await channel.disconnect()
    await client.aclose()

    assert requests[0].url.path == "/sse/subscribe"
    assert requests[0].url.params["token"] == "tok-123"
    assert channel.identity == Identity(email=ALICE, token="tok-123")
    assert recorder.connects == 1
    assert [u.email for u in recorder.user_lists[0]] == [ALICE, BOB]
    # The malformed signal is skipped, the valid one delivered
    assert len(recorder.signals) == 1
    assert recorder.signals[0].sender == BOB
    assert recorder.signals[0].type == SignalType.OFFER


@pytest.mark.asyncio
async def test_channel_reconnects_after_stream_ends():
    recorder = Recorder()
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 2:
            body = _frame("signal", json.dumps({"sender": BOB, "type": "CHAT", "data": "again"}))
        else:
            body = _frame("connect", "Connected")
        return httpx.Response(200, content=body.encode())

    channel, client = _channel(recorder, handler, retry_ms=0)
    await channel.connect("tok", ALICE)
    await asyncio.wait_for(recorder.got_signal.wait(), timeout=2)
    await channel.disconnect()
    await client.aclose()

    assert len(calls) >= 2
    assert recorder.signals[0].data == "again"


@pytest.mark.asyncio
async def test_channel_gives_up_when_unauthorized():
    recorder = Recorder()
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401)

    channel, client = _channel(recorder, handler, retry_ms=0)
    await channel.connect("bad", ALICE)
    for _ in range(20):
        if not channel.is_connected:
            break
        await asyncio.sleep(0.01)

    assert not channel.is_connected
    assert len(calls) == 1
    await channel.aclose()
    await client.aclose()


@pytest.mark.asyncio
async def test_connect_replaces_previous_channel():
    recorder = Recorder()
    hold = asyncio.Event()

    async def slow_body():
        yield _frame("connect", "Connected").encode()
        await hold.wait()

    def handler(request):
        return httpx.Response(200, content=slow_body())

    channel, client = _channel(recorder, handler)
    await channel.connect("one", ALICE)
    first = channel._task
    await channel.connect("two", ALICE)

    assert first.cancelled() or first.done()
    assert channel.is_connected
    assert channel.identity.token == "two"

    await channel.disconnect()
    await channel.disconnect()
    assert not channel.is_connected
    await client.aclose()


@pytest.mark.asyncio
async def test_connect_without_token_is_ignored():
    recorder = Recorder()
    channel, client = _channel(recorder, lambda request: httpx.Response(200))

    await channel.connect("", ALICE)

    assert not channel.is_connected
    await client.aclose()
