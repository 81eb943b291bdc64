import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from peercall.schemas.call import CallStatus
from peercall.schemas.signal import SignalMessage, SignalType
from peercall.services.relay import CallRecordStore, SignalHub, format_sse
from tests.helpers import ALICE, BOB, CAROL


def drain(subscriber):
    items = []
    while not subscriber.queue.empty():
        items.append(subscriber.queue.get_nowait())
    return items


def test_format_sse():
    assert format_sse("ping", "keep-alive") == "event: ping\ndata: keep-alive\n\n"
    assert format_sse("signal", "a\nb", retry_ms=500) == "retry: 500\nevent: signal\ndata: a\ndata: b\n\n"


@pytest.mark.asyncio
async def test_subscribe_sends_connect_and_user_list():
    hub = SignalHub(queue_size=8)
    alice = await hub.subscribe(ALICE, "alice")
    bob = await hub.subscribe(BOB, "bob")

    events = drain(alice)
    assert events[0] == ("connect", f"Connected as {ALICE}")
    # Alice saw herself join, then Bob
    user_lists = [json.loads(data) for event, data in events if event == "user_list"]
    assert [[u["email"] for u in lst] for lst in user_lists] == [[ALICE], [ALICE, BOB]]

    assert drain(bob)[0] == ("connect", f"Connected as {BOB}")
    assert hub.subscriber_count == 2


@pytest.mark.asyncio
async def test_resubscribe_replaces_previous_stream():
    hub = SignalHub(queue_size=8)
    first = await hub.subscribe(ALICE, "alice")
    second = await hub.subscribe(ALICE, "alice")

    assert first.closed
    assert first.queue.get_nowait() is None
    assert hub.get_subscriber(ALICE) is second
    assert hub.subscriber_count == 1

    # The old stream finishing must not drop the new one
    assert await hub.unsubscribe(first) is False
    assert hub.get_subscriber(ALICE) is second


@pytest.mark.asyncio
async def test_send_signal_strips_target():
    hub = SignalHub(queue_size=8)
    bob = await hub.subscribe(BOB, "bob")
    drain(bob)

    delivered = await hub.send_signal(SignalMessage(sender=ALICE, target=BOB, type=SignalType.CHAT, data="hi"))

    assert delivered is True
    [(event, data)] = drain(bob)
    assert event == "signal"
    assert json.loads(data) == {"sender": ALICE, "type": "CHAT", "data": "hi"}


@pytest.mark.asyncio
async def test_send_signal_to_offline_target():
    hub = SignalHub(queue_size=8)
    assert await hub.send_signal(SignalMessage(sender=ALICE, target=BOB, type=SignalType.OFFER)) is False


@pytest.mark.asyncio
async def test_heartbeat_pings_everyone():
    hub = SignalHub(queue_size=8)
    alice = await hub.subscribe(ALICE, "alice")
    drain(alice)

    assert await hub.heartbeat() == 0
    assert drain(alice) == [("ping", "keep-alive")]


@pytest.mark.asyncio
async def test_heartbeat_evicts_stalled_subscribers():
    hub = SignalHub(queue_size=3)
    stalled = await hub.subscribe(CAROL, "carol")
    alice = await hub.subscribe(ALICE, "alice")
    drain(alice)

    # Carol never reads: connect + two user lists fill her queue
    assert stalled.queue.full()

    assert await hub.heartbeat() == 1
    assert stalled.closed
    assert hub.get_subscriber(CAROL) is None

    events = drain(alice)
    assert events[0] == ("ping", "keep-alive")
    assert [u["email"] for u in json.loads(events[-1][1])] == [ALICE]


@pytest.mark.asyncio
async def test_full_queue_on_signal_evicts_target():
    hub = SignalHub(queue_size=2)
    bob = await hub.subscribe(BOB, "bob")
    assert bob.queue.full()

    delivered = await hub.send_signal(SignalMessage(sender=ALICE, target=BOB, type=SignalType.CHAT, data="x"))

    assert delivered is False
    assert bob.closed
    assert hub.subscriber_count == 0


@pytest.mark.asyncio
async def test_stream_ends_on_logout():
    hub = SignalHub(queue_size=8, retry_ms=2500)
    alice = await hub.subscribe(ALICE, "alice")

    frames = []
    stream = hub.stream(alice)
    frames.append(await stream.__anext__())
    frames.append(await stream.__anext__())
    assert await hub.logout(ALICE) is True

    async for frame in stream:
        frames.append(frame)

    assert frames[0] == f"retry: 2500\nevent: connect\ndata: Connected as {ALICE}\n\n"
    assert frames[1].startswith("event: user_list\n")
    assert len(frames) == 2
    assert hub.subscriber_count == 0


# === Call records ===

@pytest.fixture
def records(fake_redis):
    return CallRecordStore(redis_client=fake_redis, prefix="test:calls")


@pytest.mark.asyncio
async def test_relayed_signals_update_call_records(records):
    hub = SignalHub(queue_size=8, records=records)
    await hub.subscribe(ALICE, "alice")
    await hub.subscribe(BOB, "bob")

    await hub.send_signal(SignalMessage(sender=ALICE, target=BOB, type=SignalType.OFFER, data="{}"))
    await hub.send_signal(SignalMessage(sender=BOB, target=ALICE, type=SignalType.ANSWER, data="{}"))
    record = await records.latest(ALICE, BOB)
    assert record.status == CallStatus.CONNECTED

    await hub.send_signal(SignalMessage(sender=ALICE, target=BOB, type=SignalType.HANGUP, data="{}"))
    assert (await records.get(record.session_id)).status == CallStatus.ENDED


@pytest.mark.asyncio
async def test_offer_to_offline_target_is_still_recorded(records):
    hub = SignalHub(queue_size=8, records=records)

    delivered = await hub.send_signal(SignalMessage(sender=ALICE, target=BOB, type=SignalType.OFFER, data="{}"))

    assert delivered is False
    assert (await records.latest(ALICE, BOB)).status == CallStatus.TRYING


@pytest.mark.asyncio
async def test_logout_ends_calls_in_progress(records):
    hub = SignalHub(queue_size=8, records=records)
    await hub.subscribe(ALICE, "alice")
    await hub.send_signal(SignalMessage(sender=ALICE, target=BOB, type=SignalType.OFFER, data="{}"))

    assert await hub.logout(ALICE) is True

    assert (await records.latest(ALICE, BOB)).status == CallStatus.ENDED
    assert not await records.has_active_call(BOB)


class BrokenRecords:
    async def record_signal(self, message):
        raise RedisConnectionError("Connection refused")

    async def end_active_calls(self, email):
        raise RedisConnectionError("Connection refused")


@pytest.mark.asyncio
async def test_relaying_survives_unreachable_call_records():
    hub = SignalHub(queue_size=8, records=BrokenRecords())
    await hub.subscribe(ALICE, "alice")
    bob = await hub.subscribe(BOB, "bob")
    drain(bob)

    assert await hub.send_signal(SignalMessage(sender=ALICE, target=BOB, type=SignalType.OFFER, data="{}")) is True
    [(event, _)] = drain(bob)
    assert event == "signal"

    assert await hub.logout(ALICE) is True
    assert hub.get_subscriber(ALICE) is None
