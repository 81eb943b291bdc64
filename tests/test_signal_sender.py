import json

import httpx
import pytest

from peercall.schemas.signal import Identity, SignalType
from peercall.services.signaling import SignalSender
from tests.helpers import ALICE, BOB


def _sender(handler, identity=Identity(email=ALICE, token="tok-abc")):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SignalSender(identity, base_url="http://relay.test/", client=client), client


@pytest.mark.asyncio
async def test_send_posts_message():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(204)

    sender, client = _sender(handler)
    assert await sender.send(BOB, SignalType.CHAT, "hi bob") is True
    await client.aclose()

    request = requests[0]
    assert request.method == "POST"
    assert str(request.url) == "http://relay.test/sse/signal"
    assert request.headers["Authorization"] == "Bearer tok-abc"
    assert json.loads(request.content) == {
        "sender": ALICE,
        "target": BOB,
        "type": "CHAT",
        "data": "hi bob",
    }


@pytest.mark.asyncio
async def test_send_encodes_structured_data():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(204)

    sender, client = _sender(handler)
    await sender.send(BOB, "CANDIDATE", {"candidate": "", "sdpMid": "0"})
    await client.aclose()

    assert bodies[0]["type"] == "CANDIDATE"
    assert json.loads(bodies[0]["data"]) == {"candidate": "", "sdpMid": "0"}


@pytest.mark.asyncio
async def test_send_reports_relay_errors():
    sender, client = _sender(lambda request: httpx.Response(500, text="boom"))
    assert await sender.send(BOB, SignalType.HANGUP, "{}") is False
    await client.aclose()


@pytest.mark.asyncio
async def test_send_reports_transport_errors():
    def handler(request):
        raise httpx.ConnectError("relay down", request=request)

    sender, client = _sender(handler)
    assert await sender.send(BOB, SignalType.OFFER, "{}") is False
    await client.aclose()


@pytest.mark.asyncio
async def test_send_without_identity():
    calls = []
    sender, client = _sender(lambda request: calls.append(request) or httpx.Response(204), identity=None)

    assert await sender.send(BOB, SignalType.CHAT, "hi") is False
    assert calls == []
    await client.aclose()


@pytest.mark.asyncio
async def test_logout():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(204)

    sender, client = _sender(handler)
    assert await sender.logout() is True
    await client.aclose()

    assert requests[0].method == "DELETE"
    assert requests[0].url.path == "/sse/logout"
    assert requests[0].headers["Authorization"] == "Bearer tok-abc"
