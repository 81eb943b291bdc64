import sys
import pytest
from pathlib import Path

# Add project root (1 level up from tests/) to sys.path so tests can import 'peercall'
root = Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))


# Optionally set PYTHONPATH for runtime
import os
os.environ.setdefault('PYTHONPATH', str(root))

import fakeredis.aioredis

from peercall.services.call.intent import CallIntentStore
from tests.helpers import FakeMediaProvider, FakePeerConnection, RecordingSender


@pytest.fixture
def fake_redis():
    """In-memory Redis shared by everything in one test."""
    return fakeredis.aioredis.FakeRedis()


@pytest.fixture
def intent_store(fake_redis):
    return CallIntentStore(scope="alice@example.com", redis_client=fake_redis)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def media():
    return FakeMediaProvider()


@pytest.fixture
def peer_connections():
    """Every fake peer connection created by the factory, in creation order."""
    return []


@pytest.fixture
def pc_factory(peer_connections):
    def _factory():
        pc = FakePeerConnection()
        peer_connections.append(pc)
        return pc
    return _factory
