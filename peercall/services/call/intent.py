"""
Call Intent Store

Redis-backed key-value store that carries a call decision across a restart
of the client (the "decide to call" step and the "run the call" step may
happen in different processes).

Keys, all under "{prefix}:{scope}:":
- call_target:      the peer identity
- call_initiator:   "true" / "false"
- call_offer:       serialized offer (receivers only)
- call_candidates:  JSON array of candidate payloads buffered before the
                    call was accepted

The four keys are always cleared together.
"""
import json
import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from peercall.config.constants import (
    INTENT_CANDIDATES_KEY,
    INTENT_INITIATOR_KEY,
    INTENT_KEYS,
    INTENT_OFFER_KEY,
    INTENT_TARGET_KEY,
)
from peercall.config.redis import get_redis
from peercall.config.settings import settings
from peercall.schemas.signal import CallIntent

logger = logging.getLogger(__name__)


def _decode(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class CallIntentStore:
    def __init__(
        self,
        scope: str,
        redis_client: Optional[redis.Redis] = None,
        prefix: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ):
        self.scope = scope
        self._redis = redis_client
        self.prefix = prefix or settings.CALL_INTENT_PREFIX
        self.ttl_seconds = ttl_seconds or settings.CALL_INTENT_TTL_SECONDS

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = await get_redis()
        return self._redis

    def key(self, name: str) -> str:
        return f"{self.prefix}:{self.scope}:{name}"

    async def save_outgoing(self, target: str) -> None:
        r = await self._get_redis()
        async with r.pipeline(transaction=True) as pipe:
            pipe.delete(self.key(INTENT_OFFER_KEY), self.key(INTENT_CANDIDATES_KEY))
            pipe.set(self.key(INTENT_TARGET_KEY), target, ex=self.ttl_seconds)
            pipe.set(self.key(INTENT_INITIATOR_KEY), "true", ex=self.ttl_seconds)
            await pipe.execute()
        logger.info(f"[Intent] Saved outgoing call to {target}")

    async def save_incoming(self, sender: str, offer: str) -> None:
        """Persist an accepted offer; candidates already buffered for it are kept."""
        r = await self._get_redis()
        async with r.pipeline(transaction=True) as pipe:
            pipe.set(self.key(INTENT_TARGET_KEY), sender, ex=self.ttl_seconds)
            pipe.set(self.key(INTENT_INITIATOR_KEY), "false", ex=self.ttl_seconds)
            pipe.set(self.key(INTENT_OFFER_KEY), offer, ex=self.ttl_seconds)
            pipe.expire(self.key(INTENT_CANDIDATES_KEY), self.ttl_seconds)
            await pipe.execute()
        logger.info(f"[Intent] Saved incoming call from {sender}")

    async def buffer_candidate(self, data: str) -> int:
        """
        Append a candidate payload to call_candidates.

        Returns:
            Number of buffered candidates.
        """
        r = await self._get_redis()
        key = self.key(INTENT_CANDIDATES_KEY)
        async with r.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    candidates = self._parse_candidates(_decode(await pipe.get(key)))
                    candidates.append(data)
                    pipe.multi()
                    pipe.set(key, json.dumps(candidates), ex=self.ttl_seconds)
                    await pipe.execute()
                    break
                except WatchError:
                    continue
        logger.debug(f"[Intent] Buffered candidate ({len(candidates)} total)")
        return len(candidates)

    async def load(self) -> Optional[CallIntent]:
        r = await self._get_redis()
        target, initiator, offer, candidates = [
            _decode(v) for v in await r.mget([self.key(k) for k in INTENT_KEYS])
        ]
        if not target:
            return None
        return CallIntent(
            target=target,
            initiator=initiator == "true",
            offer=offer,
            candidates=self._parse_candidates(candidates),
        )

    async def discard_candidates(self) -> None:
        r = await self._get_redis()
        await r.delete(self.key(INTENT_CANDIDATES_KEY))

    async def clear(self) -> None:
        r = await self._get_redis()
        await r.delete(*[self.key(k) for k in INTENT_KEYS])
        logger.info("[Intent] Cleared call intent")

    def _parse_candidates(self, raw: Optional[str]) -> list:
        if not raw:
            return []
        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning(f"[Intent] Discarding unreadable {INTENT_CANDIDATES_KEY}: {raw[:80]!r}")
            return []
        if not isinstance(value, list):
            return []
        return [str(v) for v in value]
