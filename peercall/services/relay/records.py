"""
Call Record Store

Redis-backed ledger of the calls the relay has seen go through it. The relay
updates it from the signals it forwards:

- OFFER:               new record, TRYING (or BUSY straight away when the
                       callee already has a call in progress)
- ANSWER:              TRYING -> CONNECTED
- HANGUP/REJECT/BUSY:  caller side: TRYING -> CANCELLED, CONNECTED -> ENDED
                       callee side: TRYING -> REJECTED (BUSY for a BUSY
                       signal), CONNECTED -> ENDED
- logout:              every call of the user still in progress -> ENDED

Keys, all under "{prefix}:":
- record:{session_id}        JSON of the CallRecord
- latest:{caller}:{callee}   session_id of the newest call between the pair
- active:{email}             set of session_ids still in progress
- history:{email}            newest-first list of session_ids
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import redis.asyncio as redis

from peercall.config.redis import get_redis
from peercall.config.settings import settings
from peercall.schemas.call import CallRecord, CallStatus
from peercall.schemas.signal import SignalMessage, SignalType, TERMINATION_SIGNALS

from .exceptions import InvalidCallTransitionError

logger = logging.getLogger(__name__)


def _text(value) -> Optional[str]:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class CallRecordStore:
    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        prefix: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
        history_limit: Optional[int] = None,
    ):
        self._redis = redis_client
        self.prefix = prefix or settings.CALL_RECORD_PREFIX
        self.ttl_seconds = ttl_seconds or settings.CALL_RECORD_TTL_SECONDS
        self.history_limit = history_limit or settings.CALL_HISTORY_LIMIT

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = await get_redis()
        return self._redis

    def key(self, *parts: str) -> str:
        return ":".join((self.prefix,) + parts)

    # === Queries ===

    async def get(self, session_id: str) -> Optional[CallRecord]:
        r = await self._get_redis()
        raw = await r.get(self.key("record", session_id))
        return CallRecord.model_validate_json(raw) if raw else None

    async def latest(self, caller: str, callee: str) -> Optional[CallRecord]:
        """Newest call `caller` placed to `callee`."""
        r = await self._get_redis()
        session_id = _text(await r.get(self.key("latest", caller, callee)))
        return await self.get(session_id) if session_id else None

    async def has_active_call(self, email: str) -> bool:
        r = await self._get_redis()
        return await r.scard(self.key("active", email)) > 0

    async def history(self, email: str, limit: Optional[int] = None) -> List[CallRecord]:
        """Calls `email` took part in, newest first."""
        limit = limit or self.history_limit
        r = await self._get_redis()
        session_ids = [_text(s) for s in await r.lrange(self.key("history", email), 0, limit - 1)]
        if not session_ids:
            return []
        raws = await r.mget([self.key("record", s) for s in session_ids])
        # Records expire on their own; their ids may outlive them in the list
        return [CallRecord.model_validate_json(raw) for raw in raws if raw]

    # === Updates ===

    async def record_signal(self, message: SignalMessage) -> List[CallRecord]:
        """
        Apply one relayed signal.

        Returns:
            The records it created or changed.
        """
        if message.type == SignalType.OFFER:
            return [await self.open_call(message.sender, message.target)]
        if message.type == SignalType.ANSWER:
            record = await self.connect_call(caller=message.target, callee=message.sender)
            return [record] if record else []
        if message.type in TERMINATION_SIGNALS:
            return await self.end_call(message.sender, message.target, message.type)
        return []

    async def open_call(self, caller: str, callee: str) -> CallRecord:
        record = CallRecord(
            session_id=str(uuid.uuid4()),
            caller=caller,
            callee=callee,
            created_at=datetime.now(timezone.utc),
        )
        if await self.has_active_call(callee):
            self._transition(record, CallStatus.BUSY)
        await self._save(record, new=True)
        logger.info(f"[CallRecords] {record.session_id} {caller} -> {callee}: {record.status.value}")
        return record

    async def connect_call(self, caller: str, callee: str) -> Optional[CallRecord]:
        record = await self.latest(caller, callee)
        if record is None or record.status != CallStatus.TRYING:
            logger.debug(f"[CallRecords] No call ringing from {caller} to {callee}")
            return None
        self._transition(record, CallStatus.CONNECTED)
        await self._save(record)
        logger.info(f"[CallRecords] {record.session_id} CONNECTED")
        return record

    async def end_call(self, sender: str, target: str, signal_type: SignalType) -> List[CallRecord]:
        """Close the newest live call between the two, whichever side placed it."""
        ended = []

        placed = await self.latest(sender, target)
        if placed is not None and not placed.status.is_terminal:
            if placed.status == CallStatus.TRYING:
                status = CallStatus.CANCELLED
            else:
                status = CallStatus.ENDED
            ended.append(await self._finish(placed, status))

        received = await self.latest(target, sender)
        if received is not None and not received.status.is_terminal:
            if received.status == CallStatus.CONNECTED:
                status = CallStatus.ENDED
            elif signal_type == SignalType.BUSY:
                status = CallStatus.BUSY
            else:
                status = CallStatus.REJECTED
            ended.append(await self._finish(received, status))

        return ended

    async def end_active_calls(self, email: str) -> List[CallRecord]:
        r = await self._get_redis()
        session_ids = sorted(_text(s) for s in await r.smembers(self.key("active", email)))
        ended = []
        for session_id in session_ids:
            record = await self.get(session_id)
            if record is None:
                await r.srem(self.key("active", email), session_id)
                continue
            if not record.status.is_terminal:
                ended.append(await self._finish(record, CallStatus.ENDED))
        if ended:
            logger.info(f"[CallRecords] Ended {len(ended)} call(s) of {email}")
        return ended

    async def _finish(self, record: CallRecord, status: CallStatus) -> CallRecord:
        self._transition(record, status)
        await self._save(record)
        logger.info(f"[CallRecords] {record.session_id} {status.value}")
        return record

    def _transition(self, record: CallRecord, status: CallStatus) -> None:
        if not record.status.can_transition_to(status):
            raise InvalidCallTransitionError(
                f"Call {record.session_id} cannot go from {record.status.value} to {status.value}"
            )
        record.status = status
        now = datetime.now(timezone.utc)
        if status == CallStatus.CONNECTED:
            record.connected_at = now
        elif status.is_terminal:
            record.ended_at = now

    async def _save(self, record: CallRecord, new: bool = False) -> None:
        r = await self._get_redis()
        participants = list(dict.fromkeys((record.caller, record.callee)))
        async with r.pipeline(transaction=True) as pipe:
            pipe.set(self.key("record", record.session_id), record.model_dump_json(), ex=self.ttl_seconds)
            if new:
                pipe.set(self.key("latest", record.caller, record.callee), record.session_id, ex=self.ttl_seconds)
                for email in participants:
                    history_key = self.key("history", email)
                    pipe.lpush(history_key, record.session_id)
                    pipe.ltrim(history_key, 0, self.history_limit - 1)
                    pipe.expire(history_key, self.ttl_seconds)
            for email in participants:
                active_key = self.key("active", email)
                if record.status.is_terminal:
                    pipe.srem(active_key, record.session_id)
                else:
                    pipe.sadd(active_key, record.session_id)
                    pipe.expire(active_key, self.ttl_seconds)
            await pipe.execute()


# Global record store
call_records = CallRecordStore()
