"""
Signaling Channel

One persistent server-push (text/event-stream) connection per identity.
Inbound events are classified into three categories and handed to the
registered callbacks:

- connect:    the channel is (re)established
- user_list:  full snapshot of reachable users
- signal:     a SignalEvent, forwarded verbatim to the router

Reconnection follows EventSource rules: when the stream drops, wait the
server-advertised `retry` interval and reopen. There is no backoff and no
delivery guarantee.
"""
import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Union

import httpx
from pydantic import TypeAdapter, ValidationError

from peercall.config.constants import (
    EVENT_CONNECT,
    EVENT_PING,
    EVENT_SIGNAL,
    EVENT_USER_LIST,
    SSE_SUBSCRIBE_PATH,
)
from peercall.config.settings import settings
from peercall.schemas.signal import Identity, SignalEvent, UserSummary

logger = logging.getLogger(__name__)

Callback = Callable[..., Union[None, Awaitable[None]]]

_user_list_adapter = TypeAdapter(List[UserSummary])


@dataclass
class ServerEvent:
    event: str
    data: str
    id: Optional[str] = None


class SSEDecoder:
    """Incremental text/event-stream parser (one line at a time)."""

    def __init__(self):
        self._event = ""
        self._data: List[str] = []
        self._last_id: Optional[str] = None
        self.retry_ms: Optional[int] = None

    def feed(self, line: str) -> Optional[ServerEvent]:
        line = line.rstrip("\r\n")

        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            if "\0" not in value:
                self._last_id = value
        elif field == "retry":
            if value.isdigit():
                self.retry_ms = int(value)
        return None

    def _dispatch(self) -> Optional[ServerEvent]:
        if not self._data and not self._event:
            return None
        event = ServerEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._last_id,
        )
        self._event = ""
        self._data = []
        return event


class SignalingChannel:
    def __init__(
        self,
        on_connect: Optional[Callback] = None,
        on_user_list: Optional[Callback] = None,
        on_signal: Optional[Callback] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        retry_ms: Optional[int] = None,
    ):
        self.on_connect = on_connect
        self.on_user_list = on_user_list
        self.on_signal = on_signal
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.retry_ms = retry_ms if retry_ms is not None else settings.SSE_RETRY_MS
        self._client = client
        self._owns_client = client is None
        self._task: Optional[asyncio.Task] = None
        self.identity: Optional[Identity] = None

    @property
    def is_connected(self) -> bool:
        return self._task is not None and not self._task.done()

    async def connect(self, token: str, identity: Union[Identity, str]) -> None:
        """Open the channel, closing any prior one first."""
        if not token or not identity:
            logger.warning("[Signaling] connect() without token/identity ignored")
            return

        await self.disconnect()
        if isinstance(identity, str):
            identity = Identity(email=identity, token=token)
        self.identity = identity

        if self._client is None:
            # No read timeout: the stream stays open indefinitely
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(settings.SIGNAL_TIMEOUT_SECONDS, read=None))
        self._task = asyncio.create_task(self._run(token))
        logger.info(f"[Signaling] Channel opened for {identity.email}")

    async def disconnect(self) -> None:
        """Close the channel. Idempotent."""
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("[Signaling] Channel closed")

    async def aclose(self) -> None:
        await self.disconnect()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _run(self, token: str) -> None:
        url = f"{self.base_url}{SSE_SUBSCRIBE_PATH}"
        while True:
            decoder = SSEDecoder()
            try:
                async with self._client.stream(
                    "GET",
                    url,
                    params={"token": token},
                    headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
                ) as response:
                    if response.status_code in (401, 403):
                        logger.error(f"[Signaling] Subscription refused ({response.status_code}), giving up")
                        return
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        event = decoder.feed(line)
                        if event is not None:
                            await self._dispatch(event)
                    # A trailing event without the blank line is discarded, as EventSource does
                logger.warning("[Signaling] Stream ended by server")
            except httpx.HTTPError as e:
                logger.error(f"[Signaling] Stream error: {e}")

            if decoder.retry_ms is not None:
                self.retry_ms = decoder.retry_ms
            await asyncio.sleep(self.retry_ms / 1000)
            logger.info("[Signaling] Reconnecting")

    async def _dispatch(self, event: ServerEvent) -> None:
        logger.debug(f"[Signaling] IN ({event.event}) {event.data[:120]}")

        if event.event == EVENT_CONNECT:
            await self._invoke(self.on_connect)
        elif event.event == EVENT_USER_LIST:
            try:
                users = _user_list_adapter.validate_json(event.data)
            except ValidationError as e:
                logger.error(f"[Signaling] Failed to parse user list: {e}")
                return
            await self._invoke(self.on_user_list, users)
        elif event.event == EVENT_SIGNAL:
            try:
                payload = SignalEvent.model_validate(json.loads(event.data))
            except (ValueError, ValidationError) as e:
                logger.error(f"[Signaling] Failed to parse signal: {e}")
                return
            await self._invoke(self.on_signal, payload)
        elif event.event == EVENT_PING:
            return
        else:
            logger.debug(f"[Signaling] Ignoring event {event.event!r}")

    async def _invoke(self, callback: Optional[Callback], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("[Signaling] Event handler failed")
