"""
Signal Sender

Stateless outbound primitive: POSTs one signal message to the relay.
Delivery is best-effort; failures are logged and reported as False,
never raised.
"""
import json
import logging
from typing import Optional, Union

import httpx

from peercall.config.constants import SSE_LOGOUT_PATH, SSE_SIGNAL_PATH
from peercall.config.settings import settings
from peercall.schemas.signal import Identity, SignalMessage, SignalType

logger = logging.getLogger(__name__)


class SignalSender:
    def __init__(
        self,
        identity: Optional[Identity] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.identity = identity
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.SIGNAL_TIMEOUT_SECONDS)
        return self._client

    async def send(
        self,
        target: str,
        signal_type: Union[SignalType, str],
        data: Union[str, dict, list] = "",
    ) -> bool:
        """
        Post a signal to `target`.

        Non-string data is JSON-encoded so the wire field is always a string.
        """
        if self.identity is None:
            logger.warning(f"[Signaling] Not logged in, dropping {signal_type} to {target}")
            return False

        message = SignalMessage(
            sender=self.identity.email,
            target=target,
            type=SignalType(signal_type),
            data=data if isinstance(data, str) else json.dumps(data),
        )
        logger.debug(f"[Signaling] OUT {message.type.value} -> {target}: {message.data[:120]}")

        try:
            response = await self._get_client().post(
                f"{self.base_url}{SSE_SIGNAL_PATH}",
                json=message.model_dump(mode="json"),
                headers={"Authorization": f"Bearer {self.identity.token}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"[Signaling] Failed to send {message.type.value} to {target}: {e}")
            return False

        if response.is_error:
            logger.error(
                f"[Signaling] Relay rejected {message.type.value} to {target}: "
                f"{response.status_code} {response.text}"
            )
            return False
        return True

    async def logout(self) -> bool:
        """Tell the relay to drop our subscription. Best-effort, like send()."""
        if self.identity is None:
            return False
        try:
            response = await self._get_client().delete(
                f"{self.base_url}{SSE_LOGOUT_PATH}",
                headers={"Authorization": f"Bearer {self.identity.token}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"[Signaling] Logout failed: {e}")
            return False
        return not response.is_error

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
