"""
Push notifications to an ntfy topic.
"""
from __future__ import annotations

from typing import Optional

import httpx
from loguru import logger


class NotificationExecutor:
    def __init__(
        self,
        *,
        topic_url: str,
        timeout: float = 5.0,
        dry_run: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.topic_url = topic_url
        self._dry_run = dry_run or not topic_url
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=timeout),
            transport=transport,
        )

    async def send(self, message: str) -> bool:
        """
        POST the message as plain text. Delivery failures are logged and
        reported through the return value only; there is no retry.
        """
        if self._dry_run:
            logger.info("[DRY-RUN] notification: {}", message)
            return True
        try:
            r = await self._client.post(
                self.topic_url,
                content=message.encode("utf-8"),
                headers={"Content-Type": "text/plain"},
            )
            if r.is_success:
                return True
            logger.warning("Failed to send notification: HTTP {} from {}", r.status_code, self.topic_url)
        except Exception as e:
            logger.warning("Failed to send notification: {}", e)
        return False

    async def aclose(self) -> None:
        await self._client.aclose()
