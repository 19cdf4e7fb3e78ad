"""
Match notifications.

Sinks are called after a formation transaction commits, once per created
match row. A sink failure is logged and never undoes the match.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone

import redis.asyncio as redis
from loguru import logger

notify_log = logger.bind(module="Notify")

OUTBOX_KEY = "matching:notifications:outbox"


class NotificationSink(ABC):
    """Receives created matches."""

    @abstractmethod
    async def on_match_created(self, match_id: int) -> None:
        """Handle a newly created match row."""


class LoggingNotificationSink(NotificationSink):
    """Only logs created matches."""

    async def on_match_created(self, match_id: int) -> None:
        notify_log.info(f"Match #{match_id} created")


class RedisNotificationOutbox(NotificationSink):
    """
    Push created matches onto a Redis list consumed by the mailer.

    Each entry is a JSON object ``{"match_id": ..., "created_at": ...}``.
    """

    def __init__(self, client: redis.Redis, key: str = OUTBOX_KEY):
        self._client = client
        self._key = key

    async def on_match_created(self, match_id: int) -> None:
        payload = json.dumps({
            "match_id": match_id,
            "created_at": datetime.now(timezone.utc).isoformat(),
        })
        await self._client.lpush(self._key, payload)
        notify_log.debug(f"Queued notification for match #{match_id}")

    async def pending(self) -> int:
        """Number of notifications waiting for the mailer."""
        return await self._client.llen(self._key)


async def notify_created(sink: NotificationSink, match_ids: list[int]) -> None:
    """
    Notify every created row, logging failures.

    Args:
        sink: Notification sink
        match_ids: IDs of the committed match rows
    """
    for match_id in match_ids:
        try:
            await sink.on_match_created(match_id)
        except Exception as e:
            notify_log.error(f"Notification failed for match #{match_id}: {e}")
