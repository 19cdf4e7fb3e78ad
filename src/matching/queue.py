"""
Matching work queue.

Seekers to process are queued by intent id. Dequeued items move to a
processing set with a visibility deadline; an item whose worker dies is
requeued by the maintenance sweep once the deadline passes.

Redis layout (all under ``matching:queue:``):
    pending      ZSET  intent_id -> available_at (epoch seconds)
    processing   ZSET  intent_id -> visibility deadline
    failed       ZSET  intent_id -> failed_at
    attempts     HASH  intent_id -> deliveries so far
    errors       HASH  intent_id -> last error
    enqueued_at  HASH  intent_id -> last enqueue time
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis
from loguru import logger

queue_log = logger.bind(module="Queue")

PREFIX = "matching:queue"

ENQUEUE_SCRIPT = """
local id = ARGV[1]
local now = tonumber(ARGV[2])
if redis.call('ZSCORE', KEYS[1], id) or redis.call('ZSCORE', KEYS[2], id)
    or redis.call('ZSCORE', KEYS[3], id) then
    return 0
end
local last = redis.call('HGET', KEYS[4], id)
if last and (now - tonumber(last)) < tonumber(ARGV[3]) then
    return 0
end
redis.call('ZADD', KEYS[1], now, id)
redis.call('HSET', KEYS[4], id, now)
return 1
"""

DEQUEUE_SCRIPT = """
local now = tonumber(ARGV[1])
local items = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', now, 'LIMIT', 0, 1)
if #items == 0 then
    return false
end
local id = items[1]
redis.call('ZREM', KEYS[1], id)
redis.call('ZADD', KEYS[2], now + tonumber(ARGV[2]), id)
local attempts = redis.call('HINCRBY', KEYS[3], id, 1)
return {id, attempts, redis.call('HGET', KEYS[4], id), redis.call('HGET', KEYS[5], id)}
"""

REQUEUE_SCRIPT = """
local now = tonumber(ARGV[1])
local items = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', now)
for _, id in ipairs(items) do
    redis.call('ZREM', KEYS[1], id)
    redis.call('ZADD', KEYS[2], now, id)
end
return #items
"""


@dataclass
class WorkItem:
    """A queued seeker."""

    intent_id: int
    attempts: int = 0
    enqueued_at: Optional[float] = None
    last_error: Optional[str] = None


@dataclass
class QueueStats:
    pending: int = 0
    processing: int = 0
    failed: int = 0


class WorkQueue(ABC):
    """Queue of seeker intents to process."""

    @abstractmethod
    async def enqueue(self, intent_id: int, min_interval_seconds: float = 0) -> bool:
        """
        Queue an intent.

        Skipped (returns False) when already pending, processing or failed,
        or when last enqueued less than min_interval_seconds ago.
        """

    @abstractmethod
    async def dequeue(self, visibility_seconds: float) -> Optional[WorkItem]:
        """Take the next available item and mark it processing."""

    @abstractmethod
    async def ack(self, item: WorkItem) -> None:
        """Item done: forget it."""

    @abstractmethod
    async def retry(self, item: WorkItem, delay_seconds: float, error: str) -> None:
        """Put the item back, available after delay_seconds."""

    @abstractmethod
    async def fail(self, item: WorkItem, error: str) -> None:
        """Give up on the item."""

    @abstractmethod
    async def requeue_stale(self) -> int:
        """Requeue processing items past their visibility deadline."""

    @abstractmethod
    async def purge_failed(self, older_than_seconds: float) -> int:
        """Remove failed items older than the given age."""

    @abstractmethod
    async def stats(self) -> QueueStats:
        """Item counts per state."""


class RedisWorkQueue(WorkQueue):
    """WorkQueue on Redis sorted sets and hashes."""

    def __init__(self, client: redis.Redis, prefix: str = PREFIX):
        self._client = client
        self.pending_key = f"{prefix}:pending"
        self.processing_key = f"{prefix}:processing"
        self.failed_key = f"{prefix}:failed"
        self.attempts_key = f"{prefix}:attempts"
        self.errors_key = f"{prefix}:errors"
        self.enqueued_key = f"{prefix}:enqueued_at"

    async def enqueue(self, intent_id: int, min_interval_seconds: float = 0) -> bool:
        added = await self._client.eval(
            ENQUEUE_SCRIPT,
            4,
            self.pending_key,
            self.processing_key,
            self.failed_key,
            self.enqueued_key,
            intent_id,
            time.time(),
            min_interval_seconds,
        )
        return bool(added)

    async def dequeue(self, visibility_seconds: float) -> Optional[WorkItem]:
        result = await self._client.eval(
            DEQUEUE_SCRIPT,
            5,
            self.pending_key,
            self.processing_key,
            self.attempts_key,
            self.enqueued_key,
            self.errors_key,
            time.time(),
            visibility_seconds,
        )
        if not result:
            return None
        intent_id, attempts, enqueued_at, last_error = result
        return WorkItem(
            intent_id=int(intent_id),
            attempts=int(attempts),
            enqueued_at=float(enqueued_at) if enqueued_at else None,
            last_error=last_error,
        )

    async def ack(self, item: WorkItem) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zrem(self.processing_key, item.intent_id)
            pipe.hdel(self.attempts_key, item.intent_id)
            pipe.hdel(self.errors_key, item.intent_id)
            await pipe.execute()

    async def retry(self, item: WorkItem, delay_seconds: float, error: str) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zrem(self.processing_key, item.intent_id)
            pipe.zadd(self.pending_key, {item.intent_id: time.time() + delay_seconds})
            pipe.hset(self.errors_key, item.intent_id, error)
            await pipe.execute()

    async def fail(self, item: WorkItem, error: str) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zrem(self.processing_key, item.intent_id)
            pipe.zadd(self.failed_key, {item.intent_id: time.time()})
            pipe.hset(self.errors_key, item.intent_id, error)
            pipe.hdel(self.attempts_key, item.intent_id)
            await pipe.execute()
        queue_log.warning(f"Intent {item.intent_id} failed after {item.attempts} attempts: {error}")

    async def requeue_stale(self) -> int:
        count = await self._client.eval(
            REQUEUE_SCRIPT, 2, self.processing_key, self.pending_key, time.time()
        )
        return int(count)

    async def purge_failed(self, older_than_seconds: float) -> int:
        cutoff = time.time() - older_than_seconds
        ids = await self._client.zrangebyscore(self.failed_key, "-inf", cutoff)
        if not ids:
            return 0
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zrem(self.failed_key, *ids)
            pipe.hdel(self.errors_key, *ids)
            pipe.hdel(self.attempts_key, *ids)
            await pipe.execute()
        return len(ids)

    async def stats(self) -> QueueStats:
        async with self._client.pipeline(transaction=False) as pipe:
            pipe.zcard(self.pending_key)
            pipe.zcard(self.processing_key)
            pipe.zcard(self.failed_key)
            pending, processing, failed = await pipe.execute()
        return QueueStats(pending=pending, processing=processing, failed=failed)
