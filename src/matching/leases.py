"""
Leased claims.

A claim is an exclusive, expiring ownership of a key. Whoever holds it must
renew it before the lease expires; a crashed holder loses it automatically.
"""

import asyncio
import secrets
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as redis
from loguru import logger

lease_log = logger.bind(module="Lease")

# Delete / extend only if we still own the key
RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

RENEW_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return 0
"""


def intent_claim_key(intent_id: int) -> str:
    """Claim key of a seeker intent."""
    return f"matching:intent:{intent_id}"


class LeasedClaim(ABC):
    """Exclusive expiring claims on keys."""

    @abstractmethod
    async def try_claim(self, key: str, lease_seconds: float) -> bool:
        """Claim key if free. Returns False when someone else holds it."""

    @abstractmethod
    async def release(self, key: str) -> None:
        """Release key if we hold it."""

    @abstractmethod
    async def renew(self, key: str, lease_seconds: float) -> bool:
        """Extend our lease. Returns False when we no longer hold it."""

    @asynccontextmanager
    async def held(self, key: str, lease_seconds: float) -> AsyncIterator[bool]:
        """
        Claim key for the duration of the block, renewing it in the background.

        Yields:
            True if the claim was acquired; the block must skip its work otherwise
        """
        if not await self.try_claim(key, lease_seconds):
            yield False
            return

        heartbeat = asyncio.create_task(self._heartbeat(key, lease_seconds))
        try:
            yield True
        finally:
            heartbeat.cancel()
            try:
                await heartbeat
            except asyncio.CancelledError:
                pass
            finally:
                await self.release(key)

    async def _heartbeat(self, key: str, lease_seconds: float) -> None:
        """Renew the lease at a third of its duration until cancelled."""
        interval = max(lease_seconds / 3, 0.05)
        while True:
            await asyncio.sleep(interval)
            try:
                renewed = await self.renew(key, lease_seconds)
            except Exception as e:
                lease_log.error(f"Failed to renew claim on {key}: {e}")
                return
            if not renewed:
                lease_log.warning(f"Lost claim on {key}")
                return


class RedisLeasedClaim(LeasedClaim):
    """Leased claims on Redis: SET NX PX with an owner token."""

    def __init__(self, client: redis.Redis, owner: Optional[str] = None):
        """
        Initialize claims.

        Args:
            client: Redis client
            owner: Owner prefix (instance id); a random suffix is added per claim
        """
        self._client = client
        self._owner = owner or "matching"
        self._tokens: dict[str, str] = {}

    async def try_claim(self, key: str, lease_seconds: float) -> bool:
        token = f"{self._owner}:{secrets.token_hex(8)}"
        acquired = await self._client.set(key, token, nx=True, px=int(lease_seconds * 1000))
        if acquired:
            self._tokens[key] = token
            return True
        return False

    async def release(self, key: str) -> None:
        token = self._tokens.pop(key, None)
        if token is None:
            return
        await self._client.eval(RELEASE_SCRIPT, 1, key, token)

    async def renew(self, key: str, lease_seconds: float) -> bool:
        token = self._tokens.get(key)
        if token is None:
            return False
        renewed = await self._client.eval(
            RENEW_SCRIPT, 1, key, token, int(lease_seconds * 1000)
        )
        return bool(renewed)
