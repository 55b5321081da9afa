"""
Redis-based distributed locks.

* ``DistributedLock`` -- generic SET NX EX lock with a Lua script for atomic
  check-and-delete on release.  The side-effect dispatcher uses one so only
  a single process drains the outbox at a time.
* ``ride_lock`` -- per-ride lock held for the whole of a lifecycle
  transition, commit included.  Contention surfaces as ``RideLocked``;
  callers retry manually.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis

from ride2school.domain.errors import RideLocked

logger = logging.getLogger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def release(self) -> None:
        """Release only if we still own the lock (atomic via Lua)."""
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)


@asynccontextmanager
async def ride_lock(
    client: aioredis.Redis, ride_id: str, ttl_seconds: int = 30
) -> AsyncIterator[DistributedLock]:
    lock = DistributedLock(client, f"ride:{ride_id}", ttl_seconds=ttl_seconds)
    if not await lock.acquire():
        logger.warning("Ride %s is locked by a concurrent transition", ride_id)
        raise RideLocked()
    try:
        yield lock
    finally:
        await lock.release()
