"""
Redis-based distributed lock.

Serialises lifecycle transitions per service request across API processes:
every transition holds ``lock:service_request:{id}`` while it loads, checks
and writes the row.  Callers wait up to ``wait_seconds`` for a busy lock
before giving up with ``LockUnavailable``.

Implementation uses SET NX EX for acquire and a Lua script for
atomic check-and-delete on release.
"""

from __future__ import annotations

import asyncio
import time
import uuid

import redis.asyncio as aioredis

_RELEASE_LUA = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockUnavailable(RuntimeError):
    """The lock stayed held by another owner for the whole wait."""


class DistributedLock:
    def __init__(
        self,
        client: aioredis.Redis,
        key: str,
        ttl_seconds: int = 30,
        wait_seconds: float = 0.0,
        poll_interval: float = 0.05,
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.wait_seconds = wait_seconds
        self.poll_interval = poll_interval
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire once. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def acquire_within(self, timeout: float) -> bool:
        """Poll until acquired or *timeout* seconds have passed."""
        deadline = time.monotonic() + timeout
        while True:
            if await self.acquire():
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval)

    async def release(self) -> None:
        """Release only if we still own the lock (atomic via Lua)."""
        await self.redis.eval(_RELEASE_LUA, 1, self.key, self.token)

    # context-manager support
    async def __aenter__(self):
        acquired = await self.acquire_within(self.wait_seconds)
        if not acquired:
            raise LockUnavailable(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()


def request_lock_key(request_id: int) -> str:
    return f"service_request:{request_id}"
