"""
Keyed locks guarding pairing creation.

Two API processes can both see "no open pairing" for the same (offer,
passenger) and both insert one.  The lifecycle manager therefore takes a
short lock keyed on that pair around the check-and-insert.

* ``DistributedLock`` -- Redis ``SET NX EX`` for acquire and a Lua script
  for atomic check-and-delete on release.  Used when ``redis_url`` is set.
* ``LocalLock`` -- the same interface over in-process ``asyncio`` locks,
  for single-process deployments and tests.

Acquire never waits: a held lock means another request for the same pair
is in flight, which the caller reports as a conflict.
"""

from __future__ import annotations

import asyncio
import uuid
import weakref

import redis.asyncio as aioredis


class LockNotAcquired(RuntimeError):
    """Raised by the context manager when the key is already held."""


class _LockContext:
    # context-manager support shared by both lock kinds
    async def __aenter__(self):
        acquired = await self.acquire()
        if not acquired:
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()


class DistributedLock(_LockContext):
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
        lua = """
        if redis.call("get", KEYS[1]) == ARGV[1] then
            return redis.call("del", KEYS[1])
        else
            return 0
        end
        """
        await self.redis.eval(lua, 1, self.key, self.token)


class LocalLock(_LockContext):
    def __init__(self, lock: asyncio.Lock, key: str):
        self._lock = lock
        self.key = f"lock:{key}"
        self._held = False

    async def acquire(self) -> bool:
        if self._lock.locked():
            return False
        await self._lock.acquire()
        self._held = True
        return True

    async def release(self) -> None:
        if self._held:
            self._held = False
            self._lock.release()


class LocalLockFactory:
    """Hands out ``LocalLock`` objects sharing one ``asyncio.Lock`` per key."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def __call__(self, key: str) -> LocalLock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return LocalLock(lock, key)


class RedisLockFactory:
    def __init__(self, client: aioredis.Redis, ttl_seconds: int = 10):
        self.client = client
        self.ttl_seconds = ttl_seconds

    def __call__(self, key: str) -> DistributedLock:
        return DistributedLock(self.client, key, ttl_seconds=self.ttl_seconds)
