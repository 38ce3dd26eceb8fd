"""
Distributed lock: named, time-bounded exclusive leases.

Each acquire stores a random token under the key; release and refresh only
touch the key while it still holds that token, so an instance can never
drop a lease that expired and was taken over by someone else.
"""

import asyncio
import secrets
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Protocol

from redis.asyncio import Redis

from switchyard.config.logging import get_logger
from switchyard.config.settings import Settings
from switchyard.core.exceptions import LockNotAcquiredError

logger = get_logger(__name__)


class LockBackend(Protocol):
    """Key/value primitives a lease needs."""

    async def set_if_absent(self, key: str, token: str, ttl_seconds: int) -> bool: ...

    async def delete_if_match(self, key: str, token: str) -> bool: ...

    async def expire_if_match(self, key: str, token: str, ttl_seconds: int) -> bool: ...

    async def close(self) -> None: ...


# KEYS[1] = lock key, ARGV[1] = owner token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

# ARGV[2] = new ttl in seconds
_REFRESH_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
end
return 0
"""


class RedisLockBackend:
    """Lease storage on Redis: SET NX EX plus compare-and-delete scripts."""

    def __init__(self, client: Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisLockBackend":
        return cls(Redis.from_url(url))

    async def set_if_absent(self, key: str, token: str, ttl_seconds: int) -> bool:
        return bool(await self.client.set(key, token, nx=True, ex=ttl_seconds))

    async def delete_if_match(self, key: str, token: str) -> bool:
        return bool(await self.client.eval(_RELEASE_SCRIPT, 1, key, token))

    async def expire_if_match(self, key: str, token: str, ttl_seconds: int) -> bool:
        return bool(await self.client.eval(_REFRESH_SCRIPT, 1, key, token, ttl_seconds))

    async def close(self) -> None:
        await self.client.aclose()


class MemoryLockBackend:
    """Lease storage for a single process (development and tests)."""

    def __init__(self) -> None:
        self._leases: dict[str, tuple[str, float]] = {}
        self._mutex = asyncio.Lock()

    def _live_token(self, key: str) -> str | None:
        lease = self._leases.get(key)
        if lease is None:
            return None
        token, expires_at = lease
        if expires_at <= time.monotonic():
            del self._leases[key]
            return None
        return token

    async def set_if_absent(self, key: str, token: str, ttl_seconds: int) -> bool:
        async with self._mutex:
            if self._live_token(key) is not None:
                return False
            self._leases[key] = (token, time.monotonic() + ttl_seconds)
            return True

    async def delete_if_match(self, key: str, token: str) -> bool:
        async with self._mutex:
            if self._live_token(key) != token:
                return False
            del self._leases[key]
            return True

    async def expire_if_match(self, key: str, token: str, ttl_seconds: int) -> bool:
        async with self._mutex:
            if self._live_token(key) != token:
                return False
            self._leases[key] = (token, time.monotonic() + ttl_seconds)
            return True

    async def close(self) -> None:
        self._leases.clear()


class DistributedLock:
    """
    Exclusive leases over a LockBackend.

    At most one holder per key while a lease is live; leases expire on their
    own, so a crashed holder never blocks a key for longer than its TTL.
    Backend errors are logged and reported as a lease not held.
    """

    def __init__(
        self,
        backend: LockBackend,
        key_prefix: str = "switchyard:lock:",
        default_ttl_seconds: int = 60,
    ):
        self.backend = backend
        self.key_prefix = key_prefix
        self.default_ttl_seconds = default_ttl_seconds
        self._tokens: dict[str, str] = {}
        # Leases left to run out rather than released on close
        self._expiring: set[str] = set()

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _ttl(self, ttl_seconds: int | None) -> int:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl < 1:
            raise ValueError(f"Lock TTL must be at least 1 second, got {ttl}")
        return int(ttl)

    def is_held(self, key: str) -> bool:
        """Whether this instance believes it holds `key` (the lease may have expired)."""
        return key in self._tokens

    async def acquire(
        self,
        key: str,
        ttl_seconds: int | None = None,
        keep_until_expiry: bool = False,
    ) -> bool:
        """
        Take the lease on `key` for `ttl_seconds`; False if someone holds it.

        With `keep_until_expiry=True` the lease survives release_all() and
        close(), so it keeps covering its full TTL across a restart.
        """
        ttl = self._ttl(ttl_seconds)
        token = secrets.token_hex(16)
        try:
            acquired = await self.backend.set_if_absent(self._key(key), token, ttl)
        except Exception:
            logger.exception("Failed to acquire lock", key=key)
            return False

        if acquired:
            self._tokens[key] = token
            if keep_until_expiry:
                self._expiring.add(key)
            else:
                self._expiring.discard(key)
            logger.debug("Lock acquired", key=key, ttl_seconds=ttl)
        return acquired

    async def release(self, key: str) -> bool:
        """Drop the lease on `key` if this instance still holds it. Never raises."""
        token = self._tokens.pop(key, None)
        self._expiring.discard(key)
        if token is None:
            return False
        try:
            released = await self.backend.delete_if_match(self._key(key), token)
        except Exception:
            logger.exception("Failed to release lock", key=key)
            return False

        if not released:
            logger.warning("Lock expired before release", key=key)
        return released

    async def refresh(self, key: str, ttl_seconds: int | None = None) -> bool:
        """Extend a held lease; False if it is no longer ours."""
        token = self._tokens.get(key)
        if token is None:
            return False
        ttl = self._ttl(ttl_seconds)
        try:
            refreshed = await self.backend.expire_if_match(self._key(key), token, ttl)
        except Exception:
            logger.exception("Failed to refresh lock", key=key)
            return False

        if not refreshed:
            self._tokens.pop(key, None)
            self._expiring.discard(key)
        return refreshed

    @asynccontextmanager
    async def hold(
        self,
        key: str,
        ttl_seconds: int | None = None,
        required: bool = False,
    ) -> AsyncIterator[bool]:
        """
        Hold a lease for the duration of the block.

        Yields whether the lease was acquired. With `required=True` a lease
        held elsewhere raises LockNotAcquiredError instead.
        """
        acquired = await self.acquire(key, ttl_seconds)
        if not acquired and required:
            raise LockNotAcquiredError(key)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(key)

    async def release_all(self) -> None:
        """Release every held lease except those kept until expiry."""
        for key in list(self._tokens):
            if key in self._expiring:
                continue
            await self.release(key)

    async def close(self) -> None:
        await self.release_all()
        await self.backend.close()


def create_lock(settings: Settings) -> DistributedLock:
    """Redis-backed lock when REDIS_URL is configured, else in-process."""
    backend: LockBackend
    if settings.redis_url:
        backend = RedisLockBackend.from_url(settings.redis_url)
        logger.info("Using Redis lock backend")
    else:
        backend = MemoryLockBackend()
        logger.info("Using in-process lock backend")

    return DistributedLock(
        backend,
        key_prefix=settings.lock_key_prefix,
        default_ttl_seconds=settings.lock_default_ttl_s,
    )
