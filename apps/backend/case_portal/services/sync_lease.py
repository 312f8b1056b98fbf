"""Per-system lease so only one sync run touches an external system at a time.

Uses Redis (SET NX PX) when REDIS_URL is configured so several workers share
the lease; otherwise an in-process table guarded by a lock is used, which
only serializes runs within one process. A held lease is renewed in the
background so runs longer than the TTL keep it.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from threading import Lock
from uuid import uuid4

import redis

from case_portal.config import settings
from case_portal.logger import get_logger
from case_portal.services.errors import SyncAlreadyRunningError

logger = get_logger(__name__)

# Delete the key only if we still own it.
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

# Push the expiry out only if we still own it.
_EXTEND_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('pexpire', KEYS[1], ARGV[2])
end
return 0
"""


class SyncLease:
    """Fail-fast mutual exclusion keyed by external system name."""

    def __init__(
        self,
        *,
        ttl_seconds: float | None = None,
        redis_client: redis.Redis | None = None,
        redis_url: str | None = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds or settings.sync_lease_ttl_seconds
        self._local: dict[str, tuple[str, float]] = {}
        self._lock = Lock()
        self._redis: redis.Redis | None = redis_client

        url = redis_url if redis_url is not None else settings.redis_url
        if self._redis is None and url:
            try:
                self._redis = redis.from_url(url, decode_responses=True)
                self._redis.ping()
            except redis.RedisError:
                logger.warning("Redis unavailable, using in-process sync lease", exc_info=True)
                self._redis = None

    @property
    def _ttl_ms(self) -> int:
        return int(self.ttl_seconds * 1000)

    @staticmethod
    def _key(system: str) -> str:
        return f"sync_lease:{system}"

    def acquire(self, system: str) -> str:
        """Take the lease or raise SyncAlreadyRunningError. Returns the owner token."""
        token = uuid4().hex
        if self._redis is not None:
            acquired = self._redis.set(self._key(system), token, nx=True, px=self._ttl_ms)
        else:
            acquired = self._acquire_local(system, token)
        if not acquired:
            logger.warning("Sync lease busy", system=system)
            raise SyncAlreadyRunningError(system)
        logger.debug("Sync lease acquired", system=system)
        return token

    def _acquire_local(self, system: str, token: str) -> bool:
        now = time.monotonic()
        with self._lock:
            held = self._local.get(system)
            if held and held[1] > now:
                return False
            self._local[system] = (token, now + self.ttl_seconds)
            return True

    def release(self, system: str, token: str) -> None:
        if self._redis is not None:
            self._redis.eval(_RELEASE_SCRIPT, 1, self._key(system), token)
            return
        with self._lock:
            held = self._local.get(system)
            if held and held[0] == token:
                del self._local[system]

    def is_held(self, system: str) -> bool:
        if self._redis is not None:
            return bool(self._redis.exists(self._key(system)))
        with self._lock:
            held = self._local.get(system)
            return bool(held and held[1] > time.monotonic())

    def extend(self, system: str, token: str) -> bool:
        """Reset the TTL of a lease we own. False when it was lost or taken over."""
        if self._redis is not None:
            return bool(self._redis.eval(_EXTEND_SCRIPT, 1, self._key(system), token, self._ttl_ms))
        with self._lock:
            held = self._local.get(system)
            if not held or held[0] != token:
                return False
            self._local[system] = (token, time.monotonic() + self.ttl_seconds)
            return True

    async def _keep_alive(self, system: str, token: str) -> None:
        interval = self.ttl_seconds / 3
        while True:
            await asyncio.sleep(interval)
            try:
                if not self.extend(system, token):
                    logger.error("Sync lease lost while running", system=system)
                    return
            except redis.RedisError:
                logger.warning("Sync lease renewal failed", system=system, exc_info=True)

    @asynccontextmanager
    async def hold(self, system: str) -> AsyncIterator[None]:
        """Hold the lease for the duration of the block, renewing it until exit."""
        token = self.acquire(system)
        renewal = asyncio.create_task(self._keep_alive(system, token))
        try:
            yield
        finally:
            renewal.cancel()
            with suppress(asyncio.CancelledError):
                await renewal
            self.release(system, token)
