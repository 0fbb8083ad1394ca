import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager

import redis
from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import LockError

from securyflex_billing.errors import SubscriptionLockedError

logger = logging.getLogger(__name__)


def subscription_lock_key(subscription_id: str) -> str:
    return f"lock:subscription:{subscription_id}"


@contextmanager
def redis_lock(client: redis.Redis, key: str, ttl: int = 300):
    lock = client.lock(key, timeout=ttl)
    acquired = lock.acquire(blocking=False)
    if not acquired:
        raise RuntimeError("Duplicate task execution prevented")

    try:
        yield
    finally:
        try:
            lock.release()
        except LockError:
            logger.warning("Lock expired before release", extra={"lock_key": key})


class LocalSubscriptionLocks:
    """One asyncio.Lock per subscription id, for single-process deployments."""

    def __init__(self):
        self._locks = {}
        self._users = {}

    @asynccontextmanager
    async def hold(self, subscription_id: str):
        lock = self._locks.setdefault(subscription_id, asyncio.Lock())
        self._users[subscription_id] = self._users.get(subscription_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # Forget the lock once nobody holds or waits on it.
            self._users[subscription_id] -= 1
            if not self._users[subscription_id]:
                del self._users[subscription_id]
                del self._locks[subscription_id]


class RedisSubscriptionLocks:
    """
    Cross-process per-subscription mutex backed by a Redis lock.

    A fresh client is opened per hold so the lock works from any event loop
    (Celery tasks start a new loop per invocation).
    """

    def __init__(self, redis_url: str, ttl: int = 120, blocking_timeout: float = 30):
        self.redis_url = redis_url
        self.ttl = ttl
        self.blocking_timeout = blocking_timeout

    @asynccontextmanager
    async def hold(self, subscription_id: str):
        key = subscription_lock_key(subscription_id)
        client = AsyncRedis.from_url(self.redis_url)
        lock = client.lock(key, timeout=self.ttl, blocking_timeout=self.blocking_timeout)
        try:
            if not await lock.acquire():
                raise SubscriptionLockedError(
                    f"Subscription {subscription_id} is locked by another worker",
                    subscription_id=subscription_id,
                )
            try:
                yield
            finally:
                try:
                    await lock.release()
                except LockError:
                    logger.warning("Subscription lock expired before release", extra={"lock_key": key})
        finally:
            await client.aclose()
