import logging
import time
import uuid

import redis
from django.conf import settings

from .exceptions import EngineLockLost

logger = logging.getLogger(__name__)


def get_redis():
    return redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)


def engine_lock_key(table: str) -> str:
    return f"aviator:engine:{table}"


class RedisEngineLock:
    """
    Single-engine-per-table lock:
    - acquire: SET NX PX
    - renew:   SET XX PX, only while we hold the token
    - release: compare-and-delete
    """

    def __init__(self, key: str, ttl_seconds: int = None, client=None):
        if ttl_seconds is None:
            ttl_seconds = settings.AVIATOR_ENGINE_LOCK_TTL
        self.key = key
        self.ttl_ms = int(ttl_seconds * 1000)
        self.token = uuid.uuid4().hex
        self.r = client or get_redis()

    def acquire(self) -> bool:
        return bool(self.r.set(self.key, self.token, nx=True, px=self.ttl_ms))

    def renew(self) -> bool:
        if self.r.get(self.key) != self.token:
            return False
        return bool(self.r.set(self.key, self.token, xx=True, px=self.ttl_ms))

    def release(self) -> bool:
        pipe = self.r.pipeline()
        try:
            pipe.watch(self.key)
            if pipe.get(self.key) == self.token:
                pipe.multi()
                pipe.delete(self.key)
                pipe.execute()
                return True
            pipe.unwatch()
        except redis.WatchError:
            logger.warning(f"Lock {self.key} changed during release")
        finally:
            pipe.reset()
        return False

    def __enter__(self):
        if not self.acquire():
            raise EngineLockLost(f"Lock {self.key} is held by another engine")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


class LockHeartbeat:
    """Renews the lock at most every `every_seconds`; raises once it is gone."""

    def __init__(self, lock: RedisEngineLock, every_seconds: float = 5.0):
        self.lock = lock
        self.every = every_seconds
        self._next = time.monotonic() + self.every

    def tick(self):
        now = time.monotonic()
        if now >= self._next:
            if not self.lock.renew():
                raise EngineLockLost(f"Lost engine lock {self.lock.key}")
            self._next = now + self.every
