import json
from typing import Any, Optional, Tuple
import redis


class CacheService:
    """JSON values and fixed-window counters on Redis."""

    def __init__(self, redis_url: str):
        self.client = redis.Redis.from_url(redis_url, decode_responses=True)

    def get_json(self, key: str) -> Optional[Any]:
        val = self.client.get(key)
        if val is None:
            return None
        return json.loads(val)

    def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        self.client.set(key, json.dumps(value), ex=ttl_seconds)

    def pop_json(self, key: str) -> Optional[Any]:
        """Read a value and delete it in one round trip; None if absent."""
        pipe = self.client.pipeline()
        pipe.get(key)
        pipe.delete(key)
        val, _ = pipe.execute()
        if val is None:
            return None
        return json.loads(val)

    def hit(self, key: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
        """
        Count one request against `key`.

        Returns (allowed, retry_after_seconds). The window starts on the
        first hit and the counter expires with it.
        """
        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.ttl(key)
        count, ttl = pipe.execute()

        if ttl < 0:
            self.client.expire(key, window_seconds)
            ttl = window_seconds

        allowed = count <= limit
        retry_after = ttl if ttl > 0 else window_seconds
        return allowed, retry_after
