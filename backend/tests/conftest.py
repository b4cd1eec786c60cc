import pytest

from backend.vault.services.cache_service import CacheService


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def __getattr__(self, name):
        def queue(*args):
            self.ops.append((name, args))
            return self
        return queue

    def execute(self):
        results = [getattr(self.client, name)(*args) for name, args in self.ops]
        self.ops = []
        return results


class FakeRedis:
    """The handful of Redis commands CacheService uses, kept in dicts."""

    def __init__(self):
        self.values = {}
        self.ttls = {}

    def pipeline(self):
        return FakePipeline(self)

    def get(self, key):
        return self.values.get(key)

    def set(self, key, value, ex=None):
        self.values[key] = value
        if ex is not None:
            self.ttls[key] = ex

    def delete(self, key):
        self.ttls.pop(key, None)
        return 1 if self.values.pop(key, None) is not None else 0

    def incr(self, key):
        self.values[key] = int(self.values.get(key, 0)) + 1
        return self.values[key]

    def ttl(self, key):
        if key not in self.values:
            return -2
        return self.ttls.get(key, -1)

    def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_cache(fake_redis):
    cache = CacheService("redis://localhost:6379/0")
    cache.client = fake_redis
    return cache
