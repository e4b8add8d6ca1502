"""
Shared test constants and doubles for the Redis cache.
"""

import copy

ESCALATION_PASSWORD = "Escalate2Admin"


class MockCache:
    """Mock Redis cache for testing"""

    def __init__(self):
        self._data = {}
        self._call_log = []

    async def get(self, key):
        self._call_log.append(('get', key))
        return copy.deepcopy(self._data.get(key))

    async def set(self, key, value, ttl=None):
        self._call_log.append(('set', key, ttl))
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key):
        self._call_log.append(('delete', key))
        return 1 if self._data.pop(key, None) is not None else 0

    async def increment(self, key, delta=1):
        self._call_log.append(('increment', key))
        self._data[key] = int(self._data.get(key) or 0) + delta
        return self._data[key]

    def clear_log(self):
        self._call_log = []

    @property
    def call_log(self):
        return self._call_log


class FailingCache:
    """Cache whose backend is unreachable"""

    async def get(self, key):
        raise ConnectionError("redis unavailable")

    async def set(self, key, value, ttl=None):
        raise ConnectionError("redis unavailable")

    async def delete(self, key):
        raise ConnectionError("redis unavailable")

    async def increment(self, key, delta=1):
        raise ConnectionError("redis unavailable")
