# FILE: exam_engine/services/kv_store.py
"""
Expiring key/value stores backing exam timers and the rank cache

RedisKeyValueStore is used whenever REDIS_URL is configured; the in-process
store serves single-worker development setups and tests.
"""
import fnmatch
import logging
import threading
import time
from typing import Dict, List, Optional, Protocol, Tuple

import redis

from exam_engine.config import get_settings

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def get(self, key: str) -> Optional[str]: ...

    def delete(self, key: str) -> None: ...

    def scan(self, pattern: str) -> List[str]: ...

    def delete_pattern(self, pattern: str) -> int: ...


class RedisKeyValueStore:
    """redis-py backed store with bounded socket timeouts"""

    def __init__(self, url: str, timeout_seconds: float = 2.0):
        self.client = redis.Redis.from_url(
            url,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
            decode_responses=True
        )
        logger.info(f"Redis key/value store: timeout={timeout_seconds}s")

    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self.client.setex(key, ttl_seconds, value)

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def delete(self, key: str) -> None:
        self.client.delete(key)

    def scan(self, pattern: str) -> List[str]:
        return list(self.client.scan_iter(match=pattern))

    def delete_pattern(self, pattern: str) -> int:
        keys = self.scan(pattern)
        if not keys:
            return 0
        return self.client.delete(*keys)


class MemoryKeyValueStore:
    """Thread-safe in-process store with lazy expiry"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: Dict[str, Tuple[str, float]] = {}

    def _alive(self, key: str, now: float) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return False
        if entry[1] <= now:
            del self._data[key]
            return False
        return True

    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (value, time.monotonic() + ttl_seconds)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            if not self._alive(key, time.monotonic()):
                return None
            return self._data[key][0]

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def scan(self, pattern: str) -> List[str]:
        now = time.monotonic()
        with self._lock:
            return [
                k for k in list(self._data)
                if fnmatch.fnmatchcase(k, pattern) and self._alive(k, now)
            ]

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            keys = [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]
            for k in keys:
                del self._data[k]
            return len(keys)


_store: Optional[KeyValueStore] = None


def get_kv_store() -> KeyValueStore:
    """Get or create global key/value store"""
    global _store
    if _store is None:
        settings = get_settings()
        if settings.redis_url:
            _store = RedisKeyValueStore(settings.redis_url, settings.redis_timeout_seconds)
        else:
            logger.warning("REDIS_URL not set; using in-process key/value store")
            _store = MemoryKeyValueStore()
    return _store
