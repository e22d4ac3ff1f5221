# Key-value backends shared by the response cache and the rate limiter.

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import redis

from .errors import StorageError

log = logging.getLogger("travel_time_proxy.storage")

MAX_MEMORY_KEYS = 10000


class KeyValueStore(Protocol):
    def get_json(self, key: str) -> Optional[Any]: ...

    def put_json(self, key: str, value: Any, ttl_seconds: int) -> None: ...


class MemoryStore:
    """Process-local store with per-key expiry.

    Only suitable for a single worker; see check_production_config.
    """

    def __init__(self, clock: Callable[[], float] = time.time, max_keys: int = MAX_MEMORY_KEYS) -> None:
        self._clock = clock
        self._max_keys = max(1, max_keys)
        self._items: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get_json(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            raw, expires_at = item
            if expires_at <= now:
                self._items.pop(key, None)
                return None
        return json.loads(raw)

    def put_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        now = self._clock()
        raw = json.dumps(value)
        with self._lock:
            if len(self._items) >= self._max_keys:
                self._prune(now)
            self._items[key] = (raw, now + max(1, ttl_seconds))

    # Bounds protect memory under request spikes.
    def _prune(self, now: float) -> None:
        expired = [key for key, (_, exp) in self._items.items() if exp <= now]
        for key in expired:
            self._items.pop(key, None)
        if len(self._items) >= self._max_keys:
            log.warning("Memory store full (%d keys), clearing", len(self._items))
            self._items.clear()


class RedisStore:
    def __init__(self, client: "redis.Redis") -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        return cls(redis.Redis.from_url(url, socket_timeout=2.0, socket_connect_timeout=2.0))

    def get_json(self, key: str) -> Optional[Any]:
        try:
            raw = self._client.get(key)
        except redis.RedisError as exc:
            raise StorageError("Cache read failed") from exc
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            log.warning("Discarding undecodable cache value for %s", key)
            return None

    def put_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            self._client.set(key, json.dumps(value), ex=max(1, ttl_seconds))
        except redis.RedisError as exc:
            raise StorageError("Cache write failed") from exc


def store_from_url(url: Optional[str], clock: Callable[[], float] = time.time) -> Optional[KeyValueStore]:
    if not url:
        return None
    if url.startswith("memory://"):
        return MemoryStore(clock=clock)
    if url.startswith(("redis://", "rediss://")):
        return RedisStore.from_url(url)
    log.error("Unsupported cache URL scheme: %s", url.split(":", 1)[0])
    return None
