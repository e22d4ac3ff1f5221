# Drive-time response cache.

from dataclasses import dataclass
import json
import logging
from typing import Any, Dict, Optional

from .storage import KeyValueStore

log = logging.getLogger("travel_time_proxy.cache")

JsonDict = Dict[str, Any]


def drive_time_cache_key(origin: JsonDict, destination: JsonDict) -> str:
    # Order-sensitive: the key names the request shape, not the unordered pair.
    origin_part = json.dumps(origin, sort_keys=True, separators=(",", ":"))
    destination_part = json.dumps(destination, sort_keys=True, separators=(",", ":"))
    return f"drive-times-{origin_part}-{destination_part}"


@dataclass
class CacheEntry:
    payload: JsonDict
    timestamp: int

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.timestamp


class DriveTimeCache:
    """Two-tier cache: the store expires entries after ``ttl_sec`` but reads
    only treat them as fresh for ``fresh_sec``."""

    def __init__(self, store: KeyValueStore, fresh_sec: int = 240, ttl_sec: int = 300) -> None:
        self.store = store
        self.fresh_sec = fresh_sec
        self.ttl_sec = ttl_sec

    def get(self, key: str) -> Optional[CacheEntry]:
        data = self.store.get_json(key)
        if not isinstance(data, dict):
            return None
        timestamp = data.get("timestamp")
        if not isinstance(timestamp, int):
            return None
        return CacheEntry(payload=data, timestamp=timestamp)

    def put(self, key: str, payload: JsonDict, ttl_seconds: Optional[int] = None) -> None:
        stored = {k: v for k, v in payload.items() if k not in ("cached", "cacheTTL")}
        self.store.put_json(key, stored, self.ttl_sec if ttl_seconds is None else ttl_seconds)

    def get_fresh(self, key: str, now_ms: int) -> Optional[JsonDict]:
        entry = self.get(key)
        if entry is None:
            return None
        age = entry.age_ms(now_ms)
        fresh_ms = self.fresh_sec * 1000
        if age < 0 or age >= fresh_ms:
            return None
        log.info("Returning cached drive times (age %d ms)", age)
        return {**entry.payload, "cached": True, "cacheTTL": (fresh_ms - age) // 1000}
