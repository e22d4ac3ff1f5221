# Per-client sliding-window limiter persisted in the key-value store.

import logging
import math
import time
from typing import Callable, List

from .storage import KeyValueStore

log = logging.getLogger("travel_time_proxy.rate_limit")


def rate_limit_key(client_id: str) -> str:
    return f"ratelimit:{client_id}"


class RateLimiter:
    """Sliding-window counter keyed by client id.

    Concurrent requests from one client may both read an under-limit window
    and both write; the last write wins and one timestamp is lost.
    """

    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self._clock = clock

    def check_and_record(self, client_id: str, max_requests: int = 60, window_ms: int = 60000) -> bool:
        key = rate_limit_key(client_id)
        now = int(self._clock() * 1000)
        window_start = now - window_ms

        try:
            data = self.store.get_json(key)
            requests: List[int] = []
            if isinstance(data, dict):
                requests = [t for t in data.get("requests") or [] if isinstance(t, int) and t > window_start]

            if len(requests) >= max_requests:
                return False

            requests.append(now)
            self.store.put_json(key, {"requests": requests}, math.ceil(window_ms / 1000))
            return True
        except Exception as exc:
            # Fail open: limiter storage trouble must not take the API down.
            log.warning("Rate limiting error for %s: %s", client_id, exc)
            return True
