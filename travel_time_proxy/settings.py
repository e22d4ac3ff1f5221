# Environment-driven settings for the travel-time proxy.

from dataclasses import dataclass
import datetime
import logging
import os
import time
from typing import List, Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

log = logging.getLogger("travel_time_proxy.settings")

ROUTES_API_URL = "https://routes.googleapis.com/directions/v2:computeRoutes"
MBTA_API_URL = "https://api-v3.mbta.com"

DEFAULT_ORIGIN = "1 Beacon St, Boston, MA 02108"
DEFAULT_DESTINATION = "1 Kendall Sq, Cambridge, MA 02139"
DEFAULT_STATION = "place-harsq"
DEFAULT_ROUTE = "Red"

DEFAULT_CLIENT_IP_HEADERS = "CF-Connecting-IP,X-Forwarded-For,X-Real-IP"

VERSION = "1.0.0"


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def env_csv(name: str, default: str) -> List[str]:
    value = os.getenv(name, default)
    return [item.strip() for item in value.split(",") if item.strip()]


def env_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def utc_now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")


def now_ms(clock=time.time) -> int:
    return int(clock() * 1000)


@dataclass(frozen=True)
class Settings:
    google_api_key: Optional[str] = None
    cache_url: Optional[str] = None
    mbta_api_key: Optional[str] = None

    routes_api_url: str = ROUTES_API_URL
    mbta_api_url: str = MBTA_API_URL
    routes_timeout_sec: float = 15.0
    mbta_timeout_sec: float = 10.0

    rate_limit_max_requests: int = 60
    rate_limit_window_ms: int = 60000

    # Entries older than the freshness window are refetched even though the
    # store keeps them until the hard TTL.
    drive_cache_fresh_sec: int = 240
    drive_cache_ttl_sec: int = 300

    default_origin: str = DEFAULT_ORIGIN
    default_destination: str = DEFAULT_DESTINATION
    default_station: str = DEFAULT_STATION
    default_route: str = DEFAULT_ROUTE

    client_ip_headers: Tuple[str, ...] = tuple(DEFAULT_CLIENT_IP_HEADERS.split(","))

    app_host: str = "127.0.0.1"
    app_port: int = 8787


def load_settings() -> Settings:
    return Settings(
        google_api_key=env_str("GOOGLE_API_KEY"),
        cache_url=env_str("TRAVEL_TIME_CACHE_URL"),
        mbta_api_key=env_str("MBTA_API_KEY"),
        routes_api_url=os.getenv("ROUTES_API_URL", ROUTES_API_URL),
        mbta_api_url=os.getenv("MBTA_API_URL", MBTA_API_URL),
        routes_timeout_sec=env_float("ROUTES_TIMEOUT_SEC", 15.0),
        mbta_timeout_sec=env_float("MBTA_TIMEOUT_SEC", 10.0),
        rate_limit_max_requests=max(1, env_int("RATE_LIMIT_MAX_REQUESTS", 60)),
        rate_limit_window_ms=max(1000, env_int("RATE_LIMIT_WINDOW_MS", 60000)),
        drive_cache_fresh_sec=env_int("DRIVE_CACHE_FRESH_SEC", 240),
        drive_cache_ttl_sec=env_int("DRIVE_CACHE_TTL_SEC", 300),
        default_origin=os.getenv("DEFAULT_ORIGIN", DEFAULT_ORIGIN),
        default_destination=os.getenv("DEFAULT_DESTINATION", DEFAULT_DESTINATION),
        default_station=os.getenv("DEFAULT_STATION", DEFAULT_STATION),
        default_route=os.getenv("DEFAULT_ROUTE", DEFAULT_ROUTE),
        client_ip_headers=tuple(env_csv("CLIENT_IP_HEADERS", DEFAULT_CLIENT_IP_HEADERS)),
        app_host=os.getenv("APP_HOST", "127.0.0.1"),
        app_port=env_int("APP_PORT", 8787),
    )


def is_production_mode() -> bool:
    return os.getenv("APP_ENV", "").strip().lower() == "production"


def get_configured_worker_count() -> Optional[int]:
    for name in ("WEB_CONCURRENCY", "GUNICORN_WORKERS"):
        value = env_int(name, 0)
        if value > 0:
            return value
    return None


def check_production_config(settings: Settings) -> None:
    """Refuse to start a production deployment whose store is not shared.

    The in-memory store lives inside one worker process, so cache entries and
    rate-limit windows would silently diverge between workers.
    """
    if not is_production_mode():
        return
    workers = get_configured_worker_count()
    if workers is None:
        raise RuntimeError("Production mode requires WEB_CONCURRENCY or GUNICORN_WORKERS")
    cache_url = settings.cache_url or ""
    if workers > 1 and not cache_url.startswith(("redis://", "rediss://")):
        raise RuntimeError("Multi-worker requires Redis (set TRAVEL_TIME_CACHE_URL=redis://...)")
    log.info("Production mode with %d worker(s)", workers)
