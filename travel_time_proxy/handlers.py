# Endpoint logic, independent of Flask so it can run on worker threads.

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
import logging
import math
import time
from typing import Any, Callable, Dict, Mapping, Optional

from .cache import DriveTimeCache, drive_time_cache_key
from .errors import ConfigurationError, ServiceError, UpstreamError, ValidationError
from .rate_limit import RateLimiter
from .settings import VERSION, Settings, now_ms
from .stations import RED_LINE_STATIONS, station_name
from .storage import KeyValueStore
from .upstream import DRIVE, WALK, MbtaClient, RoutesClient
from .validation import validate_address, validate_station_id

log = logging.getLogger("travel_time_proxy.handlers")

JsonDict = Dict[str, Any]


@dataclass
class Services:
    """Per-app collaborators. ``store`` and ``routes`` stay None while the
    matching binding is missing so requests can answer 503."""

    settings: Settings
    store: Optional[KeyValueStore]
    routes: Optional[RoutesClient]
    mbta: MbtaClient
    clock: Callable[[], float] = time.time

    def require_store(self) -> KeyValueStore:
        if self.store is None:
            raise ConfigurationError("Service configuration error - cache unavailable")
        return self.store

    def require_routes(self) -> RoutesClient:
        if self.routes is None:
            raise ConfigurationError("Service configuration error - Google API key missing")
        return self.routes

    @property
    def cache(self) -> DriveTimeCache:
        return DriveTimeCache(
            self.require_store(),
            fresh_sec=self.settings.drive_cache_fresh_sec,
            ttl_sec=self.settings.drive_cache_ttl_sec,
        )

    @property
    def limiter(self) -> RateLimiter:
        return RateLimiter(self.require_store(), clock=self.clock)

    def now_ms(self) -> int:
        return now_ms(self.clock)


def resolve_drive_locations(services: Services, args: Mapping[str, str]):
    origin_param = args.get("origin")
    destination_param = args.get("destination")
    try:
        if origin_param:
            origin = {"address": validate_address(origin_param)}
        else:
            origin = {"address": services.settings.default_origin}
        if destination_param:
            destination = {"address": validate_address(destination_param)}
        else:
            destination = {"address": services.settings.default_destination}
    except ValidationError as exc:
        raise ValidationError(f"Address validation failed: {exc.message}") from exc
    return origin, destination


def handle_drive_time(services: Services, args: Mapping[str, str]) -> JsonDict:
    origin, destination = resolve_drive_locations(services, args)
    routes = services.require_routes()
    cache = services.cache
    cache_key = drive_time_cache_key(origin, destination)

    try:
        cached = cache.get_fresh(cache_key, services.now_ms())
    except ServiceError as exc:
        log.warning("Drive-time cache read failed: %s", exc)
        cached = None
    if cached is not None:
        return cached

    with ThreadPoolExecutor(max_workers=2) as pool:
        there = pool.submit(routes.fetch_route, origin, destination, DRIVE)
        back = pool.submit(routes.fetch_route, destination, origin, DRIVE)
        route_to = there.result()
        route_from = back.result()

    payload: JsonDict = {
        "to": route_to.to_json(),
        "from": route_from.to_json(),
        "timestamp": services.now_ms(),
        "cached": False,
    }

    try:
        cache.put(cache_key, payload)
    except ServiceError as exc:
        log.warning("Drive-time cache write failed: %s", exc)
    return payload


def compute_walking_time(services: Services, station_id: str, destination: str) -> Optional[JsonDict]:
    station = RED_LINE_STATIONS.get(station_id)
    if station is None or services.routes is None:
        return None
    try:
        route = services.routes.fetch_route(station.as_location(), {"address": destination}, WALK)
    except UpstreamError as exc:
        log.warning("Failed to calculate walking time: %s", exc)
        return None

    seconds = route.duration_seconds
    if seconds is None:
        log.warning("Invalid walking time received: %s", route.duration)
        return None
    return {
        "seconds": seconds,
        "minutes": math.ceil(seconds / 60),
        "distance": route.distance_meters,
    }


def handle_mbta(services: Services, args: Mapping[str, str]) -> JsonDict:
    station_param = args.get("station")
    destination_param = args.get("destination")
    try:
        if station_param:
            station_id = validate_station_id(station_param)
        else:
            station_id = services.settings.default_station
        destination = validate_address(destination_param) if destination_param else None
    except ValidationError as exc:
        raise ValidationError(f"Input validation failed: {exc.message}") from exc

    predictions = services.mbta.fetch_predictions(station_id, services.settings.default_route)

    walking_time = None
    if destination:
        walking_time = compute_walking_time(services, station_id, destination)

    return {
        "predictions": [p.to_json() for p in predictions],
        "walkingTime": walking_time,
        "stationName": station_name(station_id),
        "timestamp": services.now_ms(),
        "cached": False,
    }


def _branch_result(services: Services, future: "Future[JsonDict]", name: str) -> JsonDict:
    try:
        return future.result()
    except ServiceError as exc:
        log.warning("%s branch failed: %s", name, exc)
        return {"error": exc.message, "timestamp": services.now_ms()}
    except Exception:
        log.exception("%s branch failed unexpectedly", name)
        return {"error": "Unexpected error", "timestamp": services.now_ms()}


def handle_all(services: Services, args: Mapping[str, str]) -> JsonDict:
    with ThreadPoolExecutor(max_workers=2) as pool:
        driving = pool.submit(handle_drive_time, services, args)
        mbta = pool.submit(handle_mbta, services, args)
        return {
            "driving": _branch_result(services, driving, "driving"),
            "mbta": _branch_result(services, mbta, "mbta"),
            "timestamp": services.now_ms(),
        }


def handle_health(services: Services) -> JsonDict:
    return {"status": "healthy", "timestamp": services.now_ms(), "version": VERSION}
