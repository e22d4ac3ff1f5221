# Clients for the Google Routes API and the MBTA v3 predictions API.

from dataclasses import dataclass
import datetime
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import requests

from .errors import (
    InvalidUpstreamResponseError,
    UpstreamAuthError,
    UpstreamBadRequestError,
    UpstreamError,
    UpstreamRateLimitError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)

log = logging.getLogger("travel_time_proxy.upstream")

JsonDict = Dict[str, Any]

DRIVE = "DRIVE"
WALK = "WALK"
TRAVEL_MODES = (DRIVE, WALK)

ROUTES_FIELD_MASK = "routes.duration,routes.distanceMeters"
MAX_PREDICTIONS = 6
MAX_DURATION_SEC = 7200

DIRECTIONS = {0: "Southbound", 1: "Northbound"}

_DURATION = re.compile(r"([0-9]+)s")


@dataclass(frozen=True)
class RouteResult:
    duration: str
    distance_meters: int

    @property
    def duration_seconds(self) -> Optional[int]:
        return parse_duration_seconds(self.duration)

    def to_json(self) -> JsonDict:
        return {"duration": self.duration, "distanceMeters": self.distance_meters}


@dataclass(frozen=True)
class TransitPrediction:
    arrival_time: Optional[str]
    departure_time: Optional[str]
    direction: str
    status: Optional[str]

    def to_json(self) -> JsonDict:
        return {
            "arrival": self.arrival_time,
            "departure": self.departure_time,
            "direction": self.direction,
            "status": self.status,
        }


def parse_duration_seconds(duration: Any) -> Optional[int]:
    """Parse a Routes API duration such as ``"754s"``.

    Returns None for malformed values and for values outside 0..7200.
    """
    if not isinstance(duration, str):
        return None
    match = _DURATION.fullmatch(duration)
    if match is None:
        return None
    seconds = int(match.group(1))
    if seconds > MAX_DURATION_SEC:
        return None
    return seconds


def classify_status(status: int, service_name: str) -> UpstreamError:
    if status == 400:
        return UpstreamBadRequestError(f"{service_name}: invalid request parameters", status)
    if status == 403:
        return UpstreamAuthError(f"{service_name}: API key invalid or quota exceeded", status)
    if status == 429:
        return UpstreamRateLimitError(f"{service_name}: rate limit exceeded", status)
    if 500 <= status <= 599:
        return UpstreamUnavailableError(f"{service_name}: service temporarily unavailable", status)
    return UpstreamError(f"{service_name}: unexpected error ({status})", status)


def request_json(
    session: requests.Session,
    method: str,
    url: str,
    *,
    timeout: float,
    service_name: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, str]] = None,
    json_body: Optional[JsonDict] = None,
) -> Any:
    """Issue one request without retries and return the decoded JSON body."""
    try:
        resp = session.request(
            method,
            url,
            headers=headers,
            params=params,
            json=json_body,
            timeout=timeout,
        )
    except requests.Timeout as exc:
        raise UpstreamTimeoutError(
            f"{service_name} timeout - service is taking too long to respond"
        ) from exc
    except requests.RequestException as exc:
        raise UpstreamUnavailableError(f"{service_name} request failed") from exc

    log.debug("%s response status: %s", service_name, resp.status_code)

    if not 200 <= resp.status_code < 300:
        log.error("%s error %s: %s", service_name, resp.status_code, resp.text[:500])
        raise classify_status(resp.status_code, service_name)

    try:
        return resp.json()
    except ValueError as exc:
        raise InvalidUpstreamResponseError(f"{service_name}: invalid JSON") from exc


class RoutesClient:
    service_name = "Google Routes"

    def __init__(self, session: requests.Session, api_key: str, url: str, timeout: float = 15.0) -> None:
        self.session = session
        self.api_key = api_key
        self.url = url
        self.timeout = timeout

    def build_body(self, origin: JsonDict, destination: JsonDict, mode: str) -> JsonDict:
        body: JsonDict = {
            "origin": origin,
            "destination": destination,
            "travelMode": mode,
            "computeAlternativeRoutes": False,
            "routeModifiers": {
                "avoidTolls": False,
                "avoidHighways": False,
                "avoidFerries": False,
            },
            "languageCode": "en-US",
            "units": "IMPERIAL",
        }
        if mode == DRIVE:
            body["routingPreference"] = "TRAFFIC_AWARE"
        return body

    def fetch_route(self, origin: JsonDict, destination: JsonDict, mode: str = DRIVE) -> RouteResult:
        if not origin or not destination:
            raise ValueError("Origin and destination are required")
        if mode not in TRAVEL_MODES:
            raise ValueError(f"Invalid travel mode: {mode}")

        data = request_json(
            self.session,
            "POST",
            self.url,
            timeout=self.timeout,
            service_name=self.service_name,
            headers={
                "Content-Type": "application/json",
                "X-Goog-Api-Key": self.api_key,
                "X-Goog-FieldMask": ROUTES_FIELD_MASK,
            },
            json_body=self.build_body(origin, destination, mode),
        )

        routes = data.get("routes") if isinstance(data, dict) else None
        if not isinstance(routes, list) or not routes or not isinstance(routes[0], dict):
            log.error("Unexpected %s response: %s", self.service_name, data)
            raise InvalidUpstreamResponseError("No routes found for the given addresses")

        route = routes[0]
        duration = route.get("duration")
        distance = route.get("distanceMeters")
        if not isinstance(duration, str) or not duration or not isinstance(distance, int) or not distance:
            raise InvalidUpstreamResponseError("Incomplete route data received from Google API")
        return RouteResult(duration=duration, distance_meters=distance)


def _arrival_sort_key(prediction: TransitPrediction) -> Tuple[int, datetime.datetime]:
    value = prediction.arrival_time
    if value:
        try:
            parsed = datetime.datetime.fromisoformat(value)
        except ValueError:
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=datetime.timezone.utc)
            return 0, parsed
    return 1, datetime.datetime.max.replace(tzinfo=datetime.timezone.utc)


class MbtaClient:
    service_name = "MBTA"

    def __init__(
        self,
        session: requests.Session,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
    ) -> None:
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def fetch_predictions(self, station_id: str, route_id: str) -> List[TransitPrediction]:
        headers = {"accept": "application/vnd.api+json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key

        data = request_json(
            self.session,
            "GET",
            f"{self.base_url}/predictions",
            timeout=self.timeout,
            service_name=self.service_name,
            headers=headers,
            params={
                "filter[stop]": station_id,
                "filter[route]": route_id,
                "sort": "arrival_time",
                "page[limit]": str(MAX_PREDICTIONS),
            },
        )

        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise InvalidUpstreamResponseError("Invalid response format from MBTA API")

        predictions: List[TransitPrediction] = []
        for item in items[:MAX_PREDICTIONS]:
            attrs = item.get("attributes") if isinstance(item, dict) else None
            if not isinstance(attrs, dict):
                continue
            predictions.append(
                TransitPrediction(
                    arrival_time=attrs.get("arrival_time"),
                    departure_time=attrs.get("departure_time"),
                    direction=DIRECTIONS.get(attrs.get("direction_id"), "Northbound"),
                    status=attrs.get("status"),
                )
            )
        # Already sorted by the API; re-sort so null arrivals sort last.
        predictions.sort(key=_arrival_sort_key)
        return predictions
