import json

import pytest
import requests

from travel_time_proxy import create_app
from travel_time_proxy.settings import Settings
from travel_time_proxy.storage import MemoryStore


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


def route_payload(duration="754s", distance=5120):
    return {"routes": [{"duration": duration, "distanceMeters": distance}]}


def prediction(arrival, direction_id=0, status=None):
    return {
        "type": "prediction",
        "attributes": {
            "arrival_time": arrival,
            "departure_time": arrival,
            "direction_id": direction_id,
            "status": status,
        },
    }


def mbta_payload(count=3):
    return {
        "data": [
            prediction(f"2024-05-01T08:{10 + i * 4:02d}:00-04:00", direction_id=i % 2)
            for i in range(count)
        ]
    }


class FakeSession:
    """Stands in for requests.Session; routes calls by URL."""

    def __init__(self):
        self.calls = []
        self.routes_response = lambda body: FakeResponse(200, route_payload())
        self.mbta_response = lambda params: FakeResponse(200, mbta_payload())

    def request(self, method, url, headers=None, params=None, json=None, timeout=None):
        self.calls.append(
            {
                "method": method,
                "url": url,
                "headers": headers or {},
                "params": params,
                "json": json,
                "timeout": timeout,
            }
        )
        if "computeRoutes" in url:
            result = self.routes_response(json)
        else:
            result = self.mbta_response(params)
        if isinstance(result, Exception):
            raise result
        return result

    def route_calls(self):
        return [c for c in self.calls if "computeRoutes" in c["url"]]

    def mbta_calls(self):
        return [c for c in self.calls if "predictions" in c["url"]]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def settings():
    return Settings(google_api_key="test-google-key", cache_url="memory://")


@pytest.fixture
def make_client(session, store, clock, settings, monkeypatch):
    monkeypatch.delenv("APP_ENV", raising=False)

    def factory(settings=settings, store=store):
        app = create_app(settings=settings, store=store, session=session, clock=clock)
        return app.test_client()

    return factory


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def timeout_error():
    return requests.Timeout("read timed out")
