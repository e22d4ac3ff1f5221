import re

from conftest import FakeResponse, mbta_payload, route_payload
from travel_time_proxy.app import get_client_id
from travel_time_proxy.settings import Settings

DRIVING_QUERY = {
    "origin": "100 Main St Boston MA",
    "destination": "200 Broadway Cambridge MA",
}


def directional_routes(body):
    if body["origin"] == {"address": "100 Main St Boston MA"}:
        return FakeResponse(200, route_payload("754s", 5120))
    return FakeResponse(200, route_payload("801s", 5300))


def assert_error_envelope(resp, status):
    assert resp.status_code == status
    data = resp.get_json()
    assert data["error"] == "Service Error"
    assert data["message"]
    assert data["timestamp"].endswith("Z")
    assert isinstance(data["processingTime"], int)
    return data


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["status"] == "healthy"
    assert data["version"] == "1.0.0"
    assert isinstance(data["timestamp"], int)


def test_cors_and_timing_headers_on_every_response(client, session):
    session.routes_response = lambda body: FakeResponse(503, None, text="")
    for path in ("/health", "/driving", "/nope"):
        resp = client.get(path)
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert "OPTIONS" in resp.headers["Access-Control-Allow-Methods"]
        assert resp.headers["Access-Control-Allow-Headers"] == "Content-Type"
        assert int(resp.headers["X-Processing-Time"]) >= 0


def test_preflight_short_circuits(client, session):
    resp = client.options("/driving")
    assert resp.status_code == 204
    assert resp.get_data() == b""
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    assert session.calls == []


def test_non_get_rejected(client):
    for method in (client.post, client.put, client.delete):
        resp = method("/driving")
        assert resp.status_code == 405
        assert resp.get_json()["error"] == "Method Not Allowed"


def test_unknown_path(client):
    resp = client.get("/trains")
    assert resp.status_code == 404
    data = resp.get_json()
    assert data["error"] == "Endpoint Not Found"
    assert data["availableEndpoints"] == ["/driving", "/mbta", "/all", "/health"]


def test_missing_api_key_is_503(make_client):
    client = make_client(settings=Settings(google_api_key=None, cache_url="memory://"))
    data = assert_error_envelope(client.get("/driving"), 503)
    assert "Google API key" in data["message"]
    assert data["code"] == "configuration_error"


def test_missing_cache_binding_is_503(make_client):
    client = make_client(settings=Settings(google_api_key="k", cache_url=None), store=None)
    data = assert_error_envelope(client.get("/health"), 503)
    assert "cache unavailable" in data["message"]


def test_driving_example(client, session):
    session.routes_response = directional_routes
    resp = client.get("/driving", query_string=DRIVING_QUERY)

    assert resp.status_code == 200
    data = resp.get_json()
    for leg in ("to", "from"):
        assert re.match(r"^\d+s$", data[leg]["duration"])
        assert data[leg]["distanceMeters"] > 0
    assert data["to"]["duration"] == "754s"
    assert data["from"]["duration"] == "801s"
    assert data["cached"] is False
    assert "cacheTTL" not in data

    bodies = [c["json"] for c in session.route_calls()]
    assert len(bodies) == 2
    directions = {(b["origin"]["address"], b["destination"]["address"]) for b in bodies}
    assert directions == {
        ("100 Main St Boston MA", "200 Broadway Cambridge MA"),
        ("200 Broadway Cambridge MA", "100 Main St Boston MA"),
    }


def test_driving_defaults_when_no_query(client, session):
    assert client.get("/driving").status_code == 200
    addresses = {c["json"]["origin"]["address"] for c in session.route_calls()}
    settings = Settings()
    assert addresses == {settings.default_origin, settings.default_destination}


def test_driving_cached_within_freshness_window(client, session, clock):
    first = client.get("/driving", query_string=DRIVING_QUERY).get_json()
    clock.advance(100)
    second = client.get("/driving", query_string=DRIVING_QUERY).get_json()

    assert len(session.route_calls()) == 2
    assert second["cached"] is True
    assert second["cacheTTL"] == 140
    for key in ("to", "from", "timestamp"):
        assert second[key] == first[key]


def test_driving_refetches_after_freshness_window(client, session, clock):
    client.get("/driving", query_string=DRIVING_QUERY)
    clock.advance(250)
    data = client.get("/driving", query_string=DRIVING_QUERY).get_json()
    assert data["cached"] is False
    assert len(session.route_calls()) == 4


def test_driving_refetches_after_hard_expiry(client, session, clock, store):
    client.get("/driving", query_string=DRIVING_QUERY)
    clock.advance(301)
    data = client.get("/driving", query_string=DRIVING_QUERY).get_json()
    assert data["cached"] is False
    assert data["timestamp"] == int(clock() * 1000)
    assert len(session.route_calls()) == 4


def test_driving_invalid_address(client, session):
    data = assert_error_envelope(client.get("/driving?origin=%3Cscript%3Ealert(1)"), 400)
    assert data["message"].startswith("Address validation failed")
    assert session.calls == []


def test_driving_upstream_failure_is_500_without_secrets(client, session):
    session.routes_response = lambda body: FakeResponse(403, None, text="key test-google-key rejected")
    resp = client.get("/driving", query_string=DRIVING_QUERY)
    data = assert_error_envelope(resp, 500)
    assert data["code"] == "upstream_auth"
    assert "test-google-key" not in resp.get_data(as_text=True)


def test_driving_timeout_is_classified(client, session, timeout_error):
    session.routes_response = lambda body: timeout_error
    data = assert_error_envelope(client.get("/driving", query_string=DRIVING_QUERY), 500)
    assert data["code"] == "upstream_timeout"


def test_mbta_example(client, session):
    session.routes_response = lambda body: FakeResponse(200, route_payload("421s", 540))
    resp = client.get(
        "/mbta?station=place-harsq&destination=77%20Massachusetts%20Ave%20Cambridge%20MA"
    )

    assert resp.status_code == 200
    data = resp.get_json()
    assert data["stationName"] == "Harvard"
    assert data["walkingTime"] == {"seconds": 421, "minutes": 8, "distance": 540}
    assert data["cached"] is False
    arrivals = [p["arrival"] for p in data["predictions"]]
    assert 0 < len(arrivals) <= 6
    assert arrivals == sorted(arrivals)
    assert {p["direction"] for p in data["predictions"]} <= {"Southbound", "Northbound"}

    (walk,) = session.route_calls()
    assert walk["json"]["travelMode"] == "WALK"
    assert walk["json"]["origin"]["location"]["latLng"]["latitude"] == 42.3734
    assert session.mbta_calls()[0]["params"]["filter[stop]"] == "place-harsq"


def test_mbta_without_destination_has_no_walking_time(client, session):
    data = client.get("/mbta?station=place-davis").get_json()
    assert data["walkingTime"] is None
    assert data["stationName"] == "Davis"
    assert session.route_calls() == []


def test_mbta_defaults_to_configured_station(client, session):
    data = client.get("/mbta").get_json()
    assert data["stationName"] == "Harvard"
    assert session.mbta_calls()[0]["params"]["filter[route]"] == "Red"


def test_mbta_walking_failure_is_not_fatal(client, session):
    session.routes_response = lambda body: FakeResponse(500, None, text="")
    resp = client.get("/mbta?station=place-portr&destination=10%20Elm%20St%2C%20Somerville")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["walkingTime"] is None
    assert len(data["predictions"]) == 3


def test_mbta_out_of_range_walking_time_is_dropped(client, session):
    session.routes_response = lambda body: FakeResponse(200, route_payload("9000s", 20000))
    data = client.get("/mbta?destination=10%20Elm%20St%2C%20Somerville").get_json()
    assert data["walkingTime"] is None


def test_mbta_invalid_station(client, session):
    data = assert_error_envelope(client.get("/mbta?station=place-nowhere"), 400)
    assert data["message"] == "Input validation failed: Invalid MBTA station ID"
    assert session.calls == []


def test_mbta_upstream_failure(client, session):
    session.mbta_response = lambda params: FakeResponse(200, {"data": "nope"})
    data = assert_error_envelope(client.get("/mbta"), 500)
    assert data["code"] == "invalid_upstream_response"


def test_all_combines_both(client, session):
    session.routes_response = directional_routes
    resp = client.get("/all", query_string={**DRIVING_QUERY, "station": "place-knncl"})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["driving"]["to"]["duration"] == "754s"
    assert data["mbta"]["stationName"] == "Kendall/MIT"
    assert data["mbta"]["walkingTime"]["minutes"] >= 1
    assert isinstance(data["timestamp"], int)


def test_all_partial_failure_keeps_driving(client, session):
    session.mbta_response = lambda params: FakeResponse(503, None, text="")
    resp = client.get("/all", query_string=DRIVING_QUERY)

    assert resp.status_code == 200
    data = resp.get_json()
    assert data["driving"]["to"]["distanceMeters"] > 0
    assert set(data["mbta"]) == {"error", "timestamp"}
    assert "unavailable" in data["mbta"]["error"]


def test_all_partial_failure_keeps_mbta(client, session):
    session.routes_response = lambda body: FakeResponse(429, None, text="")
    data = client.get("/all?station=place-jfk").get_json()
    assert set(data["driving"]) == {"error", "timestamp"}
    assert data["mbta"]["stationName"] == "JFK/UMass"
    assert data["mbta"]["walkingTime"] is None


def test_all_reports_validation_per_branch(client):
    resp = client.get("/all?station=bogus")
    assert resp.status_code == 200
    data = resp.get_json()
    assert "to" in data["driving"]
    assert data["mbta"]["error"].startswith("Input validation failed")


def test_rate_limit(make_client):
    client = make_client(
        settings=Settings(google_api_key="k", cache_url="memory://", rate_limit_max_requests=2)
    )
    headers = {"CF-Connecting-IP": "203.0.113.7"}
    assert client.get("/health", headers=headers).status_code == 200
    assert client.get("/health", headers=headers).status_code == 200

    data = assert_error_envelope(client.get("/health", headers=headers), 429)
    assert data["code"] == "rate_limited"

    other = {"X-Forwarded-For": "198.51.100.1, 10.0.0.1"}
    assert client.get("/health", headers=other).status_code == 200


def test_rate_limit_window_slides(make_client, clock):
    client = make_client(
        settings=Settings(
            google_api_key="k",
            cache_url="memory://",
            rate_limit_max_requests=1,
            rate_limit_window_ms=60000,
        )
    )
    assert client.get("/health").status_code == 200
    assert client.get("/health").status_code == 429
    clock.advance(61)
    assert client.get("/health").status_code == 200


def test_client_id_header_order(store, client):
    client.get(
        "/health",
        headers={"CF-Connecting-IP": "203.0.113.9", "X-Forwarded-For": "198.51.100.2"},
    )
    client.get("/health")
    assert store.get_json("ratelimit:203.0.113.9") is not None
    assert store.get_json("ratelimit:198.51.100.2") is None
    assert store.get_json("ratelimit:unknown") is not None


class FlakyStore:
    def get_json(self, key):
        raise ConnectionError("store down")

    def put_json(self, key, value, ttl_seconds):
        raise ConnectionError("store down")


def test_limiter_storage_failure_fails_open(make_client):
    client = make_client(store=FlakyStore())
    assert client.get("/health").status_code == 200


def test_mbta_malformed_walking_duration_is_dropped(client, session):
    session.routes_response = lambda body: FakeResponse(200, route_payload("²s", 540))
    resp = client.get(
        "/mbta?station=place-harsq&destination=77%20Massachusetts%20Ave%20Cambridge%20MA"
    )
    assert resp.status_code == 200
    assert resp.get_json()["walkingTime"] is None


def test_unsupported_cache_url_answers_503(make_client):
    client = make_client(
        settings=Settings(google_api_key="k", cache_url="memcached://localhost"), store=None
    )
    data = assert_error_envelope(client.get("/health"), 503)
    assert data["code"] == "configuration_error"
    assert "cache unavailable" in data["message"]


def test_get_client_id_from_plain_mapping():
    headers = {"X-Real-IP": "192.0.2.5", "X-Forwarded-For": " , 10.0.0.1"}
    assert get_client_id(headers, ("CF-Connecting-IP", "X-Real-IP")) == "192.0.2.5"
    assert get_client_id(headers, ["X-Forwarded-For"]) == "unknown"
    assert get_client_id({}, ()) == "unknown"
