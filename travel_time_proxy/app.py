# Flask front end: CORS, rate limiting, configuration gate and routing.

import logging
import os
import time
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from flask import Flask, Response, current_app, g, jsonify, make_response, request
import requests
from werkzeug.exceptions import HTTPException, NotFound

from .errors import ConfigurationError, RateLimitExceeded, ServiceError
from .handlers import Services, handle_all, handle_drive_time, handle_health, handle_mbta
from .settings import Settings, check_production_config, load_settings, utc_now_iso
from .storage import KeyValueStore, store_from_url
from .upstream import MbtaClient, RoutesClient

log = logging.getLogger("travel_time_proxy")
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())

AVAILABLE_ENDPOINTS = ["/driving", "/mbta", "/all", "/health"]

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

EXTENSION_KEY = "travel_time_proxy"


def get_services() -> Services:
    return current_app.extensions[EXTENSION_KEY]


def get_client_id(headers: Mapping[str, str], header_names: Iterable[str]) -> str:
    for name in header_names:
        value = headers.get(name, "")
        if value:
            return value.split(",")[0].strip() or "unknown"
    return "unknown"


def processing_time_ms() -> int:
    started = g.get("started_at")
    if started is None:
        return 0
    return int((time.monotonic() - started) * 1000)


def json_response(payload: Dict[str, Any], status: int = 200) -> Response:
    resp = jsonify(payload)
    resp.status_code = status
    return resp


def error_response(exc: ServiceError) -> Response:
    return json_response(
        {
            "error": "Service Error",
            "code": exc.code,
            "message": exc.message,
            "timestamp": utc_now_iso(),
            "processingTime": processing_time_ms(),
        },
        exc.status,
    )


def build_services(
    settings: Settings,
    store: Optional[KeyValueStore],
    session: requests.Session,
    clock: Callable[[], float],
) -> Services:
    routes = None
    if settings.google_api_key:
        routes = RoutesClient(
            session,
            settings.google_api_key,
            settings.routes_api_url,
            timeout=settings.routes_timeout_sec,
        )
    mbta = MbtaClient(
        session,
        settings.mbta_api_url,
        api_key=settings.mbta_api_key,
        timeout=settings.mbta_timeout_sec,
    )
    return Services(settings=settings, store=store, routes=routes, mbta=mbta, clock=clock)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[KeyValueStore] = None,
    session: Optional[requests.Session] = None,
    clock: Optional[Callable[[], float]] = None,
) -> Flask:
    settings = settings or load_settings()
    check_production_config(settings)
    clock = clock or time.time
    if store is None:
        store = store_from_url(settings.cache_url, clock=clock)

    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = build_services(settings, store, session or requests.Session(), clock)

    @app.before_request
    def gate_request() -> Optional[Response]:
        g.started_at = time.monotonic()

        if request.method == "OPTIONS":
            return make_response("", 204)

        if request.method != "GET":
            return json_response(
                {
                    "error": "Method Not Allowed",
                    "message": "Only GET requests are supported",
                },
                405,
            )

        services = get_services()
        client_id = get_client_id(request.headers, services.settings.client_ip_headers)

        if services.store is not None:
            allowed = services.limiter.check_and_record(
                client_id,
                services.settings.rate_limit_max_requests,
                services.settings.rate_limit_window_ms,
            )
            if not allowed:
                raise RateLimitExceeded()

        if services.routes is None:
            raise ConfigurationError("Service configuration error - Google API key missing")
        if services.store is None:
            raise ConfigurationError("Service configuration error - cache unavailable")

        log.info("Processing %s %s from %s", request.method, request.path, client_id)
        return None

    @app.after_request
    def add_common_headers(resp: Response) -> Response:
        for name, value in CORS_HEADERS.items():
            resp.headers[name] = value
        resp.headers["X-Processing-Time"] = str(processing_time_ms())
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        return resp

    @app.errorhandler(ServiceError)
    def handle_service_error(exc: ServiceError) -> Response:
        log.warning(
            "Request to %s failed (%s): %s", request.path, exc.status, exc.message
        )
        return error_response(exc)

    @app.errorhandler(NotFound)
    def handle_not_found(exc: NotFound) -> Response:
        return json_response(
            {
                "error": "Endpoint Not Found",
                "message": f"The endpoint {request.path} does not exist",
                "availableEndpoints": AVAILABLE_ENDPOINTS,
            },
            404,
        )

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception) -> Response:
        if isinstance(exc, HTTPException):
            return exc.get_response()
        log.exception("Unhandled error for %s (%d ms)", request.url, processing_time_ms())
        return json_response(
            {
                "error": "Service Error",
                "code": "internal_error",
                "message": "Unexpected error",
                "timestamp": utc_now_iso(),
                "processingTime": processing_time_ms(),
            },
            500,
        )

    @app.route("/driving", methods=["GET"])
    def driving() -> Response:
        return json_response(handle_drive_time(get_services(), request.args.to_dict()))

    @app.route("/mbta", methods=["GET"])
    def mbta() -> Response:
        return json_response(handle_mbta(get_services(), request.args.to_dict()))

    @app.route("/all", methods=["GET"])
    def all_endpoints() -> Response:
        return json_response(handle_all(get_services(), request.args.to_dict()))

    @app.route("/health", methods=["GET"])
    def health() -> Response:
        return json_response(handle_health(get_services()))

    @app.teardown_request
    def log_completion(exc: Optional[BaseException]) -> None:
        if "started_at" in g:
            log.info("Request completed in %dms for %s", processing_time_ms(), request.path)

    return app


def main() -> None:
    settings = load_settings()
    app = create_app(settings)
    app.run(host=settings.app_host, port=settings.app_port)


if __name__ == "__main__":
    main()
