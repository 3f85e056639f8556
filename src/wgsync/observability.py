from __future__ import annotations

import logging
import time
import uuid

from fastapi import FastAPI, Request
from prometheus_client import Counter, Gauge, Histogram

_REQUESTS = Counter(
    "wgsync_http_requests_total",
    "HTTP requests served by the peer directory API",
    labelnames=["component", "method", "route", "status"],
)
_REQUEST_SECONDS = Histogram(
    "wgsync_http_request_duration_seconds",
    "HTTP request duration in seconds",
    labelnames=["component", "method", "route"],
    # Lifecycle calls wait on `wg` subprocesses; the long tail is the command timeout.
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 15),
)
_IN_FLIGHT = Gauge(
    "wgsync_http_requests_in_flight",
    "HTTP requests currently being handled",
    labelnames=["component"],
)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    # Every request is already logged once by the middleware below.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _route_label(request: Request) -> str:
    # `/peers/{name}` rather than the concrete path: peer names stay out of label sets.
    path = getattr(request.scope.get("route"), "path", None)
    if isinstance(path, str) and path:
        return path
    return "unmatched"


def install_http_observability(app: FastAPI, *, component: str) -> None:
    logger = logging.getLogger(f"wgsync.{component}.http")
    in_flight = _IN_FLIGHT.labels(component)

    def _observe(request: Request, status_code: int, started: float) -> tuple[str, float]:
        elapsed = max(0.0, time.perf_counter() - started)
        route = _route_label(request)
        _REQUESTS.labels(component, request.method, route, str(status_code)).inc()
        _REQUEST_SECONDS.labels(component, request.method, route).observe(elapsed)
        return route, elapsed * 1000

    @app.middleware("http")
    async def _observe_request(request: Request, call_next):  # noqa: ANN001, ANN202
        request_id = (request.headers.get("x-request-id") or "").strip() or uuid.uuid4().hex[:16]
        started = time.perf_counter()
        in_flight.inc()
        try:
            response = await call_next(request)
        except Exception:
            route, duration_ms = _observe(request, 500, started)
            logger.exception(
                "request_failed method=%s route=%s duration_ms=%.2f request_id=%s",
                request.method,
                route,
                duration_ms,
                request_id,
            )
            raise
        finally:
            in_flight.dec()

        route, duration_ms = _observe(request, response.status_code, started)
        response.headers.setdefault("x-request-id", request_id)
        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "request method=%s route=%s status=%s duration_ms=%.2f request_id=%s",
            request.method,
            route,
            response.status_code,
            duration_ms,
            request_id,
        )
        return response
