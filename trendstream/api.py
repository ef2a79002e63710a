"""Public HTTP handlers, JSON responses, routing and request metrics."""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Protocol

from werkzeug.exceptions import HTTPException, MethodNotAllowed, NotFound
from werkzeug.routing import Map, Rule
from werkzeug.wrappers import Request, Response
from werkzeug.wsgi import ClosingIterator

from .snapshot import DEFAULT_LIMIT, Snapshot, validate_limit

JSON_CONTENT_TYPE = "application/json; charset=utf-8"

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}

_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

Handler = Callable[..., Response]
WSGIApp = Callable[[dict, Callable[..., Any]], Iterable[bytes]]


class _SnapshotReader(Protocol):
    def current(self) -> Snapshot: ...


class _HTTPMetrics(Protocol):
    def observe_http_request(
        self, server: str, method: str, path: str, status_code: int, duration: timedelta
    ) -> None: ...


def write_json(status_code: int, payload: Any) -> Response:
    """A JSON response with the payload encoded on one line."""
    text = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    for char, escaped in _HTML_ESCAPES.items():
        text = text.replace(char, escaped)
    return Response(
        (text + "\n").encode("utf-8"),
        status=status_code,
        content_type=JSON_CONTENT_TYPE,
    )


def write_error(status_code: int, message: str) -> Response:
    """A JSON error response of the form ``{"error": message}``."""
    return write_json(status_code, {"error": message})


def _plain_text(status_code: int, message: str) -> Response:
    response = Response(
        message + "\n", status=status_code, content_type="text/plain; charset=utf-8"
    )
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def _rfc3339(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class Router:
    """Dispatches requests to handlers by method and path."""

    def __init__(self) -> None:
        self._map = Map()
        self._handlers: dict[str, Handler] = {}

    def add(self, method: str, rule: str, handler: Handler) -> None:
        """Route ``method`` requests for ``rule`` to ``handler``.

        Path variables are written as ``<name>`` and passed as keyword arguments.
        """
        key = f"route-{len(self._handlers)}"
        self._handlers[key] = handler
        self._map.add(Rule(rule, methods=[method.upper()], endpoint=key))

    def handle(self, request: Request) -> Response:
        """The response for ``request``."""
        adapter = self._map.bind_to_environ(request.environ)
        try:
            key, arguments = adapter.match()
        except NotFound:
            return _plain_text(404, "404 page not found")
        except MethodNotAllowed as exc:
            response = _plain_text(405, "Method Not Allowed")
            response.headers["Allow"] = ", ".join(sorted(exc.valid_methods or ()))
            return response
        except HTTPException as exc:
            return exc.get_response(request.environ)
        return self._handlers[key](request, **arguments)

    def wsgi_app(self, environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
        """WSGI entry point."""
        return self.handle(Request(environ))(environ, start_response)

    __call__ = wsgi_app


@dataclass
class HealthHandler:
    """Liveness and readiness endpoints."""

    service_name: str
    started_at: datetime

    def register(self, router: Router) -> None:
        router.add("GET", "/healthz", self.healthz)
        router.add("GET", "/readyz", self.readyz)

    def healthz(self, request: Request) -> Response:
        return write_json(200, self._body("ok"))

    def readyz(self, request: Request) -> Response:
        return write_json(200, self._body("ready"))

    def _body(self, status: str) -> dict[str, Any]:
        return {
            "status": status,
            "service": self.service_name,
            "started_at": _rfc3339(self.started_at),
            "generated_at": _rfc3339(datetime.now(timezone.utc)),
        }


class TrendsHandler:
    """Serves the current trends snapshot."""

    def __init__(self, snapshots: _SnapshotReader) -> None:
        self._snapshots = snapshots

    def register(self, router: Router) -> None:
        router.add("GET", "/v1/trends", self.get_trends)

    def get_trends(self, request: Request) -> Response:
        try:
            limit = parse_limit(request)
        except ValueError as exc:
            return write_error(400, str(exc))

        current = self._snapshots.current()

        payload = current.precomputed_json(limit)
        if payload is not None:
            return Response(payload, status=200, content_type=JSON_CONTENT_TYPE)

        try:
            response = current.response(limit)
        except ValueError as exc:
            return write_error(400, str(exc))

        return write_json(200, response.to_mapping())


def parse_limit(request: Request) -> int:
    """The ``limit`` query parameter, or the default; raises ValueError if invalid."""
    raw = request.args.get("limit", "")
    if raw == "":
        return DEFAULT_LIMIT

    if not _INTEGER.fullmatch(raw):
        raise ValueError("limit must be an integer")
    limit = int(raw)
    if not _INT64_MIN <= limit <= _INT64_MAX:
        raise ValueError("limit must be an integer")

    validate_limit(limit)
    return limit


def route_pattern(path: str) -> str:
    """The route label used for metrics, keeping label cardinality bounded."""
    if path in ("/healthz", "/readyz", "/v1/trends", "/admin/events", "/admin/stop-list", "/metrics"):
        return path
    if path.startswith("/admin/stop-list/"):
        return "/admin/stop-list/{term}"
    if path.startswith("/debug/pprof"):
        return "/debug/pprof/*"
    return "unknown"


def metrics_middleware(
    server_name: str, observer: _HTTPMetrics | None
) -> Callable[[WSGIApp], WSGIApp]:
    """Middleware that reports every request's route, status and duration."""

    def wrap(app: WSGIApp) -> WSGIApp:
        if observer is None:
            return app

        def measured(environ: dict, start_response: Callable[..., Any]) -> Iterable[bytes]:
            started = time.perf_counter()
            status_code = 200

            def recording_start_response(status: str, headers: list, exc_info: Any = None) -> Any:
                nonlocal status_code
                status_code = int(status.split(" ", 1)[0])
                return start_response(status, headers, exc_info)

            def observe() -> None:
                observer.observe_http_request(
                    server_name,
                    environ.get("REQUEST_METHOD", ""),
                    route_pattern(environ.get("PATH_INFO", "")),
                    status_code,
                    timedelta(seconds=time.perf_counter() - started),
                )

            return ClosingIterator(app(environ, recording_start_response), observe)

        return measured

    return wrap