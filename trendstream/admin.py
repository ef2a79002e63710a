"""Admin HTTP handlers for event injection and stop-list management."""

from __future__ import annotations

import json
import re
from typing import Any, Protocol

from werkzeug.wrappers import Request, Response

from .api import Router, write_error, write_json
from .auth import TokenAuth
from .contract import SearchEvent
from .ingest import Reason, Result
from .stoplist import EmptyTermError

MAX_ADMIN_EVENT_BODY_BYTES = 64 * 1024

_JSON_WHITESPACE = re.compile(r"[ \t\n\r]*")


def _reject_constant(name: str) -> None:
    raise ValueError(f"invalid JSON constant {name}")


_DECODER = json.JSONDecoder(parse_constant=_reject_constant)


class _EventProcessor(Protocol):
    def process_http(self, request: Any, event: SearchEvent) -> Result: ...


class _StopListService(Protocol):
    def terms(self) -> list[str]: ...

    def add(self, raw_term: str) -> tuple[str, bool]: ...

    def remove(self, raw_term: str) -> tuple[str, bool]: ...


def _decode_first_value(data: bytes) -> Any:
    """The first JSON value in ``data``; anything after it is ignored."""
    text = data.decode("utf-8", errors="replace")
    start = _JSON_WHITESPACE.match(text).end()
    value, _ = _DECODER.raw_decode(text, start)
    return value


def _event_from(value: Any) -> SearchEvent:
    if value is None:
        return SearchEvent()
    if not isinstance(value, dict):
        raise ValueError("event must be a JSON object")
    return SearchEvent.from_mapping(value)


def _term_from(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, dict):
        raise ValueError("request must be a JSON object")

    term = ""
    for key, item in value.items():
        if key.lower() != "term" or item is None:
            continue
        if not isinstance(item, str):
            raise ValueError("term must be a string")
        term = item
    return term


def _result_mapping(result: Result) -> dict[str, Any]:
    data: dict[str, Any] = {"accepted": result.accepted}
    reason = getattr(result.reason, "value", result.reason) or ""
    if reason:
        data["reason"] = reason
    if result.query:
        data["query"] = result.query
    if result.count:
        data["count"] = result.count
    return data


def _stop_list_error(exc: Exception) -> Response:
    if isinstance(exc, EmptyTermError):
        return write_error(400, "term is required")
    return write_error(500, "failed to update stop-list")


class AdminEventsHandler:
    """Accepts search events posted by operators."""

    def __init__(self, processor: _EventProcessor, token_auth: TokenAuth) -> None:
        self._processor = processor
        self._auth = token_auth

    def register(self, router: Router) -> None:
        router.add("POST", "/admin/events", self._auth.wrap(self.add_event))

    def add_event(self, request: Request) -> Response:
        body = request.stream.read(MAX_ADMIN_EVENT_BODY_BYTES + 1)
        try:
            event = _event_from(_decode_first_value(body[:MAX_ADMIN_EVENT_BODY_BYTES]))
        except (ValueError, TypeError):
            return write_error(400, "invalid json body")

        result = self._processor.process_http(request, event)

        status_code = 202 if result.accepted else 200
        if result.reason in (Reason.INVALID_EVENT, Reason.EMPTY_QUERY):
            status_code = 400

        return write_json(status_code, _result_mapping(result))


class AdminStopListHandler:
    """Lists, adds and removes stop-list terms."""

    def __init__(self, service: _StopListService, token_auth: TokenAuth) -> None:
        self._service = service
        self._auth = token_auth

    def register(self, router: Router) -> None:
        router.add("GET", "/admin/stop-list", self._auth.wrap(self.list_terms))
        router.add("POST", "/admin/stop-list", self._auth.wrap(self.add))
        router.add("DELETE", "/admin/stop-list/<term>", self._auth.wrap(self.remove))

    def list_terms(self, request: Request) -> Response:
        return write_json(200, {"terms": list(self._service.terms())})

    def add(self, request: Request) -> Response:
        try:
            raw_term = _term_from(_decode_first_value(request.get_data()))
        except (ValueError, TypeError):
            return write_error(400, "invalid json body")

        try:
            term, changed = self._service.add(raw_term)
        except Exception as exc:
            return _stop_list_error(exc)

        return write_json(201 if changed else 200, {"term": term, "changed": changed})

    def remove(self, request: Request, term: str) -> Response:
        try:
            normalized, changed = self._service.remove(term)
        except Exception as exc:
            return _stop_list_error(exc)

        return write_json(200, {"term": normalized, "changed": changed})