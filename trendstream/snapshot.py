"""Immutable trend snapshots with pre-rendered JSON, and their publisher."""

from __future__ import annotations

import json
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .window import Item

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
DEFAULT_WINDOW_SECONDS = 300
DEFAULT_PRECOMPUTED_LIMITS = (10, 20, 50, 100)

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


class SnapshotError(ValueError):
    """Base class for snapshot errors."""


class InvalidLimitError(SnapshotError):
    """A limit that is not positive."""

    def __init__(self) -> None:
        super().__init__("limit must be positive")


class LimitTooLargeError(SnapshotError):
    """A limit above the maximum."""

    def __init__(self) -> None:
        super().__init__("limit is too large")


class InvalidWindowSecondsError(SnapshotError):
    """A window length that is not positive."""

    def __init__(self) -> None:
        super().__init__("window seconds must be positive")


@dataclass(frozen=True)
class Options:
    """How a snapshot is built; zero or empty settings take the defaults."""

    window_seconds: int = DEFAULT_WINDOW_SECONDS
    max_limit: int = MAX_LIMIT
    precomputed_limits: tuple[int, ...] = DEFAULT_PRECOMPUTED_LIMITS


@dataclass(frozen=True)
class Response:
    """The body of a trends response."""

    window_seconds: int
    generated_at: datetime
    items: tuple[Item, ...]

    def to_mapping(self) -> dict[str, Any]:
        """JSON-ready mapping."""
        return {
            "window_seconds": self.window_seconds,
            "generated_at": _format_time(self.generated_at),
            "items": [{"query": item.query, "count": item.count} for item in self.items],
        }


@dataclass(frozen=True)
class Snapshot:
    """The top items at one moment, with JSON bodies rendered ahead of time."""

    generated_at: datetime
    window_seconds: int
    items: tuple[Item, ...]
    _json_by_limit: dict[int, bytes] = field(default_factory=dict, repr=False, compare=False)

    def response(self, limit: int) -> Response:
        """The response for ``limit`` items; raises on an invalid limit."""
        validate_limit(limit)
        return Response(self.window_seconds, self.generated_at, self.items[:limit])

    def marshal_limit(self, limit: int) -> bytes:
        """The response for ``limit`` items, encoded as compact JSON."""
        text = json.dumps(
            self.response(limit).to_mapping(), ensure_ascii=False, separators=(",", ":")
        )
        for char, escaped in _HTML_ESCAPES.items():
            text = text.replace(char, escaped)
        return text.encode("utf-8")

    def precomputed_json(self, limit: int) -> bytes | None:
        """The pre-rendered body for ``limit``, or None if there is none."""
        return self._json_by_limit.get(limit)


def default_options() -> Options:
    """The standard snapshot options."""
    return Options()


def build_snapshot(
    items: Iterable[Item] | None,
    generated_at: datetime,
    options: Options | None = None,
) -> Snapshot:
    """Build a snapshot from ranked items, keeping at most ``max_limit``."""
    options = _with_defaults(options or Options())

    if options.window_seconds <= 0:
        raise InvalidWindowSecondsError()
    if options.max_limit <= 0:
        raise InvalidLimitError()

    snapshot = Snapshot(
        generated_at=_as_utc(generated_at),
        window_seconds=options.window_seconds,
        items=tuple(items or ())[: options.max_limit],
    )

    for limit in options.precomputed_limits:
        if 0 < limit <= options.max_limit:
            snapshot._json_by_limit[limit] = snapshot.marshal_limit(limit)

    return snapshot


def empty_snapshot(generated_at: datetime) -> Snapshot:
    """A snapshot with no items."""
    return build_snapshot(None, generated_at, default_options())


def validate_limit(limit: int) -> None:
    """Raise if ``limit`` is not in 1..MAX_LIMIT."""
    if limit <= 0:
        raise InvalidLimitError()
    if limit > MAX_LIMIT:
        raise LimitTooLargeError()


class Publisher:
    """Holds the latest snapshot for concurrent readers."""

    def __init__(self, initial: Snapshot | None = None) -> None:
        self._lock = threading.Lock()
        self._current = initial if initial is not None else empty_snapshot(datetime.now(timezone.utc))

    def publish(self, snapshot: Snapshot | None) -> None:
        """Make ``snapshot`` current; None is ignored."""
        if snapshot is None:
            return
        with self._lock:
            self._current = snapshot

    def current(self) -> Snapshot:
        """The latest published snapshot."""
        return self._current


def _with_defaults(options: Options) -> Options:
    return Options(
        window_seconds=options.window_seconds or DEFAULT_WINDOW_SECONDS,
        max_limit=options.max_limit or MAX_LIMIT,
        precomputed_limits=tuple(options.precomputed_limits) or DEFAULT_PRECOMPUTED_LIMITS,
    )


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _format_time(moment: datetime) -> str:
    moment = _as_utc(moment)
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    if moment.microsecond:
        text += "." + f"{moment.microsecond:06d}".rstrip("0")
    return text + "Z"