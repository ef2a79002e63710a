"""Sliding-window query counter built from a ring of fixed-size time buckets."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

DEFAULT_WINDOW_SIZE = timedelta(minutes=5)
DEFAULT_BUCKET_SIZE = timedelta(seconds=1)
DEFAULT_MAX_FUTURE_SKEW = timedelta(seconds=10)
DEFAULT_MAX_UNIQUE_QUERIES = 1_000_000
DEFAULT_MAX_UNIQUE_QUERIES_PER_BUCKET = 100_000
DEFAULT_PER_ACTOR_QUERY_LIMIT = 3

_SPACE_CHARS = (
    "\t\n\v\f\r \x85\xa0\u1680"
    "\u2000\u2001\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a"
    "\u2028\u2029\u202f\u205f\u3000"
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ZERO = timedelta(0)


@dataclass(frozen=True)
class Event:
    """A query occurrence fed into the window."""

    query: str
    occurred_at: datetime
    actor_key: str = ""


@dataclass(frozen=True)
class Item:
    """A query together with its count in the window."""

    query: str
    count: int


class DropReason(str, Enum):
    """Why the window refused an event."""

    NONE = ""
    EMPTY_QUERY = "empty_query"
    TOO_OLD = "too_old"
    FROM_FUTURE = "from_future"
    CARDINALITY_LIMIT = "cardinality_limit"
    BUCKET_CARDINALITY_LIMIT = "bucket_cardinality_limit"
    ACTOR_QUERY_LIMIT = "actor_query_limit"


@dataclass(frozen=True)
class AddResult:
    """Outcome of adding one event."""

    accepted: bool
    reason: DropReason = DropReason.NONE


@dataclass(frozen=True)
class WindowConfig:
    """Window geometry and guardrails; zero values fall back to the defaults."""

    window_size: timedelta = DEFAULT_WINDOW_SIZE
    bucket_size: timedelta = DEFAULT_BUCKET_SIZE
    max_future_skew: timedelta = DEFAULT_MAX_FUTURE_SKEW
    max_unique_queries: int = DEFAULT_MAX_UNIQUE_QUERIES
    max_unique_queries_per_bucket: int = DEFAULT_MAX_UNIQUE_QUERIES_PER_BUCKET
    per_actor_query_limit: int = DEFAULT_PER_ACTOR_QUERY_LIMIT

    def with_defaults(self) -> "WindowConfig":
        """Return a copy in which every zero setting takes its default."""
        defaults = WindowConfig()
        changes = {
            f.name: getattr(defaults, f.name)
            for f in dataclasses.fields(self)
            if getattr(self, f.name) in (0, _ZERO)
        }
        return dataclasses.replace(self, **changes)


class WindowConfigError(ValueError):
    """The window settings are inconsistent."""


def _duration_ns(duration: timedelta) -> int:
    return (duration.days * 86_400 + duration.seconds) * 1_000_000_000 + duration.microseconds * 1_000


def _time_ns(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return _duration_ns(moment - _EPOCH)


def _trunc_div(a: int, b: int) -> int:
    quotient = abs(a) // abs(b)
    return quotient if (a >= 0) == (b >= 0) else -quotient


class _Bucket:
    __slots__ = ("id", "counts", "actor_counts")

    def __init__(self) -> None:
        self.id = 0
        self.counts: dict[str, int] | None = None
        self.actor_counts: dict[tuple[str, str], int] | None = None


class Window:
    """Counts queries over a sliding time window. Not thread-safe."""

    def __init__(self, config: WindowConfig | None = None) -> None:
        config = (config or WindowConfig()).with_defaults()

        if config.window_size <= _ZERO:
            raise WindowConfigError("window size must be positive")
        if config.bucket_size <= _ZERO:
            raise WindowConfigError("bucket size must be positive")
        if config.bucket_size > config.window_size:
            raise WindowConfigError("bucket size must be less than or equal to window size")

        window_ns = _duration_ns(config.window_size)
        bucket_ns = _duration_ns(config.bucket_size)
        if window_ns % bucket_ns != 0:
            raise WindowConfigError("window size must be divisible by bucket size")
        if config.max_unique_queries < 0:
            raise WindowConfigError("max unique queries must be non-negative")
        if config.max_unique_queries_per_bucket < 0:
            raise WindowConfigError("max unique queries per bucket must be non-negative")
        if config.per_actor_query_limit < 0:
            raise WindowConfigError("per actor query limit must be non-negative")

        self.config = config
        self._window_ns = window_ns
        self._bucket_ns = bucket_ns
        self._skew_ns = _duration_ns(config.max_future_skew)
        self._buckets = [_Bucket() for _ in range(window_ns // bucket_ns + 1)]
        self._totals: dict[str, int] = {}
        self._actor_totals: dict[tuple[str, str], int] = {}

    def add(self, event: Event) -> AddResult:
        """Add an event at the current time."""
        return self.add_at(event, datetime.now(timezone.utc))

    def add_at(self, event: Event, now: datetime) -> AddResult:
        """Add an event as seen at ``now``."""
        query = event.query.strip(_SPACE_CHARS)
        if not query:
            return AddResult(False, DropReason.EMPTY_QUERY)

        now_ns = _time_ns(now)
        event_ns = _time_ns(event.occurred_at)

        if event_ns > now_ns + self._skew_ns:
            return AddResult(False, DropReason.FROM_FUTURE)
        event_ns = min(event_ns, now_ns)

        self._expire_ns(now_ns)

        event_bucket_id = self._bucket_id(event_ns)
        if event_bucket_id < self._min_bucket_id(now_ns):
            return AddResult(False, DropReason.TOO_OLD)

        actor_key = event.actor_key.strip(_SPACE_CHARS)
        actor_entry = (query, actor_key)
        track_actor = bool(actor_key) and self.config.per_actor_query_limit > 0

        if track_actor and self._actor_totals.get(actor_entry, 0) >= self.config.per_actor_query_limit:
            return AddResult(False, DropReason.ACTOR_QUERY_LIMIT)

        limit = self.config.max_unique_queries
        if self._totals.get(query, 0) == 0 and limit > 0 and len(self._totals) >= limit:
            return AddResult(False, DropReason.CARDINALITY_LIMIT)

        target = self._ensure_bucket(event_bucket_id)
        assert target.counts is not None and target.actor_counts is not None

        bucket_limit = self.config.max_unique_queries_per_bucket
        if target.counts.get(query, 0) == 0 and bucket_limit > 0 and len(target.counts) >= bucket_limit:
            return AddResult(False, DropReason.BUCKET_CARDINALITY_LIMIT)

        target.counts[query] = target.counts.get(query, 0) + 1
        self._totals[query] = self._totals.get(query, 0) + 1

        if track_actor:
            target.actor_counts[actor_entry] = target.actor_counts.get(actor_entry, 0) + 1
            self._actor_totals[actor_entry] = self._actor_totals.get(actor_entry, 0) + 1

        return AddResult(True, DropReason.NONE)

    def top(self, limit: int) -> list[Item]:
        """The most frequent queries at the current time."""
        return self.top_at(limit, datetime.now(timezone.utc))

    def top_at(self, limit: int, now: datetime) -> list[Item]:
        """The most frequent queries as seen at ``now``."""
        return self.top_filtered_at(limit, now, None)

    def top_filtered_at(
        self,
        limit: int,
        now: datetime,
        include: Callable[[Item], bool] | None,
    ) -> list[Item]:
        """Up to ``limit`` items passing ``include``, by count then query."""
        if limit <= 0:
            return []

        self.expire_at(now)

        items = [
            item
            for item in (Item(query, count) for query, count in self._totals.items() if count > 0)
            if include is None or include(item)
        ]
        items.sort(key=lambda item: (-item.count, item.query))
        return items[:limit]

    def count_at(self, query: str, now: datetime) -> int:
        """Occurrences of ``query`` in the window at ``now``."""
        self.expire_at(now)
        return self._totals.get(query, 0)

    def actor_count_at(self, query: str, actor_key: str, now: datetime) -> int:
        """Occurrences of ``query`` by one actor in the window at ``now``."""
        self.expire_at(now)
        return self._actor_totals.get((query, actor_key), 0)

    def unique_queries_at(self, now: datetime) -> int:
        """Number of distinct queries in the window at ``now``."""
        self.expire_at(now)
        return len(self._totals)

    def actor_counters_at(self, now: datetime) -> int:
        """Number of actor/query counters in the window at ``now``."""
        self.expire_at(now)
        return len(self._actor_totals)

    def window_events_at(self, now: datetime) -> int:
        """Total accepted events in the window at ``now``."""
        self.expire_at(now)
        return sum(count for count in self._totals.values() if count > 0)

    def expire_at(self, now: datetime) -> None:
        """Drop every bucket that has slid out of the window at ``now``."""
        self._expire_ns(_time_ns(now))

    def _expire_ns(self, now_ns: int) -> None:
        min_bucket_id = self._min_bucket_id(now_ns)
        for current in self._buckets:
            if current.counts is None or current.id >= min_bucket_id:
                continue
            self._reset(current)

    def _ensure_bucket(self, bucket_id: int) -> _Bucket:
        current = self._buckets[bucket_id % len(self._buckets)]

        if current.counts is None:
            current.id = bucket_id
            current.counts = {}
            current.actor_counts = {}
            return current

        if current.id != bucket_id:
            self._reset(current)
            current.id = bucket_id

        return current

    def _reset(self, current: _Bucket) -> None:
        assert current.counts is not None and current.actor_counts is not None
        for query, count in current.counts.items():
            remaining = self._totals.get(query, 0) - count
            if remaining <= 0:
                self._totals.pop(query, None)
            else:
                self._totals[query] = remaining

        for key, count in current.actor_counts.items():
            remaining = self._actor_totals.get(key, 0) - count
            if remaining <= 0:
                self._actor_totals.pop(key, None)
            else:
                self._actor_totals[key] = remaining

        current.counts.clear()
        current.actor_counts.clear()

    def _min_bucket_id(self, now_ns: int) -> int:
        return self._bucket_id(now_ns - self._window_ns)

    def _bucket_id(self, ts_ns: int) -> int:
        return _trunc_div(ts_ns, self._bucket_ns)