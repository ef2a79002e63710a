"""Turns incoming search events into aggregator updates."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from .aggregator import Aggregator
from .contract import SearchEvent, ValidationError, validate_at
from .normalize import normalize_query
from .privacy import contains_sensitive_data
from .window import DropReason, Event


class _StopList(Protocol):
    def contains(self, raw_term: str) -> bool: ...


class _Observer(Protocol):
    def observe_ingest_result(self, result: "Result") -> None: ...


class Reason(str, Enum):
    """Why an event was not counted."""

    NONE = ""
    INVALID_EVENT = "invalid_event"
    EMPTY_QUERY = "empty_query"
    PRIVACY_FILTER = "privacy_filter"
    STOP_LIST = "stoplist"
    BOT = "bot"
    TOO_OLD = "too_old"
    FROM_FUTURE = "from_future"
    CARDINALITY_LIMIT = "cardinality_limit"
    BUCKET_CARDINALITY_LIMIT = "bucket_cardinality_limit"
    ACTOR_QUERY_LIMIT = "actor_query_limit"


@dataclass(frozen=True)
class Result:
    """Outcome of processing one event."""

    accepted: bool
    reason: Reason = Reason.NONE
    query: str = ""
    count: int = 0


_DROP_REASONS = {
    DropReason.EMPTY_QUERY: Reason.EMPTY_QUERY,
    DropReason.TOO_OLD: Reason.TOO_OLD,
    DropReason.FROM_FUTURE: Reason.FROM_FUTURE,
    DropReason.CARDINALITY_LIMIT: Reason.CARDINALITY_LIMIT,
    DropReason.BUCKET_CARDINALITY_LIMIT: Reason.BUCKET_CARDINALITY_LIMIT,
    DropReason.ACTOR_QUERY_LIMIT: Reason.ACTOR_QUERY_LIMIT,
}


class Processor:
    """Validates, normalizes and filters events, then counts them."""

    def __init__(
        self,
        aggregator: Aggregator,
        stop_list: _StopList | None = None,
        observer: _Observer | None = None,
    ) -> None:
        self._aggregator = aggregator
        self._stop_list = stop_list
        self._observer = observer

    def process(self, event: SearchEvent) -> Result:
        """Process an event at the current time."""
        return self.process_at(event, datetime.now(timezone.utc))

    def process_at(self, event: SearchEvent, now: datetime) -> Result:
        """Process an event as seen at ``now``."""
        return self._finish(self._evaluate(event, now))

    def _evaluate(self, event: SearchEvent, now: datetime) -> Result:
        try:
            validate_at(event, now)
        except ValidationError:
            return Result(False, Reason.INVALID_EVENT)

        query = normalize_query(event.query)
        if query is None:
            return Result(False, Reason.EMPTY_QUERY)

        if contains_sensitive_data(query):
            return Result(False, Reason.PRIVACY_FILTER, query)

        if event.is_bot:
            return Result(False, Reason.BOT, query)

        if self._stop_list is not None and self._stop_list.contains(query):
            return Result(False, Reason.STOP_LIST, query)

        assert event.occurred_at is not None
        added = self._aggregator.add_at(
            Event(query=query, occurred_at=event.occurred_at, actor_key=event.actor_key()),
            now,
        )
        if not added.accepted:
            return Result(False, _DROP_REASONS.get(added.reason, Reason.INVALID_EVENT), query)

        return Result(True, Reason.NONE, query, self._aggregator.count_at(query, now))

    def _finish(self, result: Result) -> Result:
        if self._observer is not None:
            self._observer.observe_ingest_result(result)
        return result


class HTTPProcessor:
    """Feeds events that arrive over HTTP into a processor."""

    def __init__(self, processor: Processor) -> None:
        self._processor = processor

    def process_http(self, request: Any, event: SearchEvent) -> Result:
        """Process an event received with ``request``."""
        return self._processor.process(event)


def is_dropped(result: Result) -> bool:
    """True if the event was refused for a stated reason."""
    return not result.accepted and result.reason != Reason.NONE


def is_invalid(result: Result) -> bool:
    """True if the event was malformed rather than filtered."""
    return result.reason in (Reason.INVALID_EVENT, Reason.EMPTY_QUERY)