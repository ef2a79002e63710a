"""Service metrics kept in memory and exposed in the Prometheus text format."""

from __future__ import annotations

import math
import threading
from collections.abc import Iterator, Sequence
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from werkzeug.wrappers import Response

if TYPE_CHECKING:
    from .ingest import Result

NAMESPACE = "trendstream"
DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def _format_float(value: float) -> str:
    """Shortest representation, switching to exponent form like the exposition format."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    parts = Decimal(repr(abs(float(value)))).normalize().as_tuple()
    digits = "".join(str(digit) for digit in parts.digits)
    count = len(digits)
    point = count + int(parts.exponent)
    exponent = point - 1

    if exponent < -4 or exponent >= 6:
        mantissa = digits[0] + ("." + digits[1:] if count > 1 else "")
        exp_sign = "+" if exponent >= 0 else "-"
        return f"{sign}{mantissa}e{exp_sign}{abs(exponent):02d}"
    if point <= 0:
        return f"{sign}0.{'0' * -point}{digits}"
    if point >= count:
        return f"{sign}{digits}{'0' * (point - count)}"
    return f"{sign}{digits[:point]}.{digits[point:]}"


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _escape_label(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _seconds(duration: timedelta | float) -> float:
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


class _HistogramState:
    __slots__ = ("buckets", "total", "count")

    def __init__(self, size: int) -> None:
        self.buckets = [0] * size
        self.total = 0.0
        self.count = 0


class _Family:
    """One named metric with its labelled children."""

    def __init__(
        self,
        subsystem: str,
        name: str,
        help_text: str,
        kind: str,
        label_names: Sequence[str] = (),
        buckets: Sequence[float] = DEFAULT_BUCKETS,
    ) -> None:
        self.name = f"{NAMESPACE}_{subsystem}_{name}"
        self.help_text = help_text
        self.kind = kind
        self.label_names = tuple(label_names)
        self.buckets = tuple(buckets)
        self._values: dict[tuple[str, ...], Any] = {}
        if not self.label_names:
            self._values[()] = _HistogramState(len(self.buckets)) if kind == "histogram" else 0.0

    def add(self, labels: tuple[str, ...], amount: float) -> None:
        self._values[labels] = self._values.get(labels, 0.0) + amount

    def set(self, labels: tuple[str, ...], value: float) -> None:
        self._values[labels] = float(value)

    def observe(self, labels: tuple[str, ...], value: float) -> None:
        state = self._values.get(labels)
        if state is None:
            state = self._values[labels] = _HistogramState(len(self.buckets))
        for position, bound in enumerate(self.buckets):
            if value <= bound:
                state.buckets[position] += 1
        state.total += value
        state.count += 1

    def lines(self) -> Iterator[str]:
        if not self._values:
            return
        yield f"# HELP {self.name} {_escape_help(self.help_text)}"
        yield f"# TYPE {self.name} {self.kind}"

        order = sorted(range(len(self.label_names)), key=lambda i: self.label_names[i])
        for labels in sorted(self._values, key=lambda key: tuple(key[i] for i in order)):
            pairs = [(self.label_names[i], labels[i]) for i in order]
            value = self._values[labels]
            if self.kind == "histogram":
                for bound, seen in zip(self.buckets, value.buckets):
                    yield self._sample("_bucket", [*pairs, ("le", _format_float(bound))], seen)
                yield self._sample("_bucket", [*pairs, ("le", "+Inf")], value.count)
                yield self._sample("_sum", pairs, value.total)
                yield self._sample("_count", pairs, value.count)
            else:
                yield self._sample("", pairs, value)

    def _sample(self, suffix: str, pairs: list[tuple[str, str]], value: float) -> str:
        labels = ",".join(f'{name}="{_escape_label(text)}"' for name, text in pairs)
        rendered = f"{{{labels}}}" if labels else ""
        return f"{self.name}{suffix}{rendered} {_format_float(float(value))}"


class Metrics:
    """Counters, gauges and histograms describing the running service."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

        self._http_requests_total = _Family(
            "http", "requests_total",
            "Total number of HTTP requests handled by the service.",
            "counter", ("server", "method", "path", "status"),
        )
        self._http_request_duration = _Family(
            "http", "request_duration_seconds",
            "HTTP request duration in seconds.",
            "histogram", ("server", "method", "path"),
        )
        self._ingest_events_total = _Family(
            "ingest", "events_total",
            "Total number of processed ingest events by result and reason.",
            "counter", ("result", "reason"),
        )
        self._kafka_records_polled = _Family(
            "kafka", "records_polled_total",
            "Total number of Kafka records polled by the consumer.",
            "counter",
        )
        self._kafka_records_committed = _Family(
            "kafka", "records_committed_total",
            "Total number of Kafka records committed after processing.",
            "counter",
        )
        self._kafka_fetch_errors = _Family(
            "kafka", "fetch_errors_total",
            "Total number of Kafka fetch errors.",
            "counter", ("topic", "partition"),
        )
        self._kafka_commit_errors = _Family(
            "kafka", "commit_errors_total",
            "Total number of Kafka offset commit errors.",
            "counter",
        )
        self._kafka_decode_errors = _Family(
            "kafka", "decode_errors_total",
            "Total number of Kafka records rejected because their payload could not be decoded.",
            "counter",
        )
        self._snapshot_rebuild_duration = _Family(
            "snapshot", "rebuild_duration_seconds",
            "Snapshot rebuild duration in seconds.",
            "histogram",
        )
        self._snapshot_age_seconds = _Family(
            "snapshot", "age_seconds",
            "Current published snapshot age in seconds.",
            "gauge",
        )
        self._snapshot_items = _Family(
            "snapshot", "items",
            "Number of items in the current published trend snapshot.",
            "gauge",
        )
        self._current_unique_queries = _Family(
            "aggregator", "current_unique_queries",
            "Number of unique queries currently tracked in the sliding window.",
            "gauge",
        )
        self._current_window_events = _Family(
            "aggregator", "current_window_events",
            "Total number of accepted events currently represented in the sliding window.",
            "gauge",
        )
        self._current_actor_counters = _Family(
            "aggregator", "current_actor_counters",
            "Number of actor/query counters currently tracked for abuse guardrails.",
            "gauge",
        )
        self._stop_list_rules = _Family(
            "stoplist", "rules",
            "Number of currently configured stop-list rules.",
            "gauge",
        )

        self._families = sorted(
            (value for value in vars(self).values() if isinstance(value, _Family)),
            key=lambda family: family.name,
        )

    def observe_http_request(
        self,
        server: str,
        method: str,
        path: str,
        status_code: int,
        duration: timedelta | float,
    ) -> None:
        """Count one HTTP request and record how long it took."""
        with self._lock:
            self._http_requests_total.add((server, method, path, str(status_code)), 1)
            self._http_request_duration.observe((server, method, path), _seconds(duration))

    def observe_ingest_result(self, result: "Result") -> None:
        """Count one processed event by outcome."""
        with self._lock:
            if result.accepted:
                self._ingest_events_total.add(("accepted", ""), 1)
                return
            reason = result.reason
            text = reason.value if isinstance(reason, Enum) else str(reason or "")
            self._ingest_events_total.add(("dropped", text or "unknown"), 1)

    def observe_kafka_records_polled(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._kafka_records_polled.add((), count)

    def observe_kafka_records_committed(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._kafka_records_committed.add((), count)

    def observe_kafka_fetch_error(self, topic: str, partition: int) -> None:
        with self._lock:
            self._kafka_fetch_errors.add((topic, str(int(partition))), 1)

    def observe_kafka_commit_error(self) -> None:
        with self._lock:
            self._kafka_commit_errors.add((), 1)

    def observe_kafka_decode_error(self) -> None:
        with self._lock:
            self._kafka_decode_errors.add((), 1)

    def observe_snapshot_rebuild(
        self,
        duration: timedelta | float,
        generated_at: datetime,
        items: int,
    ) -> None:
        """Record a snapshot rebuild, the snapshot's age and its size."""
        if generated_at.tzinfo is None:
            generated_at = generated_at.replace(tzinfo=timezone.utc)
        age = (datetime.now(timezone.utc) - generated_at).total_seconds()
        with self._lock:
            self._snapshot_rebuild_duration.observe((), _seconds(duration))
            self._snapshot_age_seconds.set((), age)
            self._snapshot_items.set((), items)

    def set_aggregator_stats(
        self, unique_queries: int, window_events: int, actor_counters: int
    ) -> None:
        with self._lock:
            self._current_unique_queries.set((), unique_queries)
            self._current_window_events.set((), window_events)
            self._current_actor_counters.set((), actor_counters)

    def set_stop_list_rules(self, count: int) -> None:
        with self._lock:
            self._stop_list_rules.set((), count)

    def render(self) -> str:
        """All metrics in the Prometheus text exposition format."""
        with self._lock:
            lines = [line for family in self._families for line in family.lines()]
        return "".join(f"{line}\n" for line in lines)

    def handler(self, request: Any) -> Response:
        """HTTP response carrying the rendered metrics."""
        return Response(self.render(), status=200, content_type=CONTENT_TYPE)