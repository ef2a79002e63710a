"""Service assembly: snapshot refreshing and the public and admin WSGI apps."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Protocol

from .admin import AdminEventsHandler, AdminStopListHandler
from .api import HealthHandler, Router, TrendsHandler, metrics_middleware
from .auth import TokenAuth
from .metrics import Metrics
from .snapshot import MAX_LIMIT, Publisher, Snapshot, build_snapshot, default_options
from .window import Item

WSGIApp = Callable[[dict, Callable[..., Any]], Iterable[bytes]]

DEFAULT_REFRESH_INTERVAL = 1.0


class _StopList(Protocol):
    def contains(self, raw_term: str) -> bool: ...

    def terms(self) -> list[str]: ...


class _TopSource(Protocol):
    def top_filtered_at(
        self, limit: int, now: datetime, include: Callable[[Item], bool] | None
    ) -> list[Item]: ...

    def unique_queries_at(self, now: datetime) -> int: ...

    def window_events_at(self, now: datetime) -> int: ...

    def actor_counters_at(self, now: datetime) -> int: ...


def filter_stop_listed_items(
    items: Sequence[Item], stop_list_service: _StopList | None
) -> list[Item]:
    """The items whose queries the stop-list does not block, in order."""
    if not items or stop_list_service is None:
        return list(items)
    return [item for item in items if not stop_list_service.contains(item.query)]


def rebuild_snapshot(
    aggregator: _TopSource,
    stop_list_service: _StopList,
    publisher: Publisher,
    metrics: Metrics | None,
    now: datetime,
) -> Snapshot:
    """Build a snapshot of the current top queries, publish it and update metrics."""
    started = time.perf_counter()

    items = aggregator.top_filtered_at(
        MAX_LIMIT, now, lambda item: not stop_list_service.contains(item.query)
    )
    snapshot = build_snapshot(items, now, default_options())
    publisher.publish(snapshot)

    if metrics is not None:
        metrics.observe_snapshot_rebuild(
            timedelta(seconds=time.perf_counter() - started),
            snapshot.generated_at,
            len(snapshot.items),
        )
        metrics.set_aggregator_stats(
            aggregator.unique_queries_at(now),
            aggregator.window_events_at(now),
            aggregator.actor_counters_at(now),
        )
        metrics.set_stop_list_rules(len(stop_list_service.terms()))

    return snapshot


class SnapshotRefresher:
    """Rebuilds and publishes the trends snapshot on a background thread."""

    def __init__(
        self,
        aggregator: _TopSource,
        stop_list_service: _StopList,
        publisher: Publisher,
        metrics: Metrics | None = None,
        logger: logging.Logger | None = None,
        interval: float = DEFAULT_REFRESH_INTERVAL,
    ) -> None:
        self._aggregator = aggregator
        self._stop_list_service = stop_list_service
        self._publisher = publisher
        self._metrics = metrics
        self._logger = logger or logging.getLogger(__name__)
        self._interval = interval
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        """True while the background thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Rebuild once now, then keep rebuilding every interval until stopped."""
        if self.running:
            return
        self._stopping.clear()
        self._rebuild()
        self._thread = threading.Thread(
            target=self._loop, name="snapshot-refresher", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the background thread and wait for it to finish."""
        self._stopping.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self._logger.info("snapshot refresher stopped")

    def __enter__(self) -> "SnapshotRefresher":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    def _loop(self) -> None:
        while not self._stopping.wait(self._interval):
            self._rebuild()

    def _rebuild(self) -> None:
        try:
            rebuild_snapshot(
                self._aggregator,
                self._stop_list_service,
                self._publisher,
                self._metrics,
                datetime.now(timezone.utc),
            )
        except Exception as exc:
            self._logger.error(
                "failed to build trends snapshot", extra={"error": str(exc)}
            )


def build_public_app(
    service_name: str,
    started_at: datetime,
    publisher: Publisher,
    metrics: Metrics | None,
) -> WSGIApp:
    """The public WSGI app: health checks and trends."""
    router = Router()
    HealthHandler(service_name, started_at).register(router)
    TrendsHandler(publisher).register(router)
    return metrics_middleware("public", metrics)(router.wsgi_app)


def build_admin_app(
    service_name: str,
    started_at: datetime,
    stop_list_service: Any,
    http_processor: Any,
    token_auth: TokenAuth,
    metrics: Metrics | None,
) -> WSGIApp:
    """The admin WSGI app: health checks, stop-list, event injection and metrics."""
    router = Router()
    HealthHandler(service_name, started_at).register(router)
    AdminStopListHandler(stop_list_service, token_auth).register(router)
    AdminEventsHandler(http_processor, token_auth).register(router)
    if metrics is not None:
        router.add("GET", "/metrics", metrics.handler)
    return metrics_middleware("admin", metrics)(router.wsgi_app)