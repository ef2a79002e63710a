"""Sharded sliding-window aggregator safe for concurrent use."""

from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from .hashing import index
from .window import AddResult, Event, Item, Window, WindowConfig

DEFAULT_SHARD_COUNT = 32


class InvalidShardCountError(ValueError):
    """The shard count is not positive."""

    def __init__(self) -> None:
        super().__init__("shard count must be positive")


@dataclass(frozen=True)
class AggregatorConfig:
    """Number of shards and the window settings each shard uses."""

    shard_count: int = DEFAULT_SHARD_COUNT
    window: WindowConfig = field(default_factory=WindowConfig)


class Shard:
    """A window guarded by a lock."""

    def __init__(self, config: WindowConfig | None = None) -> None:
        self._lock = threading.Lock()
        self._window = Window(config)

    def add_at(self, event: Event, now: datetime) -> AddResult:
        with self._lock:
            return self._window.add_at(event, now)

    def top_at(self, limit: int, now: datetime) -> list[Item]:
        return self.top_filtered_at(limit, now, None)

    def top_filtered_at(
        self,
        limit: int,
        now: datetime,
        include: Callable[[Item], bool] | None,
    ) -> list[Item]:
        with self._lock:
            return self._window.top_filtered_at(limit, now, include)

    def count_at(self, query: str, now: datetime) -> int:
        with self._lock:
            return self._window.count_at(query, now)

    def unique_queries_at(self, now: datetime) -> int:
        with self._lock:
            return self._window.unique_queries_at(now)

    def actor_counters_at(self, now: datetime) -> int:
        with self._lock:
            return self._window.actor_counters_at(now)

    def window_events_at(self, now: datetime) -> int:
        with self._lock:
            return self._window.window_events_at(now)


class Aggregator:
    """Routes each query to a shard by hash and merges results across shards."""

    def __init__(self, config: AggregatorConfig | None = None) -> None:
        config = config or AggregatorConfig()
        if config.shard_count == 0:
            config = dataclasses.replace(config, shard_count=DEFAULT_SHARD_COUNT)
        if config.shard_count <= 0:
            raise InvalidShardCountError()

        window_config = config.window.with_defaults()
        self._shards = [Shard(window_config) for _ in range(config.shard_count)]

    def add(self, event: Event) -> AddResult:
        return self.add_at(event, datetime.now(timezone.utc))

    def add_at(self, event: Event, now: datetime) -> AddResult:
        return self._shard_for(event.query).add_at(event, now)

    def top(self, limit: int) -> list[Item]:
        return self.top_at(limit, datetime.now(timezone.utc))

    def top_at(self, limit: int, now: datetime) -> list[Item]:
        return self.top_filtered_at(limit, now, None)

    def top_filtered_at(
        self,
        limit: int,
        now: datetime,
        include: Callable[[Item], bool] | None,
    ) -> list[Item]:
        """Up to ``limit`` items across all shards, by count then query."""
        if limit <= 0:
            return []

        candidates = [
            item
            for shard in self._shards
            for item in shard.top_filtered_at(limit, now, include)
        ]
        candidates.sort(key=lambda item: (-item.count, item.query))
        return candidates[:limit]

    def count_at(self, query: str, now: datetime) -> int:
        return self._shard_for(query).count_at(query, now)

    def unique_queries_at(self, now: datetime) -> int:
        return sum(shard.unique_queries_at(now) for shard in self._shards)

    def actor_counters_at(self, now: datetime) -> int:
        return sum(shard.actor_counters_at(now) for shard in self._shards)

    def window_events_at(self, now: datetime) -> int:
        return sum(shard.window_events_at(now) for shard in self._shards)

    def shard_count(self) -> int:
        return len(self._shards)

    def shard_index(self, query: str) -> int:
        return index(query, len(self._shards))

    def _shard_for(self, query: str) -> Shard:
        return self._shards[self.shard_index(query)]