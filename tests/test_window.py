from datetime import datetime, timedelta, timezone

import pytest

from trendstream.window import (
    DEFAULT_MAX_FUTURE_SKEW,
    DEFAULT_MAX_UNIQUE_QUERIES,
    DEFAULT_WINDOW_SIZE,
    DropReason,
    Event,
    Item,
    Window,
    WindowConfig,
    WindowConfigError,
)

SECOND = timedelta(seconds=1)


def fixed_now():
    return datetime(2026, 5, 23, 9, 0, 0, tzinfo=timezone.utc)


def limited_window(**overrides):
    settings = dict(
        max_unique_queries=100,
        max_unique_queries_per_bucket=100,
        per_actor_query_limit=100,
    )
    settings.update(overrides)
    return Window(WindowConfig(**settings))


def test_add_and_top():
    now = fixed_now()
    window = Window()

    result = window.add_at(Event("iphone 15", now - timedelta(minutes=1)), now)
    assert result.accepted

    assert window.top_at(10, now) == [Item("iphone 15", 1)]


def test_aggregates_same_query():
    now = fixed_now()
    window = Window()

    for i in range(3):
        result = window.add_at(Event("iphone 15", now - i * SECOND), now)
        assert result.accepted, result.reason

    assert window.count_at("iphone 15", now) == 3


def test_sorts_top_by_count_then_query():
    now = fixed_now()
    window = Window()

    events = [
        Event("banana", now - SECOND),
        Event("banana", now - 2 * SECOND),
        Event("apple", now - SECOND),
        Event("apple", now - 2 * SECOND),
        Event("phone", now - SECOND),
    ]
    for event in events:
        assert window.add_at(event, now).accepted

    assert window.top_at(10, now) == [
        Item("apple", 2),
        Item("banana", 2),
        Item("phone", 1),
    ]


def test_respects_limit():
    now = fixed_now()
    window = Window()

    for query in ("a", "b", "c"):
        assert window.add_at(Event(query, now - SECOND), now).accepted

    assert len(window.top_at(2, now)) == 2


def test_non_positive_limit_returns_nothing():
    now = fixed_now()
    window = Window()
    assert window.add_at(Event("a", now), now).accepted

    assert window.top_at(0, now) == []


def test_expires_old_buckets():
    now = fixed_now()
    window = Window()

    result = window.add_at(Event("old query", now - DEFAULT_WINDOW_SIZE + SECOND), now)
    assert result.accepted

    assert window.count_at("old query", now) == 1

    later = now + 2 * SECOND
    assert window.count_at("old query", later) == 0
    assert window.unique_queries_at(later) == 0


def test_accepts_event_at_window_boundary():
    now = fixed_now()
    window = Window()

    result = window.add_at(Event("boundary query", now - DEFAULT_WINDOW_SIZE), now)
    assert result.accepted

    assert window.count_at("boundary query", now) == 1


def test_rejects_too_old_event():
    now = fixed_now()
    window = Window()

    result = window.add_at(Event("too old query", now - DEFAULT_WINDOW_SIZE - SECOND), now)

    assert not result.accepted
    assert result.reason is DropReason.TOO_OLD


def test_rejects_event_too_far_in_future():
    now = fixed_now()
    window = Window()

    result = window.add_at(Event("future query", now + DEFAULT_MAX_FUTURE_SKEW + SECOND), now)

    assert not result.accepted
    assert result.reason is DropReason.FROM_FUTURE


def test_clamps_small_future_skew_to_now():
    now = fixed_now()
    window = Window()

    result = window.add_at(Event("slightly future query", now + DEFAULT_MAX_FUTURE_SKEW / 2), now)
    assert result.accepted

    assert window.count_at("slightly future query", now) == 1


def test_rejects_empty_query():
    now = fixed_now()
    window = Window()

    result = window.add_at(Event(" \t\n ", now), now)

    assert not result.accepted
    assert result.reason is DropReason.EMPTY_QUERY


@pytest.mark.parametrize(
    "config",
    [
        WindowConfig(window_size=-SECOND, bucket_size=SECOND),
        WindowConfig(window_size=timedelta(minutes=1), bucket_size=-SECOND),
        WindowConfig(window_size=SECOND, bucket_size=timedelta(minutes=1)),
        WindowConfig(window_size=timedelta(minutes=5), bucket_size=7 * SECOND),
        WindowConfig(max_unique_queries=-1),
        WindowConfig(max_unique_queries_per_bucket=-1),
        WindowConfig(per_actor_query_limit=-1),
    ],
    ids=[
        "negative window size",
        "negative bucket size",
        "bucket larger than window",
        "window is not divisible by bucket",
        "negative max unique queries",
        "negative max unique queries per bucket",
        "negative per actor limit",
    ],
)
def test_rejects_invalid_config(config):
    with pytest.raises(WindowConfigError):
        Window(config)


def test_zero_settings_take_defaults():
    window = Window(WindowConfig(window_size=timedelta(0), max_unique_queries=0))

    assert window.config.window_size == DEFAULT_WINDOW_SIZE
    assert window.config.max_unique_queries == DEFAULT_MAX_UNIQUE_QUERIES


def test_rejects_when_global_cardinality_limit_is_reached():
    now = fixed_now()
    window = limited_window(max_unique_queries=2)

    for query in ("a", "b"):
        assert window.add_at(Event(query, now), now).accepted

    result = window.add_at(Event("c", now), now)
    assert not result.accepted
    assert result.reason is DropReason.CARDINALITY_LIMIT

    assert window.add_at(Event("a", now), now).accepted


def test_rejects_when_bucket_cardinality_limit_is_reached():
    now = fixed_now()
    window = limited_window(max_unique_queries_per_bucket=2)

    for query in ("a", "b"):
        assert window.add_at(Event(query, now), now).accepted

    result = window.add_at(Event("c", now), now)
    assert not result.accepted
    assert result.reason is DropReason.BUCKET_CARDINALITY_LIMIT

    later = now + SECOND
    assert window.add_at(Event("c", later), later).accepted


def test_rejects_when_per_actor_query_limit_is_reached():
    now = fixed_now()
    window = limited_window(per_actor_query_limit=2)

    for i in range(2):
        result = window.add_at(Event("iphone", now + i * SECOND, "actor-1"), now)
        assert result.accepted, result.reason

    result = window.add_at(Event("iphone", now + 2 * SECOND, "actor-1"), now)
    assert not result.accepted
    assert result.reason is DropReason.ACTOR_QUERY_LIMIT

    result = window.add_at(Event("iphone", now + 3 * SECOND, "actor-2"), now)
    assert result.accepted


def test_actor_counters_expire():
    now = fixed_now()
    window = limited_window(per_actor_query_limit=2)

    result = window.add_at(Event("iphone", now - DEFAULT_WINDOW_SIZE + SECOND, "actor-1"), now)
    assert result.accepted

    assert window.actor_count_at("iphone", "actor-1", now) == 1

    later = now + 2 * SECOND
    assert window.actor_count_at("iphone", "actor-1", later) == 0
    assert window.actor_counters_at(later) == 0


def test_window_events_counts_all_accepted_events():
    now = fixed_now()
    window = Window()

    for query in ("a", "a", "b"):
        assert window.add_at(Event(query, now - SECOND), now).accepted

    assert window.window_events_at(now) == 3
    assert window.unique_queries_at(now) == 2


def test_filter_excludes_items():
    now = fixed_now()
    window = Window()
    for query in ("a", "b", "c"):
        assert window.add_at(Event(query, now), now).accepted

    items = window.top_filtered_at(10, now, lambda item: item.query != "b")

    assert items == [Item("a", 1), Item("c", 1)]