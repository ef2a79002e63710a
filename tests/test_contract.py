from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from trendstream.contract import (
    MAX_FUTURE_SKEW,
    MAX_QUERY_RUNES,
    SEARCH_EVENT_SCHEMA_VERSION,
    SearchEvent,
    ValidationError,
    ValidationReason,
    validate_at,
)

UTC = timezone.utc


def fixed_time():
    return datetime(2026, 5, 23, 9, 0, 0, tzinfo=UTC)


def valid_event(now):
    return SearchEvent(
        schema_version=SEARCH_EVENT_SCHEMA_VERSION,
        event_id="event-1",
        occurred_at=now - timedelta(seconds=1),
        query="iphone 15",
        user_id_hash="user-hash",
    )


def require_reason(event, now, reason):
    with pytest.raises(ValidationError) as info:
        validate_at(event, now)
    assert info.value.reason is reason


def test_validate_at_accepts_valid_event():
    now = fixed_time()
    event = valid_event(now)
    assert validate_at(event, now) is event


def test_validate_at_rejects_unsupported_schema_version():
    now = fixed_time()
    event = replace(valid_event(now), schema_version=2)
    with pytest.raises(ValidationError) as info:
        validate_at(event, now)
    assert info.value.reason is ValidationReason.UNSUPPORTED_SCHEMA_VERSION
    assert str(info.value) == "unsupported schema version: got 2, want 1"


def test_validate_at_rejects_missing_event_id():
    now = fixed_time()
    require_reason(replace(valid_event(now), event_id=" "), now, ValidationReason.MISSING_EVENT_ID)


def test_validate_at_rejects_missing_occurred_at():
    now = fixed_time()
    require_reason(
        replace(valid_event(now), occurred_at=None), now, ValidationReason.MISSING_OCCURRED_AT
    )


def test_validate_at_rejects_zero_occurred_at():
    now = fixed_time()
    zero = datetime(1, 1, 1, tzinfo=UTC)
    require_reason(
        replace(valid_event(now), occurred_at=zero), now, ValidationReason.MISSING_OCCURRED_AT
    )


def test_validate_at_rejects_missing_query():
    now = fixed_time()
    require_reason(replace(valid_event(now), query=" \t\n "), now, ValidationReason.MISSING_QUERY)


def test_validate_at_rejects_too_long_query():
    now = fixed_time()
    event = replace(valid_event(now), query="я" * (MAX_QUERY_RUNES + 1))
    require_reason(event, now, ValidationReason.QUERY_TOO_LONG)


def test_validate_at_accepts_query_at_max_length():
    now = fixed_time()
    event = replace(valid_event(now), query="я" * MAX_QUERY_RUNES)
    assert validate_at(event, now) is event


def test_validate_at_rejects_event_too_far_in_future():
    now = fixed_time()
    event = replace(valid_event(now), occurred_at=now + MAX_FUTURE_SKEW + timedelta(seconds=1))
    with pytest.raises(ValidationError) as info:
        validate_at(event, now)
    assert info.value.reason is ValidationReason.EVENT_FROM_FUTURE
    assert str(info.value) == "occurred_at is too far in the future: max skew is 10s"


def test_validate_at_accepts_event_at_future_skew_boundary():
    now = fixed_time()
    event = replace(valid_event(now), occurred_at=now + MAX_FUTURE_SKEW)
    assert validate_at(event, now) is event


@pytest.mark.parametrize(
    "event, expected",
    [
        pytest.param(
            SearchEvent(
                user_id_hash="user", device_id_hash="device", ip_hash="ip", session_id="session"
            ),
            "user",
            id="user-first",
        ),
        pytest.param(
            SearchEvent(device_id_hash="device", ip_hash="ip", session_id="session"),
            "device",
            id="device-second",
        ),
        pytest.param(SearchEvent(ip_hash="ip", session_id="session"), "ip", id="ip-third"),
        pytest.param(SearchEvent(session_id="session"), "session", id="session-fallback"),
        pytest.param(SearchEvent(), "", id="none"),
    ],
)
def test_search_event_actor_key(event, expected):
    assert event.actor_key() == expected


def test_to_mapping_omits_empty_optional_fields():
    event = SearchEvent(
        schema_version=1,
        event_id="event-1",
        occurred_at=datetime(2026, 5, 23, 12, 0, 0, tzinfo=UTC),
        query="iphone",
    )
    assert event.to_mapping() == {
        "schema_version": 1,
        "event_id": "event-1",
        "occurred_at": "2026-05-23T12:00:00Z",
        "query": "iphone",
    }


def test_to_mapping_formats_offset_and_fraction():
    moment = datetime(2026, 5, 23, 12, 0, 0, 120000, tzinfo=timezone(timedelta(hours=3)))
    mapping = SearchEvent(occurred_at=moment, is_bot=True).to_mapping()
    assert mapping["occurred_at"] == "2026-05-23T12:00:00.12+03:00"
    assert mapping["is_bot"] is True


def test_to_mapping_writes_zero_time_for_missing_timestamp():
    assert SearchEvent().to_mapping()["occurred_at"] == "0001-01-01T00:00:00Z"


def test_mapping_round_trip():
    event = SearchEvent(
        schema_version=1,
        event_id="event-7",
        occurred_at=datetime(2026, 5, 23, 8, 59, 59, 123000, tzinfo=UTC),
        query="ноутбук",
        user_id_hash="u",
        session_id="s",
        device_id_hash="d",
        ip_hash="i",
        user_agent_hash="a",
        region="local",
        locale="ru-RU",
        platform="web",
        is_bot=True,
    )
    assert SearchEvent.from_mapping(event.to_mapping()) == event


def test_from_mapping_matches_keys_case_insensitively_and_ignores_unknown():
    event = SearchEvent.from_mapping({"Query": "iphone", "extra": 5, "region": None})
    assert event == SearchEvent(query="iphone")


def test_from_mapping_truncates_nanoseconds():
    event = SearchEvent.from_mapping({"occurred_at": "2026-05-23T12:00:00.123456789Z"})
    assert event.occurred_at == datetime(2026, 5, 23, 12, 0, 0, 123456, tzinfo=UTC)


def test_from_mapping_treats_zero_time_as_missing():
    event = SearchEvent.from_mapping({"occurred_at": "0001-01-01T00:00:00Z"})
    assert event.occurred_at is None


@pytest.mark.parametrize(
    "data",
    [
        {"schema_version": "1"},
        {"schema_version": 1.5},
        {"schema_version": True},
        {"query": 42},
        {"is_bot": "yes"},
        {"occurred_at": "2026-05-23 12:00:00"},
        {"occurred_at": "2026-13-23T12:00:00Z"},
    ],
)
def test_from_mapping_rejects_wrong_types(data):
    with pytest.raises(ValueError):
        SearchEvent.from_mapping(data)


def test_from_mapping_rejects_non_mapping():
    with pytest.raises(ValueError, match="JSON object"):
        SearchEvent.from_mapping([1, 2])