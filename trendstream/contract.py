"""The search event message and its validation rules."""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

SEARCH_EVENT_SCHEMA_VERSION = 1
MAX_QUERY_RUNES = 256
MAX_FUTURE_SKEW = timedelta(seconds=10)

_SPACE_CHARS = (
    "\t\n\v\f\r \x85\xa0\u1680"
    "\u2000\u2001\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a"
    "\u2028\u2029\u202f\u205f\u3000"
)

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_ZERO_TIME_TEXT = "0001-01-01T00:00:00Z"
_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})"
)
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_OPTIONAL_STRINGS = (
    "user_id_hash",
    "session_id",
    "device_id_hash",
    "ip_hash",
    "user_agent_hash",
    "region",
    "locale",
    "platform",
)


@dataclass
class SearchEvent:
    """One search performed by a user, as carried on the wire."""

    schema_version: int = 0
    event_id: str = ""
    occurred_at: datetime | None = None
    query: str = ""

    user_id_hash: str = ""
    session_id: str = ""
    device_id_hash: str = ""
    ip_hash: str = ""
    user_agent_hash: str = ""

    region: str = ""
    locale: str = ""
    platform: str = ""

    is_bot: bool = False

    def actor_key(self) -> str:
        """The strongest identity signal present, or an empty string."""
        return (
            self.user_id_hash
            or self.device_id_hash
            or self.ip_hash
            or self.session_id
            or ""
        )

    def to_mapping(self) -> dict[str, Any]:
        """JSON-ready mapping; empty optional fields are left out."""
        data: dict[str, Any] = {
            "schema_version": self.schema_version,
            "event_id": self.event_id,
            "occurred_at": _format_rfc3339(self.occurred_at),
            "query": self.query,
        }
        for name in _OPTIONAL_STRINGS:
            value = getattr(self, name)
            if value:
                data[name] = value
        if self.is_bot:
            data["is_bot"] = True
        return data

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SearchEvent":
        """Build an event from a decoded JSON object.

        Keys match field names case-insensitively, unknown keys are ignored
        and null values leave a field at its default. Raises ValueError on
        values of the wrong type.
        """
        if not isinstance(data, Mapping):
            raise ValueError("search event must be a JSON object")

        values: dict[str, Any] = {}
        for key, value in data.items():
            name = key.lower() if isinstance(key, str) else None
            converter = _FIELD_CONVERTERS.get(name) if name else None
            if converter is None or value is None:
                continue
            values[name] = converter(name, value)

        return cls(**values)


class ValidationReason(str, Enum):
    """Why an event failed validation."""

    UNSUPPORTED_SCHEMA_VERSION = "unsupported_schema_version"
    MISSING_EVENT_ID = "missing_event_id"
    MISSING_OCCURRED_AT = "missing_occurred_at"
    MISSING_QUERY = "missing_query"
    QUERY_TOO_LONG = "query_too_long"
    EVENT_FROM_FUTURE = "event_from_future"


class ValidationError(ValueError):
    """An event that breaks the contract."""

    def __init__(self, reason: ValidationReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


def validate(event: SearchEvent) -> SearchEvent:
    """Validate against the current time; see ``validate_at``."""
    return validate_at(event, datetime.now(timezone.utc))


def validate_at(event: SearchEvent, now: datetime) -> SearchEvent:
    """Return the event unchanged if valid, else raise ValidationError."""
    if event.schema_version != SEARCH_EVENT_SCHEMA_VERSION:
        raise ValidationError(
            ValidationReason.UNSUPPORTED_SCHEMA_VERSION,
            f"unsupported schema version: got {event.schema_version}, "
            f"want {SEARCH_EVENT_SCHEMA_VERSION}",
        )

    if not event.event_id.strip(_SPACE_CHARS):
        raise ValidationError(ValidationReason.MISSING_EVENT_ID, "event_id is required")

    if event.occurred_at is None or _as_utc(event.occurred_at) == _ZERO_TIME:
        raise ValidationError(
            ValidationReason.MISSING_OCCURRED_AT, "occurred_at is required"
        )

    query = event.query.strip(_SPACE_CHARS)
    if not query:
        raise ValidationError(ValidationReason.MISSING_QUERY, "query is required")

    if len(query) > MAX_QUERY_RUNES:
        raise ValidationError(
            ValidationReason.QUERY_TOO_LONG,
            f"query is too long: max {MAX_QUERY_RUNES} runes",
        )

    if _as_utc(event.occurred_at) > _as_utc(now) + MAX_FUTURE_SKEW:
        raise ValidationError(
            ValidationReason.EVENT_FROM_FUTURE,
            "occurred_at is too far in the future: max skew is "
            f"{int(MAX_FUTURE_SKEW.total_seconds())}s",
        )

    return event


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _format_rfc3339(moment: datetime | None) -> str:
    if moment is None:
        return _ZERO_TIME_TEXT
    moment = _as_utc(moment)
    text = (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"
        f"T{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )
    if moment.microsecond:
        text += "." + f"{moment.microsecond:06d}".rstrip("0")

    offset = moment.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        return text + "Z"
    sign = "+" if offset > timedelta(0) else "-"
    minutes = int(abs(offset).total_seconds()) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _parse_rfc3339(text: str) -> datetime | None:
    match = _RFC3339.fullmatch(text)
    if match is None:
        raise ValueError(f"occurred_at is not an RFC 3339 timestamp: {text!r}")

    year, month, day, hour, minute, second, fraction, zone = match.groups()
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = 1 if zone[0] == "+" else -1
        hours, minutes = int(zone[1:3]), int(zone[4:6])
        if hours > 23 or minutes > 59:
            raise ValueError(f"occurred_at has an invalid offset: {text!r}")
        tz = timezone(sign * timedelta(hours=hours, minutes=minutes))

    microsecond = int((fraction or "")[:6].ljust(6, "0"))
    try:
        moment = datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second), microsecond, tzinfo=tz,
        )
    except ValueError as exc:
        raise ValueError(f"occurred_at is out of range: {text!r}") from exc

    return None if moment == _ZERO_TIME else moment


def _convert_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"{name} is out of range")
    return value


def _convert_str(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    return value


def _convert_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be a boolean")
    return value


def _convert_time(name: str, value: Any) -> datetime | None:
    return _parse_rfc3339(_convert_str(name, value))


_FIELD_CONVERTERS: dict[str, Callable[[str, Any], Any]] = {
    "schema_version": _convert_int,
    "event_id": _convert_str,
    "occurred_at": _convert_time,
    "query": _convert_str,
    **{name: _convert_str for name in _OPTIONAL_STRINGS},
    "is_bot": _convert_bool,
}