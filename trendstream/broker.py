"""Message broker consumer settings and payload decoding."""

import json
import re
from dataclasses import dataclass, field

from .contract import SearchEvent

_SPACE_CHARS = (
    "\t\n\v\f\r \x85\xa0\u1680"
    "\u2000\u2001\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a"
    "\u2028\u2029\u202f\u205f\u3000"
)
_JSON_WHITESPACE = re.compile(r"[ \t\n\r]*")


class ConsumerConfigError(ValueError):
    """The consumer settings are incomplete."""


class DecodeError(ValueError):
    """A message payload could not be turned into a search event."""


class EmptyPayloadError(DecodeError):
    """The payload holds nothing but white space."""


class MultipleJSONValuesError(DecodeError):
    """The payload holds more than one JSON value."""


@dataclass
class ConsumerConfig:
    """Where and as whom the consumer reads."""

    brokers: list[str] = field(default_factory=list)
    topic: str = ""
    group_id: str = ""
    client_id: str = ""

    def validate(self) -> None:
        """Raise ConsumerConfigError if a required setting is missing."""
        if not self.brokers:
            raise ConsumerConfigError("kafka brokers are required")
        if not self.topic:
            raise ConsumerConfigError("kafka topic is required")
        if not self.group_id:
            raise ConsumerConfigError("kafka group id is required")


def _reject_constant(name: str) -> None:
    raise ValueError(f"invalid JSON constant {name}")


_DECODER = json.JSONDecoder(parse_constant=_reject_constant)


def decode_search_event(payload: bytes | bytearray | memoryview | str) -> SearchEvent:
    """Decode exactly one JSON search event from a message payload."""
    if isinstance(payload, str):
        text = payload
    else:
        text = bytes(payload).decode("utf-8", errors="replace")

    if not text.strip(_SPACE_CHARS):
        raise EmptyPayloadError("empty kafka message payload")

    start = _JSON_WHITESPACE.match(text).end()
    try:
        value, end = _DECODER.raw_decode(text, start)
        event = SearchEvent() if value is None else SearchEvent.from_mapping(value)
    except ValueError as exc:
        raise DecodeError(f"decode search event: {exc}") from exc

    rest = _JSON_WHITESPACE.match(text, end).end()
    if rest == len(text):
        return event

    try:
        _DECODER.raw_decode(text, rest)
    except ValueError as exc:
        raise DecodeError(f"decode trailing payload: {exc}") from exc

    raise MultipleJSONValuesError("payload contains multiple json values")