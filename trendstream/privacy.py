"""Heuristics that keep personal data out of the trends."""

import re
from dataclasses import dataclass
from enum import Enum

_SPACE_CHARS = (
    "\t\n\v\f\r \x85\xa0\u1680"
    "\u2000\u2001\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a"
    "\u2028\u2029\u202f\u205f\u3000"
)

_EMAIL_PATTERN = re.compile(
    r"\b[a-z0-9._%+\-]+@[a-z0-9.\-]+\.[a-z]{2,}\b",
    re.IGNORECASE | re.ASCII,
)
_LONG_DIGIT_RUN_PATTERN = re.compile(r"[0-9]{9,}")

_PHONE_MARKERS = ("тел", "телефон", "phone", "mobile", "номер телефона")
_PHONE_PUNCTUATION = frozenset("+-().")


class Rule(str, Enum):
    """The rule that flagged a query."""

    NONE = ""
    EMAIL = "email"
    LIKELY_CARD = "likely_card"
    LONG_DIGIT_RUN = "long_digit_run"
    LIKELY_PHONE = "likely_phone"
    HIGH_DIGIT_RATIO = "high_digit_ratio"


@dataclass(frozen=True)
class InspectionResult:
    """Outcome of inspecting one query."""

    sensitive: bool = False
    rule: Rule = Rule.NONE


@dataclass(frozen=True)
class _CharStats:
    runes: int
    digits: int
    letters: int


def contains_sensitive_data(query: str) -> bool:
    """Return True if the query looks like it carries personal data."""
    return inspect(query).sensitive


def inspect(query: str) -> InspectionResult:
    """Check a query against every rule, in order, and report the first hit."""
    query = query.strip(_SPACE_CHARS)
    if not query:
        return InspectionResult()

    if _EMAIL_PATTERN.search(query):
        return InspectionResult(True, Rule.EMAIL)

    digits = "".join(char for char in query if "0" <= char <= "9")
    if 13 <= len(digits) <= 19 and _luhn_valid(digits):
        return InspectionResult(True, Rule.LIKELY_CARD)

    if _LONG_DIGIT_RUN_PATTERN.search(query):
        return InspectionResult(True, Rule.LONG_DIGIT_RUN)

    stats = _character_stats(query)

    if _looks_like_phone(query, stats):
        return InspectionResult(True, Rule.LIKELY_PHONE)

    if _has_high_digit_ratio(stats):
        return InspectionResult(True, Rule.HIGH_DIGIT_RATIO)

    return InspectionResult()


def _character_stats(text: str) -> _CharStats:
    digits = sum(1 for char in text if char.isdecimal())
    letters = sum(1 for char in text if not char.isdecimal() and char.isalpha())
    return _CharStats(runes=len(text), digits=digits, letters=letters)


def _looks_like_phone(query: str, stats: _CharStats) -> bool:
    if not 10 <= stats.digits <= 15:
        return False
    if any(marker in query for marker in _PHONE_MARKERS):
        return True
    if any(char.isalpha() for char in query):
        return False
    return all(
        char.isdecimal() or char in _SPACE_CHARS or char in _PHONE_PUNCTUATION
        for char in query
    )


def _has_high_digit_ratio(stats: _CharStats) -> bool:
    if stats.runes == 0 or stats.digits < 10:
        return False
    return stats.digits / stats.runes >= 0.40


def _luhn_valid(digits: str) -> bool:
    if not 13 <= len(digits) <= 19:
        return False

    total = 0
    for position, char in enumerate(reversed(digits)):
        digit = int(char)
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit

    return total % 10 == 0