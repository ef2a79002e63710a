"""Canonical form of search queries."""

import unicodedata

# Characters treated as white space: the Unicode White_Space set.
_SPACE_CHARS = (
    "\t\n\v\f\r \x85\xa0\u1680"
    "\u2000\u2001\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a"
    "\u2028\u2029\u202f\u205f\u3000"
)


def _lower(char: str) -> str:
    lowered = char.lower()
    return lowered[0] if lowered else char


def normalize_query(raw: str) -> str | None:
    """Lower-case, collapse white space and drop control characters.

    Returns ``None`` when nothing is left.
    """
    raw = raw.strip(_SPACE_CHARS)
    if not raw:
        return None

    parts: list[str] = []
    previous_was_space = False

    for char in raw:
        if char in _SPACE_CHARS:
            if parts and not previous_was_space:
                parts.append(" ")
                previous_was_space = True
            continue

        if unicodedata.category(char) == "Cc":
            continue

        parts.append(_lower(char))
        previous_was_space = False

    normalized = "".join(parts).strip(_SPACE_CHARS)
    return normalized or None