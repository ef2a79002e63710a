"""Stop-list of unwanted query terms and its JSON file storage."""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .normalize import normalize_query

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


class EmptyTermError(ValueError):
    """A stop-list term has nothing left after normalization."""

    def __init__(self) -> None:
        super().__init__("stop-list term is empty after normalization")


def normalize_term(raw_term: str) -> str:
    """Normalize a term the way queries are normalized, or raise EmptyTermError."""
    term = normalize_query(raw_term)
    if term is None:
        raise EmptyTermError()
    return term


@dataclass
class StopListSnapshot:
    """Exact phrase rules and single-word rules at one moment."""

    exact: set[str] = field(default_factory=set)
    tokens: set[str] = field(default_factory=set)

    def contains_normalized(self, term: str) -> bool:
        """True if the already normalized term is blocked."""
        if term in self.exact:
            return True
        return any(token in self.tokens for token in term.split())

    def clone(self) -> "StopListSnapshot":
        """An independent copy."""
        return StopListSnapshot(exact=set(self.exact), tokens=set(self.tokens))


class StopList:
    """A replaceable set of stop-list rules, safe for concurrent readers."""

    def __init__(self, terms: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._current = StopListSnapshot()
        self.replace(terms)

    def contains(self, raw_term: str) -> bool:
        """True if the term, once normalized, is blocked."""
        term = normalize_query(raw_term)
        if term is None:
            return False
        return self._current.contains_normalized(term)

    def terms(self) -> list[str]:
        """All exact rules, sorted."""
        return sorted(self._current.exact)

    def replace(self, raw_terms: Iterable[str]) -> None:
        """Swap in a new set of rules built from ``raw_terms``."""
        updated = _build_snapshot(raw_terms)
        with self._lock:
            self._current = updated

    def snapshot(self) -> StopListSnapshot:
        """A copy of the current rules."""
        return self._current.clone()


class FileStore:
    """Keeps the stop-list as a JSON document on disk."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def load(self) -> list[str]:
        """Read the normalized, sorted terms; a missing file means none."""
        try:
            payload = self.path.read_bytes()
        except FileNotFoundError:
            return []
        return _unique_sorted(_terms_from(json.loads(payload)))

    def save(self, terms: Iterable[str]) -> None:
        """Write the normalized, sorted terms atomically."""
        payload = _encode({"terms": _unique_sorted(terms)})

        directory = self.path.parent
        directory.mkdir(mode=0o755, parents=True, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(prefix=".stoplist-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, self.path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(temp_path)
            raise


def _build_snapshot(raw_terms: Iterable[str]) -> StopListSnapshot:
    snapshot = StopListSnapshot()
    for raw_term in raw_terms:
        term = normalize_query(raw_term)
        if term is None:
            continue
        snapshot.exact.add(term)
        # A single word suppresses every query containing it; longer phrases
        # only match exactly so that broad words are not hidden by accident.
        words = term.split()
        if len(words) == 1:
            snapshot.tokens.add(words[0])
    return snapshot


def _unique_sorted(raw_terms: Iterable[str]) -> list[str]:
    normalized = set()
    for raw_term in raw_terms:
        term = normalize_query(raw_term)
        if term is not None:
            normalized.add(term)
    return sorted(normalized)


def _terms_from(data: Any) -> list[str]:
    if data is None:
        return []
    if not isinstance(data, dict):
        raise ValueError("stop-list file must hold a JSON object")

    value: Any = None
    for key, item in data.items():
        if key.lower() == "terms":
            value = item
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError("stop-list terms must be a JSON array")

    terms = []
    for item in value:
        if item is None:
            terms.append("")
        elif isinstance(item, str):
            terms.append(item)
        else:
            raise ValueError("stop-list terms must be strings")
    return terms


def _encode(data: dict[str, Any]) -> bytes:
    text = json.dumps(data, indent=2, ensure_ascii=False)
    for char, escaped in _HTML_ESCAPES.items():
        text = text.replace(char, escaped)
    return (text + "\n").encode("utf-8")