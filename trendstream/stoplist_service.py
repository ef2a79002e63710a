"""Stop-list that persists every change before publishing it."""

from __future__ import annotations

import threading
from typing import Protocol

from .stoplist import StopList, normalize_term


class _Store(Protocol):
    def load(self) -> list[str]: ...

    def save(self, terms: list[str]) -> None: ...


class StopListService:
    """Reads and edits the stop-list, saving to a store on each change."""

    def __init__(self, store: _Store) -> None:
        terms = store.load()
        self._store = store
        self._list = StopList(terms)
        self._lock = threading.Lock()

    def contains(self, raw_term: str) -> bool:
        """True if the term is blocked."""
        return self._list.contains(raw_term)

    def terms(self) -> list[str]:
        """All terms, sorted."""
        return self._list.terms()

    def add(self, raw_term: str) -> tuple[str, bool]:
        """Add a term; return it normalized and whether the list changed.

        Raises EmptyTermError for an empty term and whatever the store raises
        on a failed save, in which case nothing is published.
        """
        term = normalize_term(raw_term)
        with self._lock:
            current = self._list.terms()
            if term in current:
                return term, False
            updated = [*current, term]
            self._store.save(updated)
            self._list.replace(updated)
        return term, True

    def remove(self, raw_term: str) -> tuple[str, bool]:
        """Remove a term; return it normalized and whether the list changed."""
        term = normalize_term(raw_term)
        with self._lock:
            current = self._list.terms()
            if term not in current:
                return term, False
            updated = [existing for existing in current if existing != term]
            self._store.save(updated)
            self._list.replace(updated)
        return term, True