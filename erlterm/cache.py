"""Atom caches used when encoding terms for a distribution link."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Iterator, Optional

from erlterm.types import Atom

MAX_CACHE_ITEMS = 2048
_LONG_ATOM_BYTES = 255


class AtomCache:
    """A link-wide cache assigning sequential ids to atoms.

    Slots that hold no atom yet are None.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids: dict[Atom, int] = {}
        self._slots: list[Optional[Atom]] = [None] * MAX_CACHE_ITEMS
        self._last_id = -1

    def append(self, atom: str) -> None:
        """Add an atom; duplicates and atoms beyond the capacity are ignored."""
        atom = atom if type(atom) is Atom else Atom(atom)
        with self._lock:
            if atom in self._ids:
                return
            new_id = self._last_id + 1
            if new_id >= MAX_CACHE_ITEMS:
                return
            self._ids[atom] = new_id
            self._slots[new_id] = atom
            self._last_id = new_id

    def last_id(self) -> int:
        """Return the id of the last added atom, or -1 if none was added."""
        with self._lock:
            return self._last_id

    def list(self) -> list:
        """Return a copy of all cache slots."""
        with self._lock:
            return list(self._slots)

    def list_since(self, start: int) -> list:
        """Return the cache slots from ``start`` to the end."""
        with self._lock:
            return self._slots[start:]


@dataclass(frozen=True)
class CacheItem:
    """One atom as referenced in the atom cache of a message."""

    id: int
    encoded: bool
    name: Atom


@dataclass
class ListAtomCache:
    """The atom cache references collected while encoding one message."""

    items: list = field(default_factory=list)
    has_long_atom: bool = False

    def append(self, item: CacheItem) -> None:
        """Add an item, noting whether a new atom is longer than 255 bytes."""
        self.items.append(item)
        if not item.encoded and len(str(item.name).encode("utf-8")) > _LONG_ATOM_BYTES:
            self.has_long_atom = True

    def reset(self) -> None:
        """Remove every item and clear the long-atom flag."""
        self.items.clear()
        self.has_long_atom = False

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[CacheItem]:
        return iter(self.items)