"""Per-name mutual exclusion for mutating operations."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

HIERARCHY_KEY = "\x00hierarchy"


@dataclass
class _Slot:
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


class KeyedLock:
    """Hand out one re-entrant lock per key.

    ``hold`` acquires every requested key in sorted order so two callers that
    share keys cannot deadlock. A key's lock lives only while some caller is
    holding or waiting for it, so the map stays as small as the set of keys
    currently in use.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._slots: dict[str, _Slot] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)

    def _checkout(self, key: str) -> _Slot:
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot()
            slot.users += 1
            return slot

    def _checkin(self, key: str, slot: _Slot) -> None:
        with self._guard:
            slot.users -= 1
            if slot.users == 0:
                del self._slots[key]

    @contextmanager
    def hold(self, *keys: str | None) -> Iterator[None]:
        ordered = sorted({key for key in keys if key})
        held: list[tuple[str, _Slot]] = []
        try:
            for key in ordered:
                slot = self._checkout(key)
                try:
                    slot.lock.acquire()
                except BaseException:
                    self._checkin(key, slot)
                    raise
                held.append((key, slot))
            yield
        finally:
            for key, slot in reversed(held):
                slot.lock.release()
                self._checkin(key, slot)


__all__ = ["HIERARCHY_KEY", "KeyedLock"]
