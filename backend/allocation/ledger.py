from __future__ import annotations

from typing import Iterable, Protocol


class _Section(Protocol):
    section_id: str
    max_capacity: int


class CapacityLedger:
    """Running fill counts for the sections of one subject.

    Sections keep their definition order; that order breaks ties in
    `best_fallback`. Counts may exceed `max_capacity` when a caller takes a
    seat in a full section, and `overfilled()` reports by how much.
    """

    def __init__(self, sections: Iterable[_Section]):
        self._order: list[str] = []
        self._max: dict[str, int] = {}
        self._count: dict[str, int] = {}
        for s in sections:
            sid = str(s.section_id)
            if sid in self._max:
                raise ValueError(f"Duplicate section {sid!r} in capacity ledger")
            self._order.append(sid)
            self._max[sid] = int(s.max_capacity)
            self._count[sid] = 0

    def __contains__(self, section_id: object) -> bool:
        return section_id in self._max

    def __len__(self) -> int:
        return len(self._order)

    @property
    def section_ids(self) -> list[str]:
        return list(self._order)

    def capacity(self, section_id: str) -> int:
        return self._max[section_id]

    def count(self, section_id: str) -> int:
        return self._count[section_id]

    def remaining(self, section_id: str) -> int:
        return self._max[section_id] - self._count[section_id]

    def has_room(self, section_id: str) -> bool:
        if section_id not in self._max:
            return False
        return self._count[section_id] < self._max[section_id]

    def take(self, section_id: str) -> int:
        self._count[section_id] += 1
        return self._count[section_id]

    def best_fallback(self) -> str | None:
        """Section with the largest remaining capacity; earliest defined wins ties.

        Remaining capacity may be zero or negative: the caller decides whether
        to overfill. Returns None only when the ledger has no sections.
        """

        best: str | None = None
        best_space = 0
        for sid in self._order:
            space = self._max[sid] - self._count[sid]
            if best is None or space > best_space:
                best = sid
                best_space = space
        return best

    def total_capacity(self) -> int:
        return sum(self._max.values())

    def counts(self) -> dict[str, int]:
        return {sid: self._count[sid] for sid in self._order}

    def overfilled(self) -> dict[str, int]:
        return {
            sid: self._count[sid] - self._max[sid]
            for sid in self._order
            if self._count[sid] > self._max[sid]
        }
