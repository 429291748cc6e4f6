from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from allocation.ledger import CapacityLedger


logger = logging.getLogger(__name__)


class UnallocatableStudentError(RuntimeError):
    """Raised when a student cannot be seated without exceeding a section's capacity."""

    def __init__(self, student_id: str, *, subject: Any = None, message: str | None = None):
        self.student_id = student_id
        self.subject = subject
        super().__init__(message or f"No section with free capacity for student {student_id!r} (subject={subject})")


@dataclass(frozen=True)
class PreferenceRow:
    student_id: str
    preferred_section_id: str
    preference_order: int


@dataclass(frozen=True)
class SectionSlot:
    section_id: str
    max_capacity: int


@dataclass
class AllocationResult:
    # student_id -> section_id, in processing order
    assignments: dict[str, str] = field(default_factory=dict)
    fallback_students: set[str] = field(default_factory=set)
    counts: dict[str, int] = field(default_factory=dict)
    overfilled: dict[str, int] = field(default_factory=dict)


def allocate_subject(
    preferences: Sequence[PreferenceRow],
    sections: Sequence[SectionSlot],
    *,
    overfill: bool = True,
    subject: Any = None,
) -> AllocationResult:
    """Assign every preference row of one subject to exactly one section.

    Rows are served in ascending `preference_order`; equal orders keep their
    input order. A student gets the preferred section while it has room,
    otherwise the section with the largest remaining capacity (earliest
    defined on ties). With `overfill=True` that fallback is taken even when
    every section is already full, so `count <= max_capacity` only holds
    while total demand fits total capacity. With `overfill=False` such a
    student raises UnallocatableStudentError instead.
    """

    ledger = CapacityLedger(sections)
    result = AllocationResult()

    # sorted() is stable: ties keep insertion order.
    ordered = sorted(preferences, key=lambda p: int(p.preference_order))

    if ordered and not len(ledger):
        raise UnallocatableStudentError(
            ordered[0].student_id,
            subject=subject,
            message=f"Subject {subject} has preferences but no sections",
        )

    for pref in ordered:
        student_id = str(pref.student_id)
        if student_id in result.assignments:
            raise ValueError(f"Student {student_id!r} has more than one preference row for subject {subject}")

        preferred = str(pref.preferred_section_id)
        if ledger.has_room(preferred):
            ledger.take(preferred)
            result.assignments[student_id] = preferred
            continue

        target = ledger.best_fallback()
        if target is None:
            raise UnallocatableStudentError(student_id, subject=subject)
        if ledger.remaining(target) <= 0 and not overfill:
            raise UnallocatableStudentError(student_id, subject=subject)

        ledger.take(target)
        result.assignments[student_id] = target
        result.fallback_students.add(student_id)
        logger.debug(
            "Fallback assignment subject=%s student=%s preferred=%s assigned=%s",
            subject,
            student_id,
            preferred,
            target,
        )

    result.counts = ledger.counts()
    result.overfilled = ledger.overfilled()
    if result.overfilled:
        logger.warning(
            "Subject %s oversubscribed: %d preferences for %d seats; overfilled sections=%s",
            subject,
            len(ordered),
            ledger.total_capacity(),
            result.overfilled,
        )
    return result
