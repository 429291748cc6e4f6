from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy import distinct, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.db import supports_row_locks
from models.allocation_cycle import AllocationCycle
from models.section_capacity import SectionCapacity
from models.student_preference import StudentPreference
from models.student_submission import StudentSubmission
from models.subject_offering import SubjectOffering
from services.errors import (
    AlreadySubmittedError,
    CbcsError,
    CycleAlreadyFinalizedError,
    CycleNotFoundError,
    ValidationError,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selection:
    subject_id: uuid.UUID | str
    preferred_section_id: str
    preferred_staff_id: str | None = None


def lock_cycle(db: Session, cycle_id: uuid.UUID) -> AllocationCycle:
    """Load the cycle row under a shared lock (where supported).

    Submissions hold it together; the OPEN -> FINALIZING update waits for them.
    """

    q = select(AllocationCycle).where(AllocationCycle.id == cycle_id)
    if supports_row_locks(db):
        q = q.with_for_update(read=True)
    cycle = db.execute(q).scalar_one_or_none()
    if cycle is None:
        raise CycleNotFoundError(f"Unknown cycle {cycle_id}")
    return cycle


def submitter_count_subquery(cycle_id_column):
    return (
        select(func.count(distinct(StudentPreference.student_id)))
        .where(StudentPreference.cycle_id == cycle_id_column)
        .scalar_subquery()
    )


def count_distinct_submitters(db: Session, cycle_id: uuid.UUID) -> int:
    q = select(func.count(distinct(StudentPreference.student_id))).where(StudentPreference.cycle_id == cycle_id)
    return int(db.execute(q).scalar_one() or 0)


def has_submitted(db: Session, *, cycle_id: uuid.UUID, student_id: str) -> bool:
    q = (
        select(StudentSubmission.id)
        .where(StudentSubmission.cycle_id == cycle_id)
        .where(StudentSubmission.student_id == student_id)
        .limit(1)
    )
    return db.execute(q).first() is not None


def _as_subject_id(value: uuid.UUID | str) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except ValueError:
        return None


def _validate_selections(db: Session, cycle: AllocationCycle, selections: Sequence[Selection]) -> list[uuid.UUID]:
    """Check every selection against the cycle; returns the resolved subject ids in order."""

    errors: list[str] = []

    if not selections:
        raise ValidationError("At least one selection is required.", code="NO_SELECTIONS")

    subject_ids = set(
        db.execute(select(SubjectOffering.id).where(SubjectOffering.cycle_id == cycle.id)).scalars().all()
    )
    sections_by_subject: dict[uuid.UUID, dict[str, SectionCapacity]] = defaultdict(dict)
    if subject_ids:
        q_sections = select(SectionCapacity).where(SectionCapacity.subject_id.in_(subject_ids))
        for sc in db.execute(q_sections).scalars().all():
            sections_by_subject[sc.subject_id][str(sc.section_id)] = sc

    resolved: list[uuid.UUID] = []
    seen: set[uuid.UUID] = set()
    for i, sel in enumerate(selections):
        subject_id = _as_subject_id(sel.subject_id)
        if subject_id is None or subject_id not in subject_ids:
            errors.append(f"selections[{i}]: SUBJECT_NOT_IN_CYCLE")
            continue
        if subject_id in seen:
            errors.append(f"selections[{i}]: DUPLICATE_SUBJECT")
            continue
        seen.add(subject_id)
        resolved.append(subject_id)

        section = sections_by_subject[subject_id].get(str(sel.preferred_section_id))
        if section is None:
            errors.append(f"selections[{i}]: SECTION_NOT_IN_SUBJECT")
            continue
        if sel.preferred_staff_id is not None and section.staff_id is not None:
            if str(sel.preferred_staff_id) != str(section.staff_id):
                errors.append(f"selections[{i}]: STAFF_NOT_ASSIGNED_TO_SECTION")

    if errors:
        raise ValidationError(
            "Invalid subject or section reference.",
            code="INVALID_SELECTION",
            details={"errors": errors},
        )
    return resolved


def _ensure_open(cycle: AllocationCycle) -> None:
    if cycle.state != "OPEN":
        raise CycleAlreadyFinalizedError(
            f"Cycle {cycle.id} is {cycle.state}; submissions are closed.",
            details={"state": cycle.state},
        )


def submit(
    db: Session,
    *,
    student_id: str,
    cycle_id: uuid.UUID,
    selections: Sequence[Selection],
) -> list[StudentPreference]:
    """Persist a student's one-time choice set for a cycle.

    The StudentSubmission row is inserted first; its (cycle, student) unique
    key rejects a second choice set on every backend, including two racing
    requests from the same student. Different students only share a read
    lock on the cycle row, so they never wait for each other.
    No allocation happens here.
    """

    student_id = str(student_id or "").strip()
    if not student_id:
        raise ValidationError("Student id is required.", code="INVALID_STUDENT")

    try:
        cycle = lock_cycle(db, cycle_id)
        _ensure_open(cycle)

        if has_submitted(db, cycle_id=cycle.id, student_id=student_id):
            raise AlreadySubmittedError("Choices already submitted.")

        subject_ids = _validate_selections(db, cycle, selections)

        # Concurrent submissions may read the same count; ties fall back to student_id.
        rank = count_distinct_submitters(db, cycle.id) + 1
        db.add(StudentSubmission(cycle_id=cycle.id, student_id=student_id, selection_count=len(selections)))
        db.flush()

        # Without row locks the write lock taken by the flush is what keeps the
        # finalize trigger out, so the state is read again under it.
        if not supports_row_locks(db):
            db.refresh(cycle)
            _ensure_open(cycle)

        rows = [
            StudentPreference(
                cycle_id=cycle.id,
                student_id=student_id,
                subject_id=subject_id,
                preferred_section_id=str(sel.preferred_section_id),
                preferred_staff_id=(str(sel.preferred_staff_id) if sel.preferred_staff_id is not None else None),
                preference_order=i + 1,
                submission_rank=rank,
            )
            for i, (subject_id, sel) in enumerate(zip(subject_ids, selections))
        ]
        db.add_all(rows)
        db.flush()
        db.commit()
    except CbcsError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        raise AlreadySubmittedError("Choices already submitted.") from exc

    logger.info(
        "Preferences submitted cycle=%s student=%s selections=%d rank=%d",
        cycle_id,
        student_id,
        len(rows),
        rank,
    )
    return rows


def list_subject_preferences(db: Session, subject_id: uuid.UUID) -> list[StudentPreference]:
    """Preference rows of one subject in allocation priority order."""

    q = (
        select(StudentPreference)
        .where(StudentPreference.subject_id == subject_id)
        .order_by(
            StudentPreference.preference_order.asc(),
            StudentPreference.submission_rank.asc(),
            StudentPreference.student_id.asc(),
        )
    )
    return list(db.execute(q).scalars().all())


def get_student_preferences(db: Session, *, cycle_id: uuid.UUID, student_id: str) -> list[StudentPreference]:
    q = (
        select(StudentPreference)
        .where(StudentPreference.cycle_id == cycle_id)
        .where(StudentPreference.student_id == student_id)
        .order_by(StudentPreference.preference_order.asc())
    )
    return list(db.execute(q).scalars().all())
