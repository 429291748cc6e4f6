from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from allocation.algorithm import PreferenceRow, SectionSlot, allocate_subject
from core.config import settings
from core.db import SessionLocal, supports_row_locks
from models.allocation_cycle import AllocationCycle
from models.final_assignment import FinalAssignment
from models.section_capacity import SectionCapacity
from models.subject_offering import SubjectOffering
from services.cycle_coordinator import mark_complete, revert_to_open
from services.errors import AllocationFailure
from services.preference_store import list_subject_preferences


logger = logging.getLogger(__name__)


SessionFactory = Callable[[], Session]

SYSTEM_ACTOR = "System"


@dataclass
class SubjectSummary:
    subject_id: uuid.UUID
    course_code: str | None
    assigned: int = 0
    fallbacks: int = 0
    overfilled: dict[str, int] = field(default_factory=dict)


@dataclass
class FinalizeSummary:
    cycle_id: uuid.UUID
    subjects: list[SubjectSummary] = field(default_factory=list)

    @property
    def assignments_written(self) -> int:
        return sum(s.assigned for s in self.subjects)

    @property
    def fallbacks(self) -> int:
        return sum(s.fallbacks for s in self.subjects)


def _finalize_subject(db: Session, *, cycle: AllocationCycle, subject: SubjectOffering, overfill: bool) -> SubjectSummary:
    db.execute(
        delete(FinalAssignment)
        .where(FinalAssignment.subject_id == subject.id)
        .execution_options(synchronize_session=False)
    )

    prefs = list_subject_preferences(db, subject.id)
    q_sections = (
        select(SectionCapacity)
        .where(SectionCapacity.subject_id == subject.id)
        .order_by(SectionCapacity.position.asc(), SectionCapacity.section_id.asc())
    )
    sections = db.execute(q_sections).scalars().all()
    section_by_key = {str(s.section_id): s for s in sections}

    result = allocate_subject(
        [PreferenceRow(p.student_id, str(p.preferred_section_id), int(p.preference_order)) for p in prefs],
        [SectionSlot(str(s.section_id), int(s.max_capacity)) for s in sections],
        overfill=overfill,
        subject=subject.course_code or subject.id,
    )

    db.add_all(
        [
            FinalAssignment(
                cycle_id=cycle.id,
                subject_id=subject.id,
                student_id=student_id,
                section_capacity_id=section_by_key[section_key].id,
                section_id=section_by_key[section_key].section_id,
                staff_id=section_by_key[section_key].staff_id,
                was_fallback=student_id in result.fallback_students,
                created_by=SYSTEM_ACTOR,
            )
            for student_id, section_key in result.assignments.items()
        ]
    )
    db.flush()

    logger.debug(
        "Subject %s allocated: students=%d fallbacks=%d counts=%s",
        subject.course_code or subject.id,
        len(result.assignments),
        len(result.fallback_students),
        result.counts,
    )
    return SubjectSummary(
        subject_id=subject.id,
        course_code=subject.course_code,
        assigned=len(result.assignments),
        fallbacks=len(result.fallback_students),
        overfilled=result.overfilled,
    )


def finalize(
    cycle_id: uuid.UUID,
    *,
    session_factory: SessionFactory | None = None,
    updated_by: str | None = None,
    overfill: bool | None = None,
) -> FinalizeSummary | None:
    """Allocate every subject of a FINALIZING cycle in one transaction.

    Returns None when the cycle is not FINALIZING (stale or duplicate
    dispatch). On any failure the whole run is rolled back, the cycle goes
    back to OPEN and AllocationFailure is raised.
    """

    factory = session_factory or SessionLocal
    allow_overfill = settings.allow_overfill if overfill is None else bool(overfill)

    db = factory()
    try:
        q_cycle = select(AllocationCycle).where(AllocationCycle.id == cycle_id)
        if supports_row_locks(db):
            q_cycle = q_cycle.with_for_update()
        cycle = db.execute(q_cycle).scalar_one_or_none()
        if cycle is None or cycle.state != "FINALIZING":
            logger.info(
                "Finalize skipped for cycle %s (state=%s)",
                cycle_id,
                getattr(cycle, "state", None),
            )
            db.rollback()
            return None

        logger.info("Finalize started cycle=%s policy=%s overfill=%s", cycle_id, cycle.policy, allow_overfill)

        q_subjects = (
            select(SubjectOffering)
            .where(SubjectOffering.cycle_id == cycle.id)
            .order_by(SubjectOffering.position.asc(), SubjectOffering.course_id.asc())
        )
        subjects = db.execute(q_subjects).scalars().all()

        summary = FinalizeSummary(cycle_id=cycle.id)
        for subject in subjects:
            summary.subjects.append(_finalize_subject(db, cycle=cycle, subject=subject, overfill=allow_overfill))

        if not mark_complete(db, cycle.id, updated_by=updated_by or SYSTEM_ACTOR):
            raise RuntimeError(f"Cycle {cycle_id} left FINALIZING during the run")

        db.commit()
    except Exception as exc:
        db.rollback()
        logger.exception("Finalize failed for cycle %s; rolled back", cycle_id)
        try:
            reverted = revert_to_open(db, cycle_id, error=f"{type(exc).__name__}: {exc}")
        except Exception:
            db.rollback()
            # The cycle stays FINALIZING until an operator reopens it.
            logger.exception("Could not revert cycle %s to OPEN after failed finalize", cycle_id)
        else:
            logger.warning("Cycle %s reverted to OPEN=%s after failed finalize", cycle_id, reverted)
        raise AllocationFailure(
            f"Allocation failed for cycle {cycle_id}: {type(exc).__name__}: {exc}",
            details={"cycle_id": str(cycle_id)},
        ) from exc
    finally:
        db.close()

    logger.info(
        "Finalize committed cycle=%s subjects=%d assignments=%d fallbacks=%d",
        cycle_id,
        len(summary.subjects),
        summary.assignments_written,
        summary.fallbacks,
    )
    return summary


def run_finalize_in_background(cycle_id: uuid.UUID, session_factory: SessionFactory | None = None) -> None:
    """Entry point for detached finalize tasks. Failures stay in the log; the cycle is left retryable."""

    try:
        finalize(cycle_id, session_factory=session_factory)
    except AllocationFailure as exc:
        logger.warning("Background finalize for cycle %s failed: %s", cycle_id, exc.message)
