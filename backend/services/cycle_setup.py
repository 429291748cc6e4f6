from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import settings
from models.allocation_cycle import AllocationCycle
from models.final_assignment import FinalAssignment
from models.section_capacity import SectionCapacity
from models.subject_offering import SubjectOffering
from schemas.cycle import CycleCreate
from services.errors import CycleNotFoundError, ValidationError
from services.preference_store import count_distinct_submitters


logger = logging.getLogger(__name__)


def split_capacity(total: int, sections: int) -> list[int]:
    """Spread `total` seats over `sections`; the first `total % sections` get one extra."""

    if sections <= 0:
        return []
    base, remainder = divmod(max(int(total), 0), sections)
    return [base + (1 if i < remainder else 0) for i in range(sections)]


def _validate_cycle_payload(payload: CycleCreate) -> None:
    errors: list[str] = []

    if not payload.subjects:
        raise ValidationError("A cycle needs at least one subject.", code="NO_SUBJECTS")

    course_ids: set[str] = set()
    for i, subj in enumerate(payload.subjects):
        if subj.course_id in course_ids:
            errors.append(f"subjects[{i}]: DUPLICATE_SUBJECT")
        course_ids.add(subj.course_id)

        if not subj.sections:
            errors.append(f"subjects[{i}]: NO_SECTIONS")
            continue
        section_ids: set[str] = set()
        for j, sec in enumerate(subj.sections):
            if sec.section_id in section_ids:
                errors.append(f"subjects[{i}].sections[{j}]: DUPLICATE_SECTION")
            section_ids.add(sec.section_id)

    if errors:
        raise ValidationError("Invalid cycle definition.", code="INVALID_CYCLE", details={"errors": errors})


def create_cycle(db: Session, payload: CycleCreate, *, created_by: str | None) -> AllocationCycle:
    _validate_cycle_payload(payload)

    cycle = AllocationCycle(
        batch_id=payload.batch_id,
        department_id=payload.department_id,
        semester_id=payload.semester_id,
        expected_total=payload.expected_total,
        policy=payload.policy,
        state="OPEN",
        created_by=created_by,
    )
    db.add(cycle)
    db.flush()

    for position, subj in enumerate(payload.subjects):
        offering = SubjectOffering(
            cycle_id=cycle.id,
            course_id=subj.course_id,
            course_code=subj.course_code,
            course_title=subj.course_title,
            category=subj.category,
            course_type=subj.course_type,
            credits=subj.credits,
            bucket_name=subj.bucket_name or "Core",
            position=position,
        )
        db.add(offering)
        db.flush()

        total = subj.total_students or payload.expected_total or settings.default_section_capacity
        even = split_capacity(total, len(subj.sections))
        for j, sec in enumerate(subj.sections):
            db.add(
                SectionCapacity(
                    subject_id=offering.id,
                    section_id=sec.section_id,
                    staff_id=sec.staff_id,
                    max_capacity=(sec.max_capacity if sec.max_capacity is not None else even[j]),
                    position=j,
                )
            )

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("Cycle definition conflicts with existing rows.", code="CONFLICT")
    db.refresh(cycle)

    logger.info(
        "Cycle created id=%s batch=%s dept=%s semester=%s subjects=%d expected_total=%d",
        cycle.id,
        cycle.batch_id,
        cycle.department_id,
        cycle.semester_id,
        len(payload.subjects),
        cycle.expected_total,
    )
    return cycle


def get_cycle(db: Session, cycle_id: uuid.UUID) -> AllocationCycle:
    cycle = db.get(AllocationCycle, cycle_id)
    if cycle is None:
        raise CycleNotFoundError(f"Unknown cycle {cycle_id}")
    return cycle


def list_cycles(db: Session) -> list[AllocationCycle]:
    q = select(AllocationCycle).order_by(AllocationCycle.created_at.desc(), AllocationCycle.id.asc())
    return list(db.execute(q).scalars().all())


@dataclass
class SubjectView:
    subject: SubjectOffering
    sections: list[SectionCapacity] = field(default_factory=list)


@dataclass
class CycleView:
    cycle: AllocationCycle
    subjects: list[SubjectView]
    submitted_count: int
    assignments: list[FinalAssignment] = field(default_factory=list)


def get_cycle_view(db: Session, cycle_id: uuid.UUID, *, student_id: str | None = None) -> CycleView:
    """Cycle with its subjects and sections; final assignments once COMPLETE.

    `student_id` restricts assignments to one student.
    """

    cycle = get_cycle(db, cycle_id)

    q_subjects = (
        select(SubjectOffering)
        .where(SubjectOffering.cycle_id == cycle.id)
        .order_by(SubjectOffering.position.asc(), SubjectOffering.course_id.asc())
    )
    subjects = db.execute(q_subjects).scalars().all()

    sections_by_subject: dict[uuid.UUID, list[SectionCapacity]] = defaultdict(list)
    if subjects:
        q_sections = (
            select(SectionCapacity)
            .where(SectionCapacity.subject_id.in_([s.id for s in subjects]))
            .order_by(SectionCapacity.position.asc(), SectionCapacity.section_id.asc())
        )
        for sc in db.execute(q_sections).scalars().all():
            sections_by_subject[sc.subject_id].append(sc)

    assignments: list[FinalAssignment] = []
    if cycle.state == "COMPLETE":
        q_assign = (
            select(FinalAssignment)
            .where(FinalAssignment.cycle_id == cycle.id)
            .order_by(FinalAssignment.subject_id.asc(), FinalAssignment.section_id.asc(), FinalAssignment.student_id.asc())
        )
        if student_id is not None:
            q_assign = q_assign.where(FinalAssignment.student_id == student_id)
        assignments = list(db.execute(q_assign).scalars().all())

    return CycleView(
        cycle=cycle,
        subjects=[SubjectView(subject=s, sections=sections_by_subject.get(s.id, [])) for s in subjects],
        submitted_count=count_distinct_submitters(db, cycle.id),
        assignments=assignments,
    )
