from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from api.deps import get_current_user, is_admin, require_admin, require_student
from core.db import get_db
from models.user import User
from schemas.cycle import (
    CycleCreate,
    CycleDetail,
    CycleOut,
    FinalAssignmentOut,
    FinalizeResponse,
    SectionCapacityOut,
    StudentPreferenceOut,
    SubjectOfferingOut,
    SubmitChoicesRequest,
    SubmitChoicesResponse,
)
from services import preference_store
from services.allocation_runner import run_finalize_in_background
from services.cycle_coordinator import Scheduler, check_and_maybe_trigger, manual_trigger
from services.cycle_setup import CycleView, create_cycle, get_cycle, get_cycle_view, list_cycles
from services.preference_store import Selection


router = APIRouter()

logger = logging.getLogger(__name__)


def _background_scheduler(background_tasks: BackgroundTasks) -> Scheduler:
    # Runs after the response is sent; the task opens its own DB session.
    def _schedule(cycle_id: uuid.UUID) -> None:
        background_tasks.add_task(run_finalize_in_background, cycle_id)

    return _schedule


def _to_detail(view: CycleView) -> CycleDetail:
    base = CycleOut.model_validate(view.cycle)
    return CycleDetail(
        **base.model_dump(),
        submitted_count=view.submitted_count,
        subjects=[
            SubjectOfferingOut(
                id=sv.subject.id,
                course_id=sv.subject.course_id,
                course_code=sv.subject.course_code,
                course_title=sv.subject.course_title,
                category=sv.subject.category,
                course_type=sv.subject.course_type,
                credits=sv.subject.credits,
                bucket_name=sv.subject.bucket_name,
                sections=[SectionCapacityOut.model_validate(s) for s in sv.sections],
            )
            for sv in view.subjects
        ],
        assignments=[FinalAssignmentOut.model_validate(a) for a in view.assignments],
    )


@router.post("/", response_model=CycleOut, status_code=201)
def create_allocation_cycle(
    payload: CycleCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> CycleOut:
    return create_cycle(db, payload, created_by=admin.username)


@router.get("/", response_model=list[CycleOut])
def list_allocation_cycles(
    _admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[CycleOut]:
    return list_cycles(db)


@router.get("/{cycle_id}", response_model=CycleDetail)
def get_allocation_cycle(
    cycle_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> CycleDetail:
    # Students only ever see their own final sections.
    student_id = None if is_admin(current_user) else current_user.username
    return _to_detail(get_cycle_view(db, cycle_id, student_id=student_id))


@router.post("/{cycle_id}/submit", response_model=SubmitChoicesResponse, status_code=201)
def submit_choices(
    cycle_id: uuid.UUID,
    payload: SubmitChoicesRequest,
    background_tasks: BackgroundTasks,
    student: User = Depends(require_student),
    db: Session = Depends(get_db),
) -> SubmitChoicesResponse:
    rows = preference_store.submit(
        db,
        student_id=student.username,
        cycle_id=cycle_id,
        selections=[
            Selection(
                subject_id=sel.subject_id,
                preferred_section_id=sel.preferred_section_id,
                preferred_staff_id=sel.preferred_staff_id,
            )
            for sel in payload.selections
        ],
    )
    scheduled = check_and_maybe_trigger(db, cycle_id, _background_scheduler(background_tasks))
    return SubmitChoicesResponse(ok=True, submitted=len(rows), finalize_scheduled=scheduled)


@router.get("/{cycle_id}/my-preferences", response_model=list[StudentPreferenceOut])
def my_preferences(
    cycle_id: uuid.UUID,
    student: User = Depends(require_student),
    db: Session = Depends(get_db),
) -> list[StudentPreferenceOut]:
    get_cycle(db, cycle_id)
    return preference_store.get_student_preferences(db, cycle_id=cycle_id, student_id=student.username)


@router.post("/{cycle_id}/finalize", response_model=FinalizeResponse, status_code=202)
def finalize_allocation_cycle(
    cycle_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> FinalizeResponse:
    outcome = manual_trigger(db, cycle_id, _background_scheduler(background_tasks), updated_by=admin.username)
    return FinalizeResponse(status=outcome.value, cycle_id=cycle_id)
