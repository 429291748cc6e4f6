from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class SectionCapacityIn(BaseModel):
    section_id: str = Field(min_length=1)
    staff_id: str | None = None
    # Omit to split the subject's student total evenly across its sections.
    max_capacity: int | None = Field(default=None, ge=0)


class SubjectOfferingIn(BaseModel):
    course_id: str = Field(min_length=1)
    course_code: str | None = None
    course_title: str | None = None
    category: str | None = None
    course_type: str | None = None
    credits: int | None = Field(default=None, ge=0)
    bucket_name: str = "Core"
    total_students: int | None = Field(default=None, ge=0)
    sections: list[SectionCapacityIn] = Field(default_factory=list)


class CycleCreate(BaseModel):
    batch_id: str = Field(min_length=1)
    department_id: str = Field(min_length=1)
    semester_id: str = Field(min_length=1)
    expected_total: int = Field(default=0, ge=0)
    policy: str = Field(default="FCFS", min_length=1, max_length=20)
    subjects: list[SubjectOfferingIn] = Field(default_factory=list)


class CycleOut(BaseModel):
    id: uuid.UUID
    batch_id: str
    department_id: str
    semester_id: str
    expected_total: int
    state: str
    policy: str
    last_error: str | None = None
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime
    finalized_at: datetime | None = None

    class Config:
        from_attributes = True


class SectionCapacityOut(BaseModel):
    id: uuid.UUID
    section_id: str
    staff_id: str | None = None
    max_capacity: int

    class Config:
        from_attributes = True


class SubjectOfferingOut(BaseModel):
    id: uuid.UUID
    course_id: str
    course_code: str | None = None
    course_title: str | None = None
    category: str | None = None
    course_type: str | None = None
    credits: int | None = None
    bucket_name: str
    sections: list[SectionCapacityOut] = Field(default_factory=list)

    class Config:
        from_attributes = True


class FinalAssignmentOut(BaseModel):
    subject_id: uuid.UUID
    student_id: str
    section_id: str
    staff_id: str | None = None
    was_fallback: bool = False

    class Config:
        from_attributes = True


class CycleDetail(CycleOut):
    submitted_count: int = 0
    subjects: list[SubjectOfferingOut] = Field(default_factory=list)
    assignments: list[FinalAssignmentOut] = Field(default_factory=list)


class SelectionIn(BaseModel):
    # Checked against the cycle by the preference store.
    subject_id: str
    preferred_section_id: str = Field(min_length=1)
    preferred_staff_id: str | None = None


class SubmitChoicesRequest(BaseModel):
    selections: list[SelectionIn] = Field(default_factory=list)


class SubmitChoicesResponse(BaseModel):
    ok: bool = True
    submitted: int
    finalize_scheduled: bool = False


class StudentPreferenceOut(BaseModel):
    subject_id: uuid.UUID
    preferred_section_id: str
    preferred_staff_id: str | None = None
    preference_order: int
    created_at: datetime

    class Config:
        from_attributes = True


class FinalizeResponse(BaseModel):
    status: Literal["STARTED", "NOT_READY", "ALREADY_FINALIZING", "ALREADY_COMPLETE"]
    cycle_id: uuid.UUID
