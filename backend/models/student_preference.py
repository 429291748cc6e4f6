from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from models.base import Base


class StudentPreference(Base):
    __tablename__ = "cbcs_student_preferences"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    cycle_id = Column(UUID(as_uuid=True), ForeignKey("cbcs_cycles.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Text, nullable=False)
    subject_id = Column(UUID(as_uuid=True), ForeignKey("cbcs_subjects.id", ondelete="CASCADE"), nullable=False)
    preferred_section_id = Column(Text, nullable=False)
    preferred_staff_id = Column(Text, nullable=True)
    # Index within the student's submitted selection list (1-based).
    preference_order = Column(Integer, nullable=False, index=True)
    # 1-based arrival rank of the student's submission within the cycle.
    submission_rank = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("cycle_id", "student_id", "subject_id", name="uq_cbcs_prefs_cycle_student_subject"),
        Index("ix_cbcs_prefs_cycle_student", "cycle_id", "student_id"),
        Index("ix_cbcs_prefs_subject_order", "subject_id", "preference_order"),
    )
