from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from models.base import Base


class FinalAssignment(Base):
    __tablename__ = "cbcs_final_assignments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    cycle_id = Column(UUID(as_uuid=True), ForeignKey("cbcs_cycles.id", ondelete="CASCADE"), nullable=False, index=True)
    subject_id = Column(UUID(as_uuid=True), ForeignKey("cbcs_subjects.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Text, nullable=False)
    section_capacity_id = Column(
        UUID(as_uuid=True),
        ForeignKey("cbcs_section_staff.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    section_id = Column(Text, nullable=False)
    staff_id = Column(Text, nullable=True)
    was_fallback = Column(Boolean, nullable=False, default=False)
    created_by = Column(Text, nullable=False, default="System")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("subject_id", "student_id", name="uq_cbcs_final_subject_student"),
    )
