from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from models.base import Base


class StudentSubmission(Base):
    """One row per student per cycle; its unique key makes a choice set a one-time action."""

    __tablename__ = "cbcs_submissions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    cycle_id = Column(UUID(as_uuid=True), ForeignKey("cbcs_cycles.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Text, nullable=False)
    selection_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("cycle_id", "student_id", name="uq_cbcs_submissions_cycle_student"),
    )
