from __future__ import annotations

import uuid

from sqlalchemy import Column, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from models.base import Base


class SubjectOffering(Base):
    __tablename__ = "cbcs_subjects"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    cycle_id = Column(UUID(as_uuid=True), ForeignKey("cbcs_cycles.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(Text, nullable=False)
    course_code = Column(Text, nullable=True)
    course_title = Column(Text, nullable=True)
    category = Column(Text, nullable=True)
    course_type = Column(Text, nullable=True)
    credits = Column(Integer, nullable=True)
    bucket_name = Column(Text, nullable=False, default="Core")
    position = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("cycle_id", "course_id", name="uq_cbcs_subjects_cycle_course"),
    )
