from __future__ import annotations

import uuid

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from models.base import Base


class SectionCapacity(Base):
    __tablename__ = "cbcs_section_staff"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subject_id = Column(UUID(as_uuid=True), ForeignKey("cbcs_subjects.id", ondelete="CASCADE"), nullable=False, index=True)
    section_id = Column(Text, nullable=False)
    staff_id = Column(Text, nullable=True)
    max_capacity = Column(Integer, nullable=False, default=0)
    # Definition order; breaks ties when picking a fallback section.
    position = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("subject_id", "section_id", name="uq_cbcs_section_staff_subject_section"),
        CheckConstraint("max_capacity >= 0", name="ck_cbcs_section_staff_max_capacity"),
    )
