from __future__ import annotations

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from models.base import Base


CYCLE_STATES = ("OPEN", "FINALIZING", "COMPLETE")


class AllocationCycle(Base):
    """One elective allocation round for a (batch, department, semester)."""

    __tablename__ = "cbcs_cycles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    batch_id = Column(Text, nullable=False)
    department_id = Column(Text, nullable=False)
    semester_id = Column(Text, nullable=False)
    expected_total = Column(Integer, nullable=False, default=0)
    state = Column(String(20), nullable=False, default="OPEN", index=True)
    policy = Column(String(20), nullable=False, default="FCFS")
    last_error = Column(Text, nullable=True)
    created_by = Column(Text, nullable=True)
    updated_by = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())
    finalized_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("expected_total >= 0", name="ck_cbcs_cycles_expected_total"),
        CheckConstraint("state in ('OPEN', 'FINALIZING', 'COMPLETE')", name="ck_cbcs_cycles_state"),
    )
