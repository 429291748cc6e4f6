from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import Callable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from models.allocation_cycle import AllocationCycle
from services.errors import CycleNotFoundError
from services.preference_store import submitter_count_subquery


logger = logging.getLogger(__name__)


Scheduler = Callable[[uuid.UUID], None]


class TriggerOutcome(str, Enum):
    STARTED = "STARTED"
    NOT_READY = "NOT_READY"
    ALREADY_FINALIZING = "ALREADY_FINALIZING"
    ALREADY_COMPLETE = "ALREADY_COMPLETE"


def try_begin_finalize(
    db: Session,
    cycle_id: uuid.UUID,
    *,
    require_quorum: bool = True,
    updated_by: str | None = None,
) -> bool:
    """Atomically move a cycle OPEN -> FINALIZING.

    One conditional UPDATE: the state check and (optionally) the distinct
    submitter count are evaluated by the database inside the statement, so
    two concurrent callers can never both see OPEN. Returns True only for
    the caller whose update affected the row.
    """

    stmt = (
        update(AllocationCycle)
        .where(AllocationCycle.id == cycle_id)
        .where(AllocationCycle.state == "OPEN")
    )
    if require_quorum:
        # expected_total == 0 means the cycle only closes through the manual trigger.
        stmt = stmt.where(AllocationCycle.expected_total > 0).where(
            submitter_count_subquery(AllocationCycle.id) >= AllocationCycle.expected_total
        )
    values: dict = {"state": "FINALIZING", "updated_at": func.now()}
    if updated_by is not None:
        values["updated_by"] = updated_by
    stmt = stmt.values(**values).execution_options(synchronize_session=False)

    try:
        res = db.execute(stmt)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return res.rowcount == 1


def check_and_maybe_trigger(db: Session, cycle_id: uuid.UUID, schedule: Scheduler) -> bool:
    """Run after every accepted submission; schedules finalize once the cohort is complete."""

    if try_begin_finalize(db, cycle_id, require_quorum=True):
        logger.info("Cycle %s reached its expected submitter count; scheduling finalize", cycle_id)
        schedule(cycle_id)
        return True
    logger.debug("Cycle %s: no finalize trigger (not ready or already claimed)", cycle_id)
    return False


def manual_trigger(
    db: Session,
    cycle_id: uuid.UUID,
    schedule: Scheduler,
    *,
    updated_by: str | None = None,
) -> TriggerOutcome:
    """Administrative early closure. Idempotent for FINALIZING/COMPLETE cycles."""

    if try_begin_finalize(db, cycle_id, require_quorum=False, updated_by=updated_by):
        logger.info("Cycle %s manually closed by %s; scheduling finalize", cycle_id, updated_by)
        schedule(cycle_id)
        return TriggerOutcome.STARTED

    state = db.execute(select(AllocationCycle.state).where(AllocationCycle.id == cycle_id)).scalar_one_or_none()
    if state is None:
        raise CycleNotFoundError(f"Unknown cycle {cycle_id}")
    if state == "COMPLETE":
        return TriggerOutcome.ALREADY_COMPLETE
    if state == "FINALIZING":
        return TriggerOutcome.ALREADY_FINALIZING
    # Lost a race against a concurrent revert; nothing was scheduled.
    return TriggerOutcome.NOT_READY


def mark_complete(db: Session, cycle_id: uuid.UUID, *, updated_by: str | None = None) -> bool:
    """FINALIZING -> COMPLETE inside the caller's transaction (no commit)."""

    values: dict = {
        "state": "COMPLETE",
        "finalized_at": func.now(),
        "updated_at": func.now(),
        "last_error": None,
    }
    if updated_by is not None:
        values["updated_by"] = updated_by
    stmt = (
        update(AllocationCycle)
        .where(AllocationCycle.id == cycle_id)
        .where(AllocationCycle.state == "FINALIZING")
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1


def revert_to_open(db: Session, cycle_id: uuid.UUID, *, error: str | None = None) -> bool:
    """FINALIZING -> OPEN after a failed run, so a later submission or manual trigger can retry."""

    stmt = (
        update(AllocationCycle)
        .where(AllocationCycle.id == cycle_id)
        .where(AllocationCycle.state == "FINALIZING")
        .values(state="OPEN", last_error=(error[:500] if error else None), updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    try:
        res = db.execute(stmt)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return res.rowcount == 1
