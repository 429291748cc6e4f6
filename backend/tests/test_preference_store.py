import threading
import uuid

import pytest
from sqlalchemy import func, select, update

from core.db import SessionLocal
from models import AllocationCycle, SectionCapacity, StudentPreference, StudentSubmission, SubjectOffering
from services import preference_store
from services.errors import (
    AlreadySubmittedError,
    CycleAlreadyFinalizedError,
    CycleNotFoundError,
    ValidationError,
)
from services.preference_store import Selection


def _subjects(db, cycle):
    q = select(SubjectOffering).where(SubjectOffering.cycle_id == cycle.id).order_by(SubjectOffering.position)
    return db.execute(q).scalars().all()


def _rows(db, cycle_id, student_id):
    return preference_store.get_student_preferences(db, cycle_id=cycle_id, student_id=student_id)


@pytest.fixture
def cycle(make_cycle):
    return make_cycle(
        {
            "CS501": [("A", "T1", 2), ("B", "T2", 2)],
            "CS502": [("A", "T3", 1), ("C", "T4", 1)],
        },
        expected_total=3,
    )


def test_submit_persists_rows_in_selection_order(db, cycle):
    cs501, cs502 = _subjects(db, cycle)
    preference_store.submit(
        db,
        student_id="21CS001",
        cycle_id=cycle.id,
        selections=[Selection(cs502.id, "C", "T4"), Selection(cs501.id, "A")],
    )

    rows = _rows(db, cycle.id, "21CS001")
    assert [(r.subject_id, r.preferred_section_id, r.preference_order) for r in rows] == [
        (cs502.id, "C", 1),
        (cs501.id, "A", 2),
    ]
    assert {r.submission_rank for r in rows} == {1}
    assert preference_store.count_distinct_submitters(db, cycle.id) == 1


def test_submission_rank_follows_arrival(db, cycle):
    cs501, _ = _subjects(db, cycle)
    for student in ("S1", "S2", "S3"):
        preference_store.submit(db, student_id=student, cycle_id=cycle.id, selections=[Selection(cs501.id, "A")])

    ranks = {r.student_id: r.submission_rank for r in preference_store.list_subject_preferences(db, cs501.id)}
    assert ranks == {"S1": 1, "S2": 2, "S3": 3}


def test_second_submission_rejected_and_first_kept(db, cycle):
    cs501, cs502 = _subjects(db, cycle)
    preference_store.submit(db, student_id="S1", cycle_id=cycle.id, selections=[Selection(cs501.id, "A")])

    with pytest.raises(AlreadySubmittedError):
        preference_store.submit(
            db,
            student_id="S1",
            cycle_id=cycle.id,
            selections=[Selection(cs501.id, "B"), Selection(cs502.id, "C")],
        )

    rows = _rows(db, cycle.id, "S1")
    assert [(r.subject_id, r.preferred_section_id) for r in rows] == [(cs501.id, "A")]


def test_empty_selection_list_rejected(db, cycle):
    with pytest.raises(ValidationError) as exc_info:
        preference_store.submit(db, student_id="S1", cycle_id=cycle.id, selections=[])
    assert exc_info.value.code == "NO_SELECTIONS"


def test_invalid_references_reported_together(db, cycle, make_cycle):
    cs501, _ = _subjects(db, cycle)
    other = make_cycle({"MA301": [("X", None, 5)]})
    (foreign,) = _subjects(db, other)

    with pytest.raises(ValidationError) as exc_info:
        preference_store.submit(
            db,
            student_id="S1",
            cycle_id=cycle.id,
            selections=[
                Selection(foreign.id, "X"),
                Selection(cs501.id, "Z"),
                Selection(cs501.id, "A"),
            ],
        )

    err = exc_info.value
    assert err.code == "INVALID_SELECTION"
    assert err.details["errors"] == [
        "selections[0]: SUBJECT_NOT_IN_CYCLE",
        "selections[1]: SECTION_NOT_IN_SUBJECT",
        "selections[2]: DUPLICATE_SUBJECT",
    ]
    assert _rows(db, cycle.id, "S1") == []


def test_staff_must_teach_the_chosen_section(db, cycle):
    cs501, _ = _subjects(db, cycle)
    with pytest.raises(ValidationError) as exc_info:
        preference_store.submit(db, student_id="S1", cycle_id=cycle.id, selections=[Selection(cs501.id, "A", "T2")])
    assert exc_info.value.details["errors"] == ["selections[0]: STAFF_NOT_ASSIGNED_TO_SECTION"]


def test_unknown_cycle(db):
    with pytest.raises(CycleNotFoundError):
        preference_store.submit(db, student_id="S1", cycle_id=uuid.uuid4(), selections=[])


@pytest.mark.parametrize("state", ["FINALIZING", "COMPLETE"])
def test_submission_after_close_rejected(db, cycle, state):
    cs501, _ = _subjects(db, cycle)
    db.execute(update(AllocationCycle).where(AllocationCycle.id == cycle.id).values(state=state))
    db.commit()

    with pytest.raises(CycleAlreadyFinalizedError) as exc_info:
        preference_store.submit(db, student_id="S1", cycle_id=cycle.id, selections=[Selection(cs501.id, "A")])
    assert exc_info.value.status_code == 409
    assert _rows(db, cycle.id, "S1") == []


def test_list_subject_preferences_orders_by_priority(db, cycle):
    cs501, cs502 = _subjects(db, cycle)
    preference_store.submit(
        db, student_id="S1", cycle_id=cycle.id, selections=[Selection(cs502.id, "A"), Selection(cs501.id, "A")]
    )
    preference_store.submit(db, student_id="S2", cycle_id=cycle.id, selections=[Selection(cs501.id, "B")])

    rows = preference_store.list_subject_preferences(db, cs501.id)
    # S2 ranked CS501 first, S1 second.
    assert [(r.student_id, r.preference_order) for r in rows] == [("S2", 1), ("S1", 2)]


def test_capacity_rows_untouched_by_submissions(db, cycle):
    cs501, _ = _subjects(db, cycle)
    before = db.execute(select(SectionCapacity.section_id, SectionCapacity.max_capacity)).all()
    preference_store.submit(db, student_id="S1", cycle_id=cycle.id, selections=[Selection(cs501.id, "A")])
    after = db.execute(select(SectionCapacity.section_id, SectionCapacity.max_capacity)).all()
    assert sorted(before) == sorted(after)
    assert db.execute(select(StudentPreference)).scalars().all()


def test_malformed_subject_id_is_an_invalid_selection(db, cycle):
    with pytest.raises(ValidationError) as exc_info:
        preference_store.submit(db, student_id="S1", cycle_id=cycle.id, selections=[Selection("not-a-uuid", "A")])
    assert exc_info.value.status_code == 400
    assert exc_info.value.details["errors"] == ["selections[0]: SUBJECT_NOT_IN_CYCLE"]


def test_subject_id_given_as_text_is_resolved(db, cycle):
    cs501, _ = _subjects(db, cycle)
    rows = preference_store.submit(db, student_id="S1", cycle_id=cycle.id, selections=[Selection(str(cs501.id), "B")])
    assert [(r.subject_id, r.preferred_section_id) for r in rows] == [(cs501.id, "B")]


@pytest.mark.parametrize("attempt", range(5))
def test_racing_submissions_from_one_student_keep_a_single_set(db, cycle, attempt):
    cs501, cs502 = _subjects(db, cycle)
    cycle_id = cycle.id
    picks = [Selection(cs501.id, "A"), Selection(cs502.id, "C")]
    barrier = threading.Barrier(len(picks))
    outcomes = []
    errors = []

    def _submit(selection):
        session = SessionLocal()
        try:
            barrier.wait()
            preference_store.submit(session, student_id="S1", cycle_id=cycle_id, selections=[selection])
            outcomes.append("ok")
        except AlreadySubmittedError:
            outcomes.append("duplicate")
        except Exception as exc:
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=_submit, args=(p,)) for p in picks]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert sorted(outcomes) == ["duplicate", "ok"]

    db.expire_all()
    assert len(_rows(db, cycle_id, "S1")) == 1
    submissions = db.execute(
        select(func.count()).select_from(StudentSubmission).where(StudentSubmission.cycle_id == cycle_id)
    ).scalar_one()
    assert submissions == 1
