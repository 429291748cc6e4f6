import pytest

from api.routes import cycles as cycles_routes


CYCLE_PAYLOAD = {
    "batch_id": "2023",
    "department_id": "CSE",
    "semester_id": "5",
    "expected_total": 3,
    "subjects": [
        {
            "course_id": "CS501",
            "course_code": "CS501",
            "course_title": "Machine Learning",
            "credits": 3,
            "bucket_name": "Elective Bucket 1",
            "sections": [
                {"section_id": "A", "staff_id": "T1", "max_capacity": 2},
                {"section_id": "B", "staff_id": "T2", "max_capacity": 2},
            ],
        },
        {
            "course_id": "CS502",
            "course_code": "CS502",
            "course_title": "Cloud Computing",
            "credits": 3,
            "bucket_name": "Elective Bucket 1",
            "sections": [
                {"section_id": "A", "staff_id": "T3"},
                {"section_id": "B", "staff_id": "T4"},
            ],
        },
    ],
}


@pytest.fixture
def students(make_user):
    return [make_user(name) for name in ("21CS001", "21CS002", "21CS003")]


@pytest.fixture
def cycle(client, admin_user, auth_headers):
    res = client.post("/api/cycles/", json=CYCLE_PAYLOAD, headers=auth_headers(admin_user))
    assert res.status_code == 201, res.text
    cycle_id = res.json()["id"]

    detail = client.get(f"/api/cycles/{cycle_id}", headers=auth_headers(admin_user)).json()
    subjects = {s["course_id"]: s for s in detail["subjects"]}
    return {"id": cycle_id, "subjects": subjects}


def _choices(cycle, *picks):
    return {
        "selections": [
            {"subject_id": cycle["subjects"][course]["id"], "preferred_section_id": section}
            for course, section in picks
        ]
    }


def test_login_sets_token(client, make_user):
    make_user("21CS001")
    res = client.post("/api/auth/login", json={"username": "21cs001", "password": "password123"})
    assert res.status_code == 200
    body = res.json()
    assert body["access_token"]
    assert body["role"] == "STUDENT"
    assert body["expires_in"] == 480 * 60
    assert "access_token" in res.cookies

    bad = client.post("/api/auth/login", json={"username": "21CS001", "password": "wrong-password"})
    assert bad.status_code == 401
    assert bad.json()["detail"] == "INVALID_CREDENTIALS"


def test_me_reports_student_id(client, make_user, admin_user, auth_headers):
    student = make_user("21CS042")
    me = client.get("/api/auth/me", headers=auth_headers(student)).json()
    assert me["username"] == "21CS042"
    assert me["student_id"] == "21CS042"

    admin = client.get("/api/auth/me", headers=auth_headers(admin_user)).json()
    assert admin["role"] == "ADMIN"
    assert admin["student_id"] is None


def test_health(client):
    body = client.get("/health").json()
    assert body["app"] == "ok"
    assert body["database"] == "ok"
    assert body["overfill_policy"] == "OVERFILL"


def test_cycles_require_authentication(client):
    assert client.get("/api/cycles/").status_code == 401


def test_create_cycle_splits_capacity_when_omitted(client, admin_user, cycle, auth_headers):
    sections = cycle["subjects"]["CS502"]["sections"]
    assert [(s["section_id"], s["max_capacity"]) for s in sections] == [("A", 2), ("B", 1)]

    listed = client.get("/api/cycles/", headers=auth_headers(admin_user)).json()
    assert [c["id"] for c in listed] == [cycle["id"]]
    assert listed[0]["state"] == "OPEN"


def test_students_cannot_create_cycles(client, students, auth_headers):
    res = client.post("/api/cycles/", json=CYCLE_PAYLOAD, headers=auth_headers(students[0]))
    assert res.status_code == 403


def test_invalid_cycle_definition(client, admin_user, auth_headers):
    payload = dict(CYCLE_PAYLOAD, subjects=[dict(CYCLE_PAYLOAD["subjects"][0], sections=[])])
    res = client.post("/api/cycles/", json=payload, headers=auth_headers(admin_user))
    assert res.status_code == 400
    body = res.json()
    assert body["code"] == "INVALID_CYCLE"
    assert body["details"]["errors"] == ["subjects[0]: NO_SECTIONS"]


def test_full_cohort_triggers_finalize_once(client, admin_user, students, cycle, monkeypatch, auth_headers):
    runs = []
    real_runner = cycles_routes.run_finalize_in_background

    def _counting_runner(cycle_id):
        runs.append(cycle_id)
        real_runner(cycle_id)

    monkeypatch.setattr(cycles_routes, "run_finalize_in_background", _counting_runner)

    picks = [
        [("CS501", "A"), ("CS502", "A")],
        [("CS502", "A"), ("CS501", "A")],
        [("CS501", "A"), ("CS502", "B")],
    ]
    scheduled = []
    for student, choice in zip(students, picks):
        res = client.post(
            f"/api/cycles/{cycle['id']}/submit", json=_choices(cycle, *choice), headers=auth_headers(student)
        )
        assert res.status_code == 201, res.text
        assert res.json()["submitted"] == 2
        scheduled.append(res.json()["finalize_scheduled"])

    assert scheduled == [False, False, True]
    assert len(runs) == 1

    detail = client.get(f"/api/cycles/{cycle['id']}", headers=auth_headers(admin_user)).json()
    assert detail["state"] == "COMPLETE"
    assert detail["submitted_count"] == 3
    assert len(detail["assignments"]) == 6

    # 21CS002 ranked CS502 first, so they are served before the other two.
    cs502 = cycle["subjects"]["CS502"]["id"]
    cs502_sections = {a["student_id"]: a["section_id"] for a in detail["assignments"] if a["subject_id"] == cs502}
    assert cs502_sections == {"21CS002": "A", "21CS001": "A", "21CS003": "B"}

    again = client.post(f"/api/cycles/{cycle['id']}/finalize", headers=auth_headers(admin_user))
    assert again.status_code == 202
    assert again.json()["status"] == "ALREADY_COMPLETE"
    assert len(runs) == 1


def test_duplicate_submission_rejected(client, students, cycle, auth_headers):
    url = f"/api/cycles/{cycle['id']}/submit"
    headers = auth_headers(students[0])

    first = client.post(url, json=_choices(cycle, ("CS501", "A")), headers=headers)
    assert first.status_code == 201

    second = client.post(url, json=_choices(cycle, ("CS501", "B")), headers=headers)
    assert second.status_code == 400
    assert second.json()["code"] == "ALREADY_SUBMITTED"

    mine = client.get(f"/api/cycles/{cycle['id']}/my-preferences", headers=headers).json()
    assert [(p["preferred_section_id"], p["preference_order"]) for p in mine] == [("A", 1)]


def test_empty_submission_rejected(client, students, cycle, auth_headers):
    res = client.post(f"/api/cycles/{cycle['id']}/submit", json={"selections": []}, headers=auth_headers(students[0]))
    assert res.status_code == 400
    assert res.json()["code"] == "NO_SELECTIONS"


def test_malformed_subject_id_is_a_bad_request(client, students, cycle, auth_headers):
    res = client.post(
        f"/api/cycles/{cycle['id']}/submit",
        json={"selections": [{"subject_id": "CS501", "preferred_section_id": "A"}]},
        headers=auth_headers(students[0]),
    )
    assert res.status_code == 400
    assert res.json()["code"] == "INVALID_SELECTION"


def test_admin_cannot_submit(client, admin_user, cycle, auth_headers):
    res = client.post(
        f"/api/cycles/{cycle['id']}/submit", json=_choices(cycle, ("CS501", "A")), headers=auth_headers(admin_user)
    )
    assert res.status_code == 403
    assert res.json()["detail"] == "STUDENTS_ONLY"


def test_manual_finalize_then_late_submission(client, admin_user, students, cycle, auth_headers):
    headers = auth_headers(students[0])
    client.post(f"/api/cycles/{cycle['id']}/submit", json=_choices(cycle, ("CS501", "B")), headers=headers)

    res = client.post(f"/api/cycles/{cycle['id']}/finalize", headers=auth_headers(admin_user))
    assert res.status_code == 202
    assert res.json() == {"status": "STARTED", "cycle_id": cycle["id"]}

    late = client.post(
        f"/api/cycles/{cycle['id']}/submit", json=_choices(cycle, ("CS501", "A")), headers=auth_headers(students[1])
    )
    assert late.status_code == 409
    assert late.json()["code"] == "CYCLE_ALREADY_FINALIZED"


def test_students_only_see_their_own_assignments(client, admin_user, students, cycle, auth_headers):
    for student in students[:2]:
        client.post(
            f"/api/cycles/{cycle['id']}/submit",
            json=_choices(cycle, ("CS501", "A")),
            headers=auth_headers(student),
        )
    client.post(f"/api/cycles/{cycle['id']}/finalize", headers=auth_headers(admin_user))

    detail = client.get(f"/api/cycles/{cycle['id']}", headers=auth_headers(students[0])).json()
    assert detail["state"] == "COMPLETE"
    assert [(a["student_id"], a["section_id"]) for a in detail["assignments"]] == [("21CS001", "A")]


def test_unknown_cycle_is_404(client, admin_user, auth_headers):
    res = client.get("/api/cycles/00000000-0000-0000-0000-000000000000", headers=auth_headers(admin_user))
    assert res.status_code == 404
    assert res.json()["code"] == "CYCLE_NOT_FOUND"
