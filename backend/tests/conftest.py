"""
CBCS allocation - test configuration and fixtures.

The settings object and engine are built at import time, so the test
database URL has to be in the environment before anything from the app is
imported.
"""
import os
import tempfile
from pathlib import Path

_TEST_DIR = Path(tempfile.mkdtemp(prefix="cbcs-tests-"))

os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR / 'test.db'}"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-for-testing"
os.environ["ENVIRONMENT"] = "test"
os.environ["AUTO_CREATE_SCHEMA"] = "false"
os.environ["OVERFILL_POLICY"] = "OVERFILL"
os.environ["BCRYPT_ROUNDS"] = "4"

import pytest
from fastapi.testclient import TestClient

from core.db import ENGINE, SessionLocal
from core.security import create_access_token, hash_password
from main import app
from models import Base, User
from schemas.cycle import CycleCreate, SectionCapacityIn, SubjectOfferingIn
from services.cycle_setup import create_cycle


@pytest.fixture(autouse=True)
def _schema():
    """Fresh tables for every test."""
    Base.metadata.create_all(bind=ENGINE)
    yield
    Base.metadata.drop_all(bind=ENGINE)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user(db):
    def _make(username: str, role: str = "STUDENT") -> User:
        user = User(username=username, password_hash=hash_password("password123"), role=role)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def admin_user(make_user) -> User:
    return make_user("admin", role="ADMIN")


def _bearer(user: User) -> dict:
    token = create_access_token(user_id=str(user.id), username=user.username, role=user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return _bearer


@pytest.fixture
def make_cycle(db):
    """Create a cycle from `{course_id: [(section_id, staff_id, max_capacity), ...]}`."""

    def _make(subjects: dict, *, expected_total: int = 0, policy: str = "FCFS"):
        payload = CycleCreate(
            batch_id="2023",
            department_id="CSE",
            semester_id="5",
            expected_total=expected_total,
            policy=policy,
            subjects=[
                SubjectOfferingIn(
                    course_id=course_id,
                    course_code=course_id,
                    course_title=f"Elective {course_id}",
                    credits=3,
                    bucket_name="Elective Bucket 1",
                    sections=[
                        SectionCapacityIn(section_id=sec, staff_id=staff, max_capacity=cap)
                        for sec, staff, cap in sections
                    ],
                )
                for course_id, sections in subjects.items()
            ],
        )
        return create_cycle(db, payload, created_by="admin")

    return _make
