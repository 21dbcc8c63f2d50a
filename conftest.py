import itertools
from datetime import date

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token, hash_password
from config import Settings
from context import AppContext
from database import ensure_indexes
from schemas import User


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret", database_name="attendance_test")


@pytest.fixture
def ctx(settings):
    db = mongomock.MongoClient()[settings.database_name]
    ensure_indexes(db)
    return AppContext(settings, db)


@pytest.fixture
def make_student(ctx):
    counter = itertools.count(1)

    def _make(name=None):
        n = next(counter)
        user = ctx.users.create(User(
            name=name or f"Student {n}",
            email=f"student{n}@college.edu",
            password_hash="!",
            role="student",
            usn=f"1CS21{n:03d}",
            section="A",
            semester=4,
        ))
        return str(user["_id"])
    return _make


@pytest.fixture
def teacher(ctx):
    user = ctx.users.create(User(
        name="Teacher",
        email="teacher@college.edu",
        password_hash=hash_password("teacher-pass"),
        role="teacher",
        subject="Data Science",
    ))
    return str(user["_id"])


@pytest.fixture
def mark(ctx, teacher):
    """Record attendance: mark(student_id, "2024-01-15", "present", subject="Data Science")."""
    def _mark(student_id, day, status, subject="Data Science"):
        if isinstance(day, str):
            day = date.fromisoformat(day)
        return ctx.attendance.mark(student_id, day, status, teacher, subject)
    return _mark


@pytest.fixture
def client(ctx):
    import main
    main.app.state.context = ctx
    yield TestClient(main.app)
    main.app.state.context = None


@pytest.fixture
def auth_header(settings):
    def _header(user_id, role):
        token = create_access_token({"sub": user_id, "role": role}, settings)
        return {"Authorization": f"Bearer {token}"}
    return _header
