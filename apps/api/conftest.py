"""Shared pytest fixtures: in-memory database, app client, users and tokens"""
import os
import sys
import tempfile
from datetime import date, timedelta

# Environment must be in place before the app modules read their settings
os.environ["SECRET_KEY"] = "test-secret-key-for-pytest-only"
os.environ["USE_SQLITE"] = "false"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["OUTBOX_SWEEP_INTERVAL"] = "0"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="clinic-uploads-")

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

import pytest
from fastapi.testclient import TestClient

import database
from auth import create_access_token, get_password_hash
from main import app
from models import User, UserRole
from services.websocket_manager import ws_manager

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
WORKING_DAYS = WEEKDAYS[:5]


@pytest.fixture(autouse=True)
def fresh_database():
    database.drop_db_and_tables()
    database.create_db_and_tables()
    ws_manager.rooms.clear()
    ws_manager.connections.clear()
    yield
    ws_manager.rooms.clear()
    ws_manager.connections.clear()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def create_user(role: UserRole, name: str, email: str, **fields) -> User:
    with database.open_session() as session:
        user = User(
            name=name,
            email=email,
            password_hash=get_password_hash("secret123"),
            role=role,
            **fields
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role.value)}"}


def ws_url(user: User) -> str:
    return f"/ws?token={create_access_token(user.id, user.role.value)}"


def next_weekday(day_name: str) -> date:
    """The next date (after today) falling on the given weekday"""
    target = WEEKDAYS.index(day_name)
    current = date.today() + timedelta(days=1)
    while current.weekday() != target:
        current += timedelta(days=1)
    return current


@pytest.fixture
def doctor() -> User:
    return create_user(
        UserRole.DOCTOR,
        "Gregory House",
        "house@example.com",
        specialization="Diagnostics",
        availability_days=WORKING_DAYS,
        availability_start="09:00",
        availability_end="12:00",
        slot_duration=30,
    )


@pytest.fixture
def patient() -> User:
    return create_user(UserRole.PATIENT, "Jane Doe", "jane@example.com")


@pytest.fixture
def other_patient() -> User:
    return create_user(UserRole.PATIENT, "John Roe", "john@example.com")


@pytest.fixture
def other_doctor() -> User:
    return create_user(
        UserRole.DOCTOR,
        "James Wilson",
        "wilson@example.com",
        specialization="Oncology",
        availability_days=WORKING_DAYS,
        availability_start="09:00",
        availability_end="12:00",
    )


@pytest.fixture
def monday() -> date:
    return next_weekday("Monday")


def request_appointment(client, patient: User, doctor: User, day: date, time: str = "09:30") -> dict:
    response = client.post(
        "/api/patient/appointment/request",
        json={"doctor_id": doctor.id, "date": day.isoformat(), "time": time, "reason": "Persistent cough"},
        headers=auth_headers(patient),
    )
    assert response.status_code == 201, response.text
    return response.json()
