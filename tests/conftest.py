import os

import pytest

# Must be set before the application modules read their settings
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test.db"
os.environ["EVENT_PUBLISHER"] = "noop"

from fastapi.testclient import TestClient

from clinic_booking.core.database import Base, SessionLocal, engine, init_db
from clinic_booking.core.security import UserRole
from clinic_booking.main import app
from clinic_booking.scheduling.locking import DoctorLocks
from clinic_booking.services.scheduling_service import SchedulingService

from .factories import (
    RecordingPublisher, add_schedule, create_doctor, create_patient, create_user
)


@pytest.fixture(scope="function")
def test_db():
    # Create tables
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(test_db):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def locks():
    return DoctorLocks()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def service(db, locks, publisher):
    return SchedulingService(db, locks, publisher)


@pytest.fixture
def client(test_db):
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client


@pytest.fixture
def clinic(db):
    """A doctor working Mondays 08:00-12:00 in 30 minute slots, and a patient."""
    doctor = create_doctor(db)
    patient = create_patient(db)
    add_schedule(db, doctor.id)
    admin = create_user(db, "admin@example.com", UserRole.ADMIN)
    return {
        "doctor_id": doctor.id,
        "doctor_user_id": doctor.user_id,
        "patient_id": patient.id,
        "patient_user_id": patient.user_id,
        "admin_user_id": admin.id,
    }
