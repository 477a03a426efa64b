import os
import sys
from datetime import date, time, timedelta
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set testing environment before the app reads its settings
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test.db"

from fastapi.testclient import TestClient

from clinic_booking.main import app
from clinic_booking.core.database import Base, SessionLocal, engine, get_redis, init_db
from clinic_booking.core.exceptions import NotificationFailure
from clinic_booking.core.security import StaffRole, get_password_hash, new_auth_id
from clinic_booking.models.doctor import Doctor
from clinic_booking.models.staff import StaffAccount
from clinic_booking.models.time_slot import TimeSlot
from clinic_booking.services.notifications import Notifier, get_notifier

STAFF_PASSWORD = "StaffPassword123"


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    def deliver(self, recipient, subject, body):
        self.sent.append({"recipient": recipient, "subject": subject, "body": body})


class FailingNotifier(Notifier):
    def __init__(self):
        self.attempts = 0

    def deliver(self, recipient, subject, body):
        self.attempts += 1
        raise NotificationFailure("mail server unreachable")


@pytest.fixture(scope="function")
def test_db():
    # Create tables
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture(autouse=True)
def clear_rate_limits():
    get_redis().flushdb()
    yield

@pytest.fixture
def db_session(test_db):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@pytest.fixture
def notifier():
    return RecordingNotifier()

@pytest.fixture
def client(test_db, notifier):
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()

@pytest.fixture
def make_staff(db_session):
    def _make_staff(email="staff@clinic.org", role=StaffRole.STAFF, is_active=True):
        staff = StaffAccount(
            auth_id=new_auth_id(),
            email=email,
            password_hash=get_password_hash(STAFF_PASSWORD),
            role=role,
            is_active=is_active,
        )
        db_session.add(staff)
        db_session.commit()
        db_session.refresh(staff)
        return staff
    return _make_staff

@pytest.fixture
def staff_member(make_staff):
    return make_staff()

@pytest.fixture
def admin(make_staff):
    return make_staff(email="admin@clinic.org", role=StaffRole.ADMIN)

def login(client, email):
    response = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": STAFF_PASSWORD}
    )
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}

@pytest.fixture
def staff_headers(client, staff_member):
    return login(client, staff_member.email)

@pytest.fixture
def admin_headers(client, admin):
    return login(client, admin.email)

@pytest.fixture
def doctor(db_session):
    doctor = Doctor(
        name="Dr. Amina Okafor",
        specialty="Cardiology",
        description="Consultant cardiologist",
    )
    db_session.add(doctor)
    db_session.commit()
    db_session.refresh(doctor)
    return doctor

@pytest.fixture
def make_slot(db_session, doctor):
    def _make_slot(day=date(2024, 6, 1), start=time(9, 0), end=time(9, 30), available=True, doctor_id=None):
        slot = TimeSlot(
            doctor_id=doctor_id or doctor.id,
            date=day,
            start_time=start,
            end_time=end,
            is_available=available,
        )
        db_session.add(slot)
        db_session.commit()
        db_session.refresh(slot)
        return slot
    return _make_slot

@pytest.fixture
def slot(make_slot):
    """Slot S: 2024-06-01, 09:00-09:30."""
    return make_slot()

@pytest.fixture
def future_day():
    return date.today() + timedelta(days=7)

@pytest.fixture
def patient():
    return {
        "first_name": "Grace",
        "last_name": "Mwangi",
        "email": "grace@example.com",
        "phone_number": "+254700000001",
        "education_level": "Bachelor's Degree",
    }
