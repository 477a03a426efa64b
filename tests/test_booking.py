import threading
from datetime import time
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.exc import OperationalError

from clinic_booking.core.database import SessionLocal
from clinic_booking.core.exceptions import (
    BookingValidationError, LostRace, NotFound, StaleSelection, StoreUnavailable
)
from clinic_booking.models.appointment import Appointment, AppointmentStatus
from clinic_booking.models.time_slot import TimeSlot
from clinic_booking.services.booking_service import BookingService
from clinic_booking.services.notifications import BOOKING_RECEIVED, deliver

from .conftest import FailingNotifier


def active_appointments(db, slot_id):
    db.expire_all()
    return db.query(Appointment).filter(
        Appointment.time_slot_id == slot_id,
        Appointment.status != AppointmentStatus.CANCELLED,
    ).all()


def slot_available(db, slot_id):
    db.expire_all()
    return db.query(TimeSlot).filter(TimeSlot.id == slot_id).one().is_available


class TestReservation:

    def test_reserve_creates_pending_appointment(self, db_session, slot, patient):
        """A successful booking records a pending appointment and takes the slot."""
        appointment = BookingService(db_session).reserve(slot.id, patient)

        assert appointment.status == AppointmentStatus.PENDING
        assert appointment.time_slot_id == slot.id
        assert appointment.doctor_id == slot.doctor_id
        assert appointment.email == patient["email"]
        assert slot_available(db_session, slot.id) is False

    def test_reserve_taken_slot_is_lost_race(self, db_session, slot, patient):
        service = BookingService(db_session)
        service.reserve(slot.id, patient)

        with pytest.raises(LostRace) as exc_info:
            service.reserve(slot.id, dict(patient, email="late@example.com"))

        assert exc_info.value.detail["code"] == "lost_race"
        assert len(active_appointments(db_session, slot.id)) == 1

    def test_two_submissions_after_soft_check(self, slot, patient):
        """Both patients pass the soft-check; exactly one commit wins."""
        first, second = SessionLocal(), SessionLocal()
        try:
            first_service = BookingService(first)
            second_service = BookingService(second)

            assert first_service.check_slot(slot.id).is_available
            assert second_service.check_slot(slot.id).is_available

            winner = first_service.reserve(slot.id, patient)
            with pytest.raises(LostRace):
                second_service.reserve(slot.id, dict(patient, first_name="Brian"))

            assert winner.status == AppointmentStatus.PENDING
            assert slot_available(second, slot.id) is False
            assert [a.id for a in active_appointments(second, slot.id)] == [winner.id]
        finally:
            first.close()
            second.close()

    def test_concurrent_bookings_never_double_book(self, slot, patient):
        """Parallel submissions against one slot produce at most one appointment."""
        attempts = 5
        barrier = threading.Barrier(attempts)

        def attempt(i):
            db = SessionLocal()
            try:
                barrier.wait()
                BookingService(db).reserve(slot.id, dict(patient, email=f"p{i}@example.com"))
                return "booked"
            except LostRace:
                return "lost"
            except StoreUnavailable:
                # SQLite may refuse a competing writer outright
                return "busy"
            finally:
                db.close()

        with ThreadPoolExecutor(max_workers=attempts) as pool:
            outcomes = list(pool.map(attempt, range(attempts)))

        assert outcomes.count("booked") == 1
        assert outcomes.count("lost") + outcomes.count("busy") == attempts - 1

        db = SessionLocal()
        try:
            assert len(active_appointments(db, slot.id)) == 1
            assert slot_available(db, slot.id) is False
        finally:
            db.close()

    def test_soft_check_rejects_taken_slot(self, db_session, make_slot):
        taken = make_slot(available=False)

        with pytest.raises(StaleSelection) as exc_info:
            BookingService(db_session).check_slot(taken.id)

        assert exc_info.value.detail["code"] == "stale_selection"

    def test_unknown_slot_or_wrong_doctor(self, db_session, slot, patient):
        service = BookingService(db_session)

        with pytest.raises(NotFound):
            service.reserve(9999, patient)
        with pytest.raises(NotFound):
            service.check_slot(slot.id, doctor_id=slot.doctor_id + 1)

    def test_empty_email_rejected_before_any_write(self, db_session, slot, patient):
        with pytest.raises(BookingValidationError) as exc_info:
            BookingService(db_session).reserve(slot.id, dict(patient, email=""))

        assert exc_info.value.detail["code"] == "validation_error"
        assert any(e["field"] == "email" for e in exc_info.value.detail["errors"])
        assert db_session.query(Appointment).count() == 0
        assert slot_available(db_session, slot.id) is True

    def test_blank_name_rejected(self, db_session, slot, patient):
        with pytest.raises(BookingValidationError):
            BookingService(db_session).reserve(slot.id, dict(patient, first_name="   "))

        assert db_session.query(Appointment).count() == 0

    def test_store_failure_leaves_no_partial_state(self, db_session, slot, patient, monkeypatch):
        """A failed commit rolls back the slot flip along with the insert."""
        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("connection lost"))

        monkeypatch.setattr(db_session, "commit", failing_commit)

        with pytest.raises(StoreUnavailable) as exc_info:
            BookingService(db_session).reserve(slot.id, patient)

        assert exc_info.value.status_code == 503
        monkeypatch.undo()
        assert db_session.query(Appointment).count() == 0
        assert slot_available(db_session, slot.id) is True

    def test_booking_publishes_notification_event(self, db_session, slot, patient):
        events = []
        BookingService(db_session, publish=events.append).reserve(slot.id, patient)

        assert len(events) == 1
        event = events[0]
        assert event.template == BOOKING_RECEIVED
        assert event.recipient == patient["email"]
        assert event.fields["patient_name"] == "Grace Mwangi"
        assert event.fields["doctor_name"] == "Dr. Amina Okafor"
        assert event.fields["specialty"] == "Cardiology"
        assert event.fields["date"] == "June 01, 2024"
        assert event.fields["time_range"] == "09:00 - 09:30"

    def test_booking_stands_when_notifier_fails(self, db_session, slot, patient):
        notifier = FailingNotifier()
        publish = lambda event: deliver(notifier, event)  # noqa: E731

        appointment = BookingService(db_session, publish=publish).reserve(slot.id, patient)

        assert notifier.attempts == 1
        assert appointment.status == AppointmentStatus.PENDING
        assert slot_available(db_session, slot.id) is False

    def test_booking_stands_when_publisher_raises(self, db_session, slot, patient):
        def broken_publish(event):
            raise RuntimeError("queue down")

        appointment = BookingService(db_session, publish=broken_publish).reserve(slot.id, patient)

        assert appointment.id is not None
        assert slot_available(db_session, slot.id) is False


class TestBookingAPI:

    def booking_payload(self, slot, patient):
        return dict(patient, time_slot_id=slot.id)

    def test_book_appointment(self, client, slot, patient, notifier):
        response = client.post(
            f"/api/v1/doctors/{slot.doctor_id}/appointments",
            json=self.booking_payload(slot, patient)
        )
        assert response.status_code == 201

        data = response.json()
        assert data["appointment"]["status"] == "pending"
        assert data["appointment"]["time_slot"]["is_available"] is False
        assert data["appointment"]["doctor"]["name"] == "Dr. Amina Okafor"

        # Delivered in the background after the response
        assert len(notifier.sent) == 1
        assert notifier.sent[0]["recipient"] == patient["email"]

    def test_second_booking_gets_lost_race(self, client, db_session, slot, patient):
        url = f"/api/v1/doctors/{slot.doctor_id}/appointments"
        client.post(url, json=self.booking_payload(slot, patient))

        response = client.post(url, json=self.booking_payload(slot, dict(patient, email="x@example.com")))
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "lost_race"
        assert response.json()["detail"]["slot_id"] == slot.id
        assert len(active_appointments(db_session, slot.id)) == 1

    def test_empty_email_is_rejected(self, client, db_session, slot, patient):
        response = client.post(
            f"/api/v1/doctors/{slot.doctor_id}/appointments",
            json=self.booking_payload(slot, dict(patient, email=""))
        )
        assert response.status_code == 422

        detail = response.json()["detail"]
        assert detail["code"] == "validation_error"
        assert [e["field"] for e in detail["errors"]] == ["email"]
        assert db_session.query(Appointment).count() == 0
        assert slot_available(db_session, slot.id) is True

    def test_missing_patient_fields_are_listed(self, client, db_session, slot):
        response = client.post(
            f"/api/v1/doctors/{slot.doctor_id}/appointments",
            json={"time_slot_id": slot.id, "first_name": "Grace", "email": "grace@example.com"}
        )
        assert response.status_code == 422

        detail = response.json()["detail"]
        assert detail["code"] == "validation_error"
        assert {e["field"] for e in detail["errors"]} == {
            "last_name", "phone_number", "education_level"
        }
        assert slot_available(db_session, slot.id) is True

    def test_booking_succeeds_with_failing_notifier(self, client, db_session, slot, patient):
        from clinic_booking.services.notifications import get_notifier

        failing = FailingNotifier()
        client.app.dependency_overrides[get_notifier] = lambda: failing

        response = client.post(
            f"/api/v1/doctors/{slot.doctor_id}/appointments",
            json=self.booking_payload(slot, patient)
        )
        assert response.status_code == 201
        assert failing.attempts == 1
        assert slot_available(db_session, slot.id) is False

    def test_soft_check_endpoint(self, client, make_slot):
        open_slot = make_slot()
        taken = make_slot(start=time(9, 45), end=time(10, 0), available=False)

        ok = client.get(f"/api/v1/doctors/{open_slot.doctor_id}/slots/{open_slot.id}/check")
        assert ok.status_code == 200
        assert ok.json() == {"slot_id": open_slot.id, "available": True}

        stale = client.get(f"/api/v1/doctors/{taken.doctor_id}/slots/{taken.id}/check")
        assert stale.status_code == 409
        assert stale.json()["detail"]["code"] == "stale_selection"

    def test_booking_slot_of_other_doctor(self, client, slot, patient):
        response = client.post(
            f"/api/v1/doctors/{slot.doctor_id + 1}/appointments",
            json=self.booking_payload(slot, patient)
        )
        assert response.status_code == 404

    def test_booking_is_rate_limited(self, client, slot, patient):
        from clinic_booking.core.config import settings
        from clinic_booking.core.database import get_redis

        get_redis().setex("rate_limit:booking:testclient", 3600, settings.BOOKING_RATE_LIMIT)

        response = client.post(
            f"/api/v1/doctors/{slot.doctor_id}/appointments",
            json=self.booking_payload(slot, patient)
        )
        assert response.status_code == 429
