"""
Conditional writes on ``TimeSlot.is_available``.

The flag is the only resource concurrent bookings contend over, so it is never
overwritten unconditionally: each write names the value it expects to find and
reports whether it matched. None of these functions commit.
"""
from sqlalchemy import exists
from sqlalchemy.orm import Session

from ..models.appointment import Appointment, AppointmentStatus
from ..models.time_slot import TimeSlot


def flip_availability(db: Session, slot_id: int, expected: bool, new: bool) -> bool:
    """Set the flag to ``new`` only if it is currently ``expected``."""
    rows = db.query(TimeSlot).filter(
        TimeSlot.id == slot_id,
        TimeSlot.is_available == expected,
    ).update({"is_available": new}, synchronize_session=False)
    return rows == 1


def claim_slot(db: Session, slot_id: int) -> bool:
    """Mark an available slot as taken. False means somebody else took it."""
    return flip_availability(db, slot_id, expected=True, new=False)


def release_slot(db: Session, slot_id: int) -> bool:
    """Return a taken slot to the pool."""
    return flip_availability(db, slot_id, expected=False, new=True)


def claim_slot_for(db: Session, slot_id: int, appointment_id: int) -> bool:
    """Mark the slot taken only while ``appointment_id`` is still active.

    A cancellation committed in the meantime has already released the slot,
    so taking it again would leave it unavailable with nobody booked.
    """
    still_active = exists().where(
        Appointment.id == appointment_id,
        Appointment.status != AppointmentStatus.CANCELLED,
    )
    rows = db.query(TimeSlot).filter(
        TimeSlot.id == slot_id,
        TimeSlot.is_available == True,  # noqa: E712
        still_active,
    ).update({"is_available": False}, synchronize_session=False)
    return rows == 1


def has_active_appointment(db: Session, slot_id: int) -> bool:
    return db.query(Appointment.id).filter(
        Appointment.time_slot_id == slot_id,
        Appointment.status != AppointmentStatus.CANCELLED,
    ).first() is not None
