from datetime import date
from typing import List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import ConflictError, NotFound, StoreUnavailable
from ..models.appointment import Appointment, AppointmentStatus
from ..models.doctor import Doctor
from ..models.time_slot import TimeSlot
from ..schemas.directory import (
    DoctorCreate, DoctorUpdate, TimeSlotCreate, TimeSlotInterval, TimeSlotUpdate
)
from .availability import flip_availability, has_active_appointment

logger = logging.getLogger(__name__)


class DirectoryService:
    """Doctors and their time slots."""

    def __init__(self, db: Session):
        self.db = db

    # Doctors

    def list_doctors(
        self,
        specialty: Optional[str] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[Doctor]:
        query = self.db.query(Doctor)
        if specialty:
            query = query.filter(Doctor.specialty.ilike(specialty))
        return query.order_by(Doctor.name.asc()).offset(skip).limit(limit).all()

    def get_doctor(self, doctor_id: int) -> Doctor:
        doctor = self.db.query(Doctor).filter(Doctor.id == doctor_id).first()
        if not doctor:
            raise NotFound("Doctor not found")
        return doctor

    def create_doctor(self, data: DoctorCreate) -> Doctor:
        doctor = Doctor(**data.model_dump())
        self.db.add(doctor)
        self._commit("creating doctor")
        self.db.refresh(doctor)
        logger.info(f"Created doctor {doctor.id} ({doctor.name})")
        return doctor

    def update_doctor(self, doctor_id: int, data: DoctorUpdate) -> Doctor:
        doctor = self.get_doctor(doctor_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is not None or field == "description":
                setattr(doctor, field, value)
        self._commit("updating doctor")
        self.db.refresh(doctor)
        return doctor

    def set_doctor_image(self, doctor_id: int, image_url: str) -> Doctor:
        doctor = self.get_doctor(doctor_id)
        doctor.profile_image_url = image_url
        self._commit("updating doctor image")
        self.db.refresh(doctor)
        return doctor

    def delete_doctor(self, doctor_id: int) -> None:
        """Delete a doctor and its slots, unless appointments reference it."""
        doctor = self.get_doctor(doctor_id)

        referenced = self.db.query(Appointment.id).filter(
            Appointment.doctor_id == doctor_id
        ).first()
        if referenced:
            raise ConflictError(
                "This doctor has appointments on record and cannot be deleted"
            )

        self.db.delete(doctor)
        self._commit("deleting doctor")
        logger.info(f"Deleted doctor {doctor_id}")

    # Time slots

    def list_available_slots(self, doctor_id: int, today: Optional[date] = None) -> List[TimeSlot]:
        """Open slots from today onwards, earliest first."""
        self.get_doctor(doctor_id)
        today = today or date.today()
        return self.db.query(TimeSlot).filter(
            TimeSlot.doctor_id == doctor_id,
            TimeSlot.is_available == True,  # noqa: E712
            TimeSlot.date >= today,
        ).order_by(TimeSlot.date.asc(), TimeSlot.start_time.asc()).all()

    def list_slots(self, doctor_id: int) -> List[TimeSlot]:
        self.get_doctor(doctor_id)
        return self.db.query(TimeSlot).filter(
            TimeSlot.doctor_id == doctor_id
        ).order_by(TimeSlot.date.asc(), TimeSlot.start_time.asc()).all()

    def get_slot(self, slot_id: int) -> TimeSlot:
        slot = self.db.query(TimeSlot).filter(TimeSlot.id == slot_id).first()
        if not slot:
            raise NotFound("Time slot not found")
        return slot

    def create_slot(self, doctor_id: int, data: TimeSlotCreate) -> TimeSlot:
        self.get_doctor(doctor_id)
        self._check_overlap(doctor_id, data)

        slot = TimeSlot(doctor_id=doctor_id, **data.model_dump())
        self.db.add(slot)
        self._commit("creating time slot")
        self.db.refresh(slot)
        logger.info(f"Created slot {slot.id} for doctor {doctor_id} on {slot.date}")
        return slot

    def update_slot(self, slot_id: int, data: TimeSlotUpdate) -> TimeSlot:
        slot = self.get_slot(slot_id)
        if has_active_appointment(self.db, slot_id):
            raise ConflictError("This time slot is booked and cannot be moved")
        self._check_overlap(slot.doctor_id, data, exclude_id=slot_id)

        slot.date = data.date
        slot.start_time = data.start_time
        slot.end_time = data.end_time
        self._commit("updating time slot")
        self.db.refresh(slot)
        return slot

    def delete_slot(self, slot_id: int) -> None:
        slot = self.get_slot(slot_id)
        referenced = self.db.query(Appointment.id).filter(
            Appointment.time_slot_id == slot_id
        ).first()
        if referenced:
            raise ConflictError(
                "This time slot has appointments on record and cannot be deleted"
            )
        self.db.delete(slot)
        self._commit("deleting time slot")

    def set_slot_availability(
        self,
        slot_id: int,
        available: bool,
        expected: Optional[bool] = None
    ) -> TimeSlot:
        """Staff toggle, written conditionally on the value the caller saw."""
        slot = self.get_slot(slot_id)
        if expected is None:
            expected = not available
        if expected == available:
            return slot

        if available and has_active_appointment(self.db, slot_id):
            raise ConflictError(
                "This time slot has an active appointment; cancel it to release the slot"
            )

        if not flip_availability(self.db, slot_id, expected=expected, new=available):
            self.db.rollback()
            raise ConflictError(
                "Slot availability changed in the meantime. Please refresh.",
                slot_id=slot_id,
            )
        self._commit("updating slot availability")
        self.db.refresh(slot)
        logger.info(f"Slot {slot_id} marked {'available' if available else 'unavailable'}")
        return slot

    # Appointments

    def list_appointments(
        self,
        status: Optional[AppointmentStatus] = None,
        doctor_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[Appointment]:
        query = self.db.query(Appointment)
        if status:
            query = query.filter(Appointment.status == status)
        if doctor_id:
            query = query.filter(Appointment.doctor_id == doctor_id)
        return query.order_by(
            Appointment.created_at.desc(), Appointment.id.desc()
        ).offset(skip).limit(limit).all()

    def _check_overlap(
        self,
        doctor_id: int,
        interval: TimeSlotInterval,
        exclude_id: Optional[int] = None
    ) -> None:
        query = self.db.query(TimeSlot).filter(
            TimeSlot.doctor_id == doctor_id,
            TimeSlot.date == interval.date,
            TimeSlot.start_time < interval.end_time,
            TimeSlot.end_time > interval.start_time,
        )
        if exclude_id is not None:
            query = query.filter(TimeSlot.id != exclude_id)
        clash = query.first()
        if clash:
            raise ConflictError(
                f"Overlaps an existing slot ({clash.time_range})",
                slot_id=clash.id,
            )

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Store failure {action}: {e}")
            raise StoreUnavailable() from e
