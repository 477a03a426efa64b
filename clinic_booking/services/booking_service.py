"""
Slot reservation protocol.

A patient picks a slot from a list that may already be stale, so booking is
checked twice:

1. ``check_slot`` (soft-check) re-reads the slot when it is selected. It only
   saves the patient from filling in the form for a slot that is already
   gone; it guarantees nothing.
2. ``reserve`` (hard-check-and-commit) claims the slot with a conditional
   write and inserts the appointment in the same transaction. The slot is
   flipped first, so a failure after the flip leaves at worst an unavailable
   slot with no appointment, never an appointment without its slot.

Of two concurrent ``reserve`` calls for the same slot exactly one commits;
the other gets ``LostRace``.
"""
from typing import Optional, Union
import logging

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import (
    BookingValidationError, LostRace, NotFound, StaleSelection, StoreUnavailable
)
from ..models.appointment import Appointment, AppointmentStatus
from ..models.reconciliation import ReconciliationAction
from ..models.time_slot import TimeSlot
from ..schemas.booking import PatientDetails
from .availability import claim_slot
from .notifications import BOOKING_RECEIVED, Publisher, appointment_event
from .reconciliation import record_reconciliation

logger = logging.getLogger(__name__)


class BookingService:
    def __init__(self, db: Session, publish: Optional[Publisher] = None):
        self.db = db
        self.publish = publish

    def check_slot(self, slot_id: int, doctor_id: Optional[int] = None) -> TimeSlot:
        """Soft-check: raise ``StaleSelection`` if the slot is no longer open."""
        slot = self._load_slot(slot_id, doctor_id)
        if not slot.is_available:
            logger.info(f"Soft-check rejected slot {slot_id}: already taken")
            raise StaleSelection(slot_id=slot_id)
        return slot

    def reserve(
        self,
        slot_id: int,
        patient: Union[PatientDetails, dict],
        doctor_id: Optional[int] = None,
    ) -> Appointment:
        """Hard-check-and-commit: claim the slot and record a pending appointment."""
        details = self._validate_patient(patient)
        slot = self._load_slot(slot_id, doctor_id)

        try:
            if not claim_slot(self.db, slot.id):
                self.db.rollback()
                logger.info(f"Lost race for slot {slot.id}")
                raise LostRace(slot_id=slot.id)

            appointment = Appointment(
                doctor_id=slot.doctor_id,
                time_slot_id=slot.id,
                status=AppointmentStatus.PENDING,
                **details.model_dump(),
            )
            self.db.add(appointment)
            self.db.commit()
        except IntegrityError:
            # Another active appointment already holds this slot
            self._abort(slot.id, "integrity violation while booking")
            logger.warning(f"Lost race for slot {slot.id} at insert")
            raise LostRace(slot_id=slot.id)
        except SQLAlchemyError as e:
            self._abort(slot.id, str(e))
            logger.error(f"Store failure while booking slot {slot.id}: {e}")
            raise StoreUnavailable() from e

        self.db.refresh(appointment)
        logger.info(
            f"Booked appointment {appointment.id} for slot {slot.id} "
            f"(doctor {appointment.doctor_id})"
        )

        self._notify(appointment)
        return appointment

    def _validate_patient(self, patient: Union[PatientDetails, dict]) -> PatientDetails:
        if isinstance(patient, PatientDetails):
            return patient
        try:
            return PatientDetails.model_validate(patient)
        except ValidationError as e:
            errors = [
                {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                for error in e.errors()
            ]
            raise BookingValidationError(errors=errors)

    def _load_slot(self, slot_id: int, doctor_id: Optional[int]) -> TimeSlot:
        try:
            slot = self.db.query(TimeSlot).filter(TimeSlot.id == slot_id).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailable() from e

        if not slot or (doctor_id is not None and slot.doctor_id != doctor_id):
            raise NotFound("Time slot not found")
        return slot

    def _abort(self, slot_id: int, reason: str) -> None:
        """Roll back a partial booking; flag the slot if that fails too."""
        try:
            self.db.rollback()
        except SQLAlchemyError as e:
            logger.error(f"Rollback failed for slot {slot_id}: {e}")
            record_reconciliation(
                ReconciliationAction.ROLLBACK_FAILED,
                reason=f"{reason}; rollback failed: {e}",
                time_slot_id=slot_id,
            )

    def _notify(self, appointment: Appointment) -> None:
        if self.publish is None:
            return
        try:
            self.publish(appointment_event(BOOKING_RECEIVED, appointment))
        except Exception:
            logger.exception(
                f"Could not publish booking notification for appointment {appointment.id}"
            )
