"""
Staff-driven appointment status changes.

    pending   --confirm--> confirmed   (slot stays / becomes unavailable)
    pending   --cancel-->  cancelled   (slot released)
    confirmed --cancel-->  cancelled   (slot released)

``cancelled`` is terminal. The status write is committed first; the slot
write follows, is retried, and is flagged for reconciliation if it still
fails. The status change stands either way.
"""
from functools import partial
from typing import Callable, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import InvalidTransition, NotFound, StoreUnavailable
from ..core.security import AuthorizationError, StaffRole
from ..models.appointment import Appointment, AppointmentStatus
from ..models.reconciliation import ReconciliationAction
from ..models.staff import StaffAccount
from .availability import claim_slot_for, release_slot
from .notifications import APPOINTMENT_CONFIRMED, Publisher, appointment_event
from .reconciliation import record_reconciliation

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED},
    AppointmentStatus.CONFIRMED: {AppointmentStatus.CANCELLED},
    AppointmentStatus.CANCELLED: set(),
}

CanTransition = Callable[[Optional[StaffAccount], Appointment], bool]


def staff_can_transition(caller: Optional[StaffAccount], appointment: Appointment) -> bool:
    """Default policy: any active staff member or admin."""
    return (
        caller is not None
        and caller.is_active
        and caller.role in (StaffRole.STAFF, StaffRole.ADMIN)
    )


class StatusTransitionService:
    def __init__(
        self,
        db: Session,
        can_transition: CanTransition = staff_can_transition,
        publish: Optional[Publisher] = None,
        slot_write_retries: int = settings.SLOT_WRITE_RETRIES,
    ):
        self.db = db
        self.can_transition = can_transition
        self.publish = publish
        self.slot_write_retries = max(1, slot_write_retries)

    def confirm(self, appointment_id: int, caller: Optional[StaffAccount]) -> Appointment:
        appointment = self._transition(appointment_id, caller, AppointmentStatus.CONFIRMED)

        # Normally already taken at booking; corrects drift otherwise. Skipped
        # if a cancellation has landed since the status write.
        self._write_slot(
            appointment,
            partial(claim_slot_for, appointment_id=appointment.id),
            ReconciliationAction.RESERVE_SLOT,
        )

        self.db.refresh(appointment)
        if appointment.status != AppointmentStatus.CONFIRMED:
            logger.info(f"Appointment {appointment.id} was cancelled while being confirmed")
            return appointment

        if self.publish is not None:
            try:
                self.publish(appointment_event(APPOINTMENT_CONFIRMED, appointment))
            except Exception:
                logger.exception(
                    f"Could not publish confirmation for appointment {appointment.id}"
                )
        return appointment

    def cancel(self, appointment_id: int, caller: Optional[StaffAccount]) -> Appointment:
        appointment = self._transition(appointment_id, caller, AppointmentStatus.CANCELLED)
        self._write_slot(appointment, release_slot, ReconciliationAction.RELEASE_SLOT)
        self.db.refresh(appointment)
        return appointment

    def _transition(
        self,
        appointment_id: int,
        caller: Optional[StaffAccount],
        target: AppointmentStatus,
    ) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).first()
        if not appointment:
            raise NotFound("Appointment not found")

        if not self.can_transition(caller, appointment):
            raise AuthorizationError("You are not allowed to change this appointment")

        current = appointment.status
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(
                f"Cannot change a {current.value} appointment to {target.value}",
                status=current.value,
            )

        try:
            rows = self.db.query(Appointment).filter(
                Appointment.id == appointment_id,
                Appointment.status == current,
            ).update({"status": target}, synchronize_session=False)
            if rows != 1:
                self.db.rollback()
                raise InvalidTransition(
                    "The appointment was changed by someone else. Please refresh."
                )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Store failure updating appointment {appointment_id}: {e}")
            raise StoreUnavailable() from e

        logger.info(
            f"Appointment {appointment_id}: {current.value} -> {target.value}"
            f" by {caller.email if caller else 'unknown'}"
        )
        self.db.refresh(appointment)
        return appointment

    def _write_slot(self, appointment: Appointment, write, action: ReconciliationAction) -> bool:
        appointment_id = appointment.id
        slot_id = appointment.time_slot_id
        error = None

        for attempt in range(1, self.slot_write_retries + 1):
            try:
                write(self.db, slot_id)
                self.db.commit()
                return True
            except SQLAlchemyError as e:
                self.db.rollback()
                error = e
                logger.warning(
                    f"Slot write {action.value} for slot {slot_id} failed "
                    f"(attempt {attempt}/{self.slot_write_retries}): {e}"
                )

        record_reconciliation(
            action,
            reason=f"slot write failed after {self.slot_write_retries} attempts: {error}",
            appointment_id=appointment_id,
            time_slot_id=slot_id,
        )
        return False
