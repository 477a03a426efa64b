from datetime import datetime
from typing import Callable, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.database import SessionLocal
from ..core.exceptions import NotFound, StoreUnavailable
from ..models.reconciliation import ReconciliationAction, ReconciliationRecord
from ..models.time_slot import TimeSlot
from .availability import flip_availability, has_active_appointment

logger = logging.getLogger(__name__)


def record_reconciliation(
    action: ReconciliationAction,
    reason: str,
    appointment_id: Optional[int] = None,
    time_slot_id: Optional[int] = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> Optional[int]:
    """Persist a reconciliation record in its own session.

    The request's session may be unusable at this point, so a fresh one is
    opened. If even that fails the event is logged at critical level.
    """
    db = session_factory()
    try:
        record = ReconciliationRecord(
            appointment_id=appointment_id,
            time_slot_id=time_slot_id,
            action=action,
            reason=reason[:2000],
        )
        db.add(record)
        db.commit()
        logger.error(
            f"Flagged {action.value} for reconciliation "
            f"(appointment={appointment_id}, slot={time_slot_id}): {reason}"
        )
        return record.id
    except SQLAlchemyError as e:
        db.rollback()
        logger.critical(
            f"MANUAL RECONCILIATION REQUIRED: {action.value} "
            f"(appointment={appointment_id}, slot={time_slot_id}): {reason}; "
            f"could not record it: {e}"
        )
        return None
    finally:
        db.close()


class ReconciliationService:
    def __init__(self, db: Session):
        self.db = db

    def list_open(self) -> List[ReconciliationRecord]:
        return self.db.query(ReconciliationRecord).filter(
            ReconciliationRecord.resolved == False  # noqa: E712
        ).order_by(ReconciliationRecord.created_at.asc()).all()

    def resolve(self, record_id: int) -> ReconciliationRecord:
        """Bring the slot's flag back in line with its appointments."""
        record = self.db.query(ReconciliationRecord).filter(
            ReconciliationRecord.id == record_id
        ).first()
        if not record:
            raise NotFound("Reconciliation record not found")
        if record.resolved:
            return record

        try:
            if record.time_slot_id is not None:
                slot = self.db.query(TimeSlot).filter(
                    TimeSlot.id == record.time_slot_id
                ).first()
                if slot:
                    target = not has_active_appointment(self.db, slot.id)
                    flip_availability(self.db, slot.id, expected=not target, new=target)

            record.resolved = True
            record.resolved_at = datetime.utcnow()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to resolve reconciliation record {record_id}: {e}")
            raise StoreUnavailable() from e

        self.db.refresh(record)
        logger.info(f"Resolved reconciliation record {record_id}")
        return record
